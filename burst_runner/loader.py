"""
Frame loading: decode a burst of captures into float sensor frames.
"""

import logging
from typing import List, Optional, Sequence, Union

from burst_stack_backend.frame import Frame, check_burst_consistency

from .compute import ComputeContext
from .errors import DecodeError, InsufficientFramesError, robust_processing
from .raw_decode import DecodedRaw, get_decoder

logger = logging.getLogger(__name__)

MIN_FRAMES = 2


def load_burst(
    blobs: Sequence[bytes],
    decoder: Union[str, object],
    context: Optional[ComputeContext] = None,
    mosaic_period: int = 2,
) -> List[Frame]:
    """
    Decode every capture of a burst.

    Captures are decoded concurrently on the context's pool; the call
    returns only once all of them are done. Nothing is returned unless
    every capture decodes to a grid of the same shape.

    Args:
        blobs: Raw capture blobs, in burst order
        decoder: Decoder name ("rawpy", "fits", "npy") or object with ``decode``
        context: Compute context providing the worker pool
        mosaic_period: Colour filter period of the sensor

    Returns:
        Frames in the order of ``blobs``

    Raises:
        InsufficientFramesError: fewer than two blobs
        DecodeError: any capture fails to decode, or shapes differ
    """
    blobs = list(blobs)
    if len(blobs) < MIN_FRAMES:
        raise InsufficientFramesError(
            f"at least {MIN_FRAMES} captures are required, got {len(blobs)}"
        )
    if isinstance(decoder, str):
        decoder = get_decoder(decoder)

    def decode_one(index: int) -> DecodedRaw:
        try:
            return decoder.decode(blobs[index])
        except MemoryError:
            raise
        except Exception as e:
            raise DecodeError(f"capture {index} could not be decoded: {e}", original_error=e) from e

    indices = range(len(blobs))
    if context is None:
        decoded = [robust_processing(decode_one)(i) for i in indices]
    else:
        decoded = context.map(decode_one, indices)

    frames = []
    for i, raw in enumerate(decoded):
        if raw.bayer.shape != (raw.height, raw.width):
            raise DecodeError(f"capture {i}: grid shape {raw.bayer.shape} does not match {raw.width}x{raw.height}")
        frames.append(Frame.from_bayer(raw.bayer, mosaic_period))

    try:
        check_burst_consistency(frames)
    except ValueError as e:
        raise DecodeError(f"burst is inconsistent: {e}", original_error=e) from e

    logger.info(f"Decoded {len(frames)} captures of {frames[0].width}x{frames[0].height}")
    return frames
