"""
Raw capture decoders.

A decoder turns one capture blob into a 16-bit Bayer grid. The pipeline
only relies on the ``decode(blob) -> DecodedRaw`` call, so any object with
that method can be passed to the loader.
"""

import io
import logging
from dataclasses import dataclass
from typing import Dict, Type

import numpy as np
import rawpy
from astropy.io import fits

from burst_stack_backend.frame import UINT16_MAX

logger = logging.getLogger(__name__)


@dataclass
class DecodedRaw:
    bayer: np.ndarray
    width: int
    height: int

    @classmethod
    def from_array(cls, data: np.ndarray) -> "DecodedRaw":
        """Check range and shape, and convert to uint16."""
        data = np.asarray(data)
        if data.ndim != 2:
            raise ValueError(f"expected a 2D sensor grid, got shape {data.shape}")
        if data.size == 0:
            raise ValueError("empty sensor grid")
        if not np.issubdtype(data.dtype, np.integer):
            if not np.all(np.isfinite(data)):
                raise ValueError("sensor grid contains non-finite values")
            data = np.rint(data)
        if data.min() < 0 or data.max() > UINT16_MAX:
            raise ValueError("sensor grid values outside the 16-bit range")
        bayer = data.astype(np.uint16)
        return cls(bayer=bayer, width=int(bayer.shape[1]), height=int(bayer.shape[0]))


class RawpyDecoder:
    """Vendor raw containers through LibRaw; returns the visible Bayer area."""
    name = "rawpy"

    def decode(self, blob: bytes) -> DecodedRaw:
        with rawpy.imread(io.BytesIO(blob)) as raw:
            data = raw.raw_image_visible.copy()
        return DecodedRaw.from_array(data)


class FitsDecoder:
    """CFA FITS files; primary HDU."""
    name = "fits"

    def decode(self, blob: bytes) -> DecodedRaw:
        with fits.open(io.BytesIO(blob), memmap=False) as hdul:
            data = hdul[0].data
            if data is None:
                raise ValueError("primary HDU holds no image data")
            data = np.array(data)
        return DecodedRaw.from_array(data)


class NpyDecoder:
    """``numpy.save`` output; used for synthetic bursts."""
    name = "npy"

    def decode(self, blob: bytes) -> DecodedRaw:
        data = np.load(io.BytesIO(blob), allow_pickle=False)
        return DecodedRaw.from_array(data)


DECODERS: Dict[str, Type] = {
    RawpyDecoder.name: RawpyDecoder,
    FitsDecoder.name: FitsDecoder,
    NpyDecoder.name: NpyDecoder,
}


def get_decoder(name: str):
    try:
        return DECODERS[name]()
    except KeyError:
        raise ValueError(f"unknown decoder '{name}', expected one of {sorted(DECODERS)}") from None
