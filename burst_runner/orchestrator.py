"""
Burst align-and-merge orchestration.

Sequence per burst:

    SELECT_REFERENCE -> BUILD_REFERENCE (pyramid, blur, noise)
    -> INIT_ACCUMULATOR
    -> ALIGN_MERGE: for every alternate frame
           BUILD_PYRAMID -> ALIGN (coarse to fine) -> WARP -> MERGE -> ACCUMULATE
    -> FINALIZE (divide by N)

Every phase emits a phase_start / phase_end event pair. Any failure aborts
the whole call; no partially merged frame is ever returned.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import numpy as np

from burst_stack_backend.alignment import align_frame
from burst_stack_backend.configuration import MergeConfig
from burst_stack_backend.frame import Frame, check_burst_consistency
from burst_stack_backend.merge import robust_merge
from burst_stack_backend.noise import estimate_noise, mosaic_blur
from burst_stack_backend.pyramid import build_pyramid, pyramid_nbytes
from burst_stack_backend.tile_grid import AlignmentSchedule, build_schedule
from burst_stack_backend.warp import warp_frame

from .compute import ComputeContext
from .errors import DecodeError, InsufficientFramesError, robust_processing
from .events import phase_end, phase_progress, phase_start
from .loader import load_burst
from .resources import ResourceManager

logger = logging.getLogger(__name__)

PHASES = {
    0: "SELECT_REFERENCE",
    1: "BUILD_REFERENCE",
    2: "INIT_ACCUMULATOR",
    3: "ALIGN_MERGE",
    4: "FINALIZE",
}


@dataclass
class MergeResult:
    frame: Frame
    reference_index: int
    noise_estimate: float
    num_frames: int
    schedule: AlignmentSchedule


def select_reference_index(
    n: int,
    policy: str = "auto",
    index: Optional[int] = None,
    small_burst_max: int = 5,
    large_burst_index: int = 6,
) -> int:
    """
    Deterministic reference frame choice.

    auto: the last frame for bursts of up to ``small_burst_max`` frames,
    otherwise ``large_burst_index`` (never past the last frame).
    fixed: ``index``.
    """
    if n < 2:
        raise InsufficientFramesError(f"at least 2 frames are required, got {n}")
    if policy == "auto":
        if n <= small_burst_max:
            return n - 1
        return min(large_burst_index, n - 1)
    if policy == "fixed":
        if index is None or not 0 <= index < n:
            raise ValueError(f"reference index {index} out of range for {n} frames")
        return int(index)
    raise ValueError(f"unknown reference policy: {policy}")


def _context_from_config(config: MergeConfig) -> ComputeContext:
    return ComputeContext(
        max_workers=config.max_workers,
        resources=ResourceManager(config.memory_threshold_percent),
    )


class BurstMerger:
    """
    Aligns every alternate frame of a burst to the reference and merges it
    into a running accumulator.
    """
    def __init__(
        self,
        config: Optional[MergeConfig] = None,
        context: Optional[ComputeContext] = None,
        echo_events: bool = False,
    ):
        self.config = config or MergeConfig()
        self.context = context
        self.echo_events = echo_events

    @contextmanager
    def _phase(self, phase_id: int, extra: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        name = PHASES[phase_id]
        phase_start(self._run_id, self._log_fp, phase_id, name, extra, echo=self.echo_events)
        result: Dict[str, Any] = {}
        try:
            yield result
        except Exception as e:
            phase_end(
                self._run_id, self._log_fp, phase_id, name, "error",
                {"error": str(e), "error_type": type(e).__name__},
                echo=self.echo_events,
            )
            raise
        phase_end(self._run_id, self._log_fp, phase_id, name, "ok", result, echo=self.echo_events)

    def merge(
        self,
        frames: Sequence[Frame],
        log_fp=None,
        run_id: Optional[str] = None,
    ) -> MergeResult:
        """
        Merge a burst into one noise-reduced frame.

        Args:
            frames: Decoded frames in burst order
            log_fp: Optional text stream receiving JSON event lines
            run_id: Identifier carried by the events (default: new UUID)

        Returns:
            MergeResult with the merged full resolution frame

        Raises:
            InsufficientFramesError: fewer than two frames
            DecodeError: frames differ in shape or mosaic period
            AllocationError: a buffer does not fit in memory
            ComputeError: a processing kernel failed
            ValueError: the reference policy or tile grid does not fit the burst
        """
        frames = list(frames)
        self._log_fp = log_fp
        self._run_id = run_id or str(uuid.uuid4())
        cfg = self.config

        with self._phase(0, {"num_frames": len(frames)}) as info:
            ref_idx = select_reference_index(
                len(frames),
                cfg.reference_policy,
                cfg.reference_index,
                cfg.small_burst_max,
                cfg.large_burst_index,
            )
            try:
                check_burst_consistency(frames)
            except ValueError as e:
                raise DecodeError(f"burst is inconsistent: {e}", original_error=e) from e
            reference = frames[ref_idx]
            schedule = build_schedule(
                reference.width,
                reference.height,
                tile_size=cfg.tile_size,
                mosaic_period=reference.mosaic_period,
                search_bound=cfg.search_bound,
                search_radius=cfg.search_radius,
                min_tile_size=cfg.min_tile_size,
            )
            info.update({"reference_index": ref_idx, "schedule": schedule.to_dict()})

        logger.info(
            f"Merging {len(frames)} frames of {reference.width}x{reference.height}, "
            f"reference {ref_idx}, {schedule.num_levels} alignment levels"
        )

        owns_context = self.context is None
        context = _context_from_config(cfg) if owns_context else self.context
        try:
            merged, noise = self._merge_frames(frames, ref_idx, schedule, context)
        finally:
            if owns_context:
                context.close()

        return MergeResult(
            frame=merged,
            reference_index=ref_idx,
            noise_estimate=noise,
            num_frames=len(frames),
            schedule=schedule,
        )

    @robust_processing
    def _merge_frames(
        self,
        frames: List[Frame],
        ref_idx: int,
        schedule: AlignmentSchedule,
        context: ComputeContext,
    ):
        cfg = self.config
        reference = frames[ref_idx]
        n = len(frames)

        with self._phase(1) as info:
            context.check_allocation(pyramid_nbytes(reference.shape, schedule), "reference pyramid")
            reference_pyramid = build_pyramid(reference, schedule)
            reference_blurred = mosaic_blur(reference.data, cfg.kernel_size, reference.mosaic_period)
            noise = estimate_noise(reference.data, reference_blurred, reference.mosaic_period)
            info["noise_estimate"] = noise
        logger.info(f"Noise estimate of reference frame: {noise:.4f}")

        with self._phase(2):
            accumulator = context.allocate(reference.shape, dtype=np.float64, what="accumulator")
            accumulator += reference.data

        with self._phase(3, {"robustness": cfg.robustness}):
            done = 0
            for i, frame in enumerate(frames):
                if i == ref_idx:
                    continue
                context.check_allocation(pyramid_nbytes(frame.shape, schedule), "alternate pyramid")
                pyramid = build_pyramid(frame, schedule)
                field, geometry = align_frame(reference_pyramid, pyramid, schedule, context)
                aligned = warp_frame(frame, field, geometry, context)
                merged = robust_merge(
                    reference, reference_blurred, aligned, noise, cfg.robustness, cfg.kernel_size
                )
                accumulator += merged.data
                done += 1

                logger.debug(
                    f"frame {i}: mean offset ({field[..., 0].mean():.2f}, {field[..., 1].mean():.2f}) "
                    f"on a {geometry.n_tiles_x}x{geometry.n_tiles_y} tile grid"
                )
                phase_progress(
                    self._run_id, self._log_fp, 3, PHASES[3], done, n - 1,
                    {"frame_index": i}, echo=self.echo_events,
                )

        with self._phase(4, {"num_frames": n}):
            accumulator /= n
            merged_frame = reference.like(accumulator.astype(np.float32))

        return merged_frame, noise


def align_and_merge(
    blobs: Sequence[bytes],
    decoder: Union[str, object, None] = None,
    config: Union[MergeConfig, Dict[str, Any], None] = None,
    context: Optional[ComputeContext] = None,
    log_fp=None,
    run_id: Optional[str] = None,
    echo_events: bool = False,
) -> MergeResult:
    """
    Decode a burst of captures and merge it.

    Args:
        blobs: Raw capture blobs in burst order
        decoder: Decoder name or object (default: ``config.decoder``)
        config: MergeConfig or configuration dict
        context: Compute context (default: built from the configuration)
        log_fp: Optional text stream receiving JSON event lines
        run_id: Identifier carried by the events
        echo_events: Also write events to stdout

    Returns:
        MergeResult
    """
    if not isinstance(config, MergeConfig):
        config = MergeConfig.from_dict(config)
    if decoder is None:
        decoder = config.decoder

    owns_context = context is None
    if owns_context:
        context = _context_from_config(config)
    try:
        frames = load_burst(blobs, decoder, context, config.mosaic_period)
        merger = BurstMerger(config, context, echo_events=echo_events)
        return merger.merge(frames, log_fp=log_fp, run_id=run_id)
    finally:
        if owns_context:
            context.close()
