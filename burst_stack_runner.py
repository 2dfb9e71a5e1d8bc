#!/usr/bin/env python3
"""
Burst-Stack Runner

Aligns and merges a burst of raw captures into one noise-reduced frame and
writes it as FITS. Progress is reported as JSON event lines on stdout and in
``<output>.events.jsonl``; human readable logs go to stderr (and to a
rotating log file when a log directory is configured).

Usage:
    python burst_stack_runner.py run --output merged.fits [--config cfg.yaml] FILES...
"""

import argparse
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

from astropy.io import fits

from burst_runner.compute import ComputeContext
from burst_runner.errors import BurstProcessingError, log_exception
from burst_runner.events import emit
from burst_runner.logging_config import setup_logging
from burst_runner.orchestrator import align_and_merge
from burst_runner.resources import ResourceManager
from burst_runner.utils import read_blobs, sha256_bytes
from burst_stack_backend.configuration import ConfigurationManager, MergeConfig

logger = logging.getLogger("burst_stack_runner")


def _apply_overrides(cfg: dict, args: argparse.Namespace) -> dict:
    if args.decoder is not None:
        cfg["data"]["decoder"] = args.decoder
    if args.robustness is not None:
        cfg["merge"]["robustness"] = args.robustness
    if args.tile_size is not None:
        cfg["alignment"]["tile_size"] = args.tile_size
    if args.log_level is not None:
        cfg["logging"]["level"] = args.log_level
    if args.log_dir is not None:
        cfg["logging"]["log_dir"] = args.log_dir
    return cfg


def write_fits(path: Path, result, as_uint16: bool = False) -> None:
    data = result.frame.as_uint16() if as_uint16 else result.frame.data
    hdr = fits.Header()
    hdr["NFRAMES"] = (result.num_frames, "frames merged")
    hdr["REFINDEX"] = (result.reference_index, "reference frame index")
    hdr["NOISEEST"] = (float(result.noise_estimate), "noise estimate of reference")
    hdr["MOSAICP"] = (result.frame.mosaic_period, "colour filter period")
    hdr["NLEVELS"] = (result.schedule.num_levels, "alignment pyramid levels")
    path.parent.mkdir(parents=True, exist_ok=True)
    fits.writeto(str(path), data, hdr, overwrite=True)


@log_exception
def cmd_run(args) -> int:
    if args.config is not None:
        config_path = Path(args.config).expanduser().resolve()
        if not config_path.is_file():
            sys.stderr.write(f"config not found: {config_path}\n")
            return 2
        try:
            cfg = ConfigurationManager.load_config(config_path)
        except ValueError as e:
            sys.stderr.write(f"{e}\n")
            return 2
    else:
        cfg = ConfigurationManager.with_defaults()
    cfg = _apply_overrides(cfg, args)

    inputs = [Path(p).expanduser().resolve() for p in args.files]
    missing = [str(p) for p in inputs if not p.is_file()]
    if missing:
        sys.stderr.write(f"input not found: {', '.join(missing)}\n")
        return 2

    setup_logging(cfg["logging"]["level"], cfg["logging"]["log_dir"])

    try:
        config = MergeConfig.from_dict(cfg)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    output = Path(args.output).expanduser().resolve()
    output.parent.mkdir(parents=True, exist_ok=True)
    events_path = output.with_name(output.name + ".events.jsonl")
    run_id = str(uuid.uuid4())

    with events_path.open("w", encoding="utf-8") as log_fp:
        blobs = read_blobs(inputs)
        emit(
            {
                "type": "run_start",
                "run_id": run_id,
                "ts": datetime.now(timezone.utc).isoformat(),
                "frame_count": len(blobs),
                "inputs": [{"path": str(p), "sha256": sha256_bytes(b)} for p, b in zip(inputs, blobs)],
                "output": str(output),
                "decoder": config.decoder,
                "robustness": config.robustness,
            },
            log_fp,
            echo=True,
        )

        status = "ok"
        error = None
        rc = 0
        context = ComputeContext(config.max_workers, ResourceManager(config.memory_threshold_percent))
        try:
            with context:
                result = align_and_merge(
                    blobs,
                    config=config,
                    context=context,
                    log_fp=log_fp,
                    run_id=run_id,
                    echo_events=True,
                )
            write_fits(output, result, as_uint16=args.uint16)
            logger.info(f"Wrote merged frame to {output}")
            logger.debug(f"Resources: {context.resources.get_resource_status()}")
        except BurstProcessingError as e:
            status = "error"
            error = f"{type(e).__name__}: {e}"
            rc = 1
        except ValueError as e:
            # configuration that does not fit this burst (tile grid, reference index)
            logger.error(f"Invalid configuration for this burst: {e}")
            status = "error"
            error = f"{type(e).__name__}: {e}"
            rc = 2

        end = {
            "type": "run_end",
            "run_id": run_id,
            "ts": datetime.now(timezone.utc).isoformat(),
            "status": status,
        }
        if error is not None:
            end["error"] = error
        emit(end, log_fp, echo=True)

    return rc


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="burst_stack_runner")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run")
    p_run.add_argument("files", nargs="+", help="Raw captures in burst order")
    p_run.add_argument("--config", default=None)
    p_run.add_argument("--output", required=True)
    p_run.add_argument("--decoder", choices=["rawpy", "fits", "npy"], default=None)
    p_run.add_argument("--robustness", type=float, default=None)
    p_run.add_argument("--tile-size", type=int, default=None)
    p_run.add_argument("--uint16", action="store_true", help="Write the merged frame as 16-bit integers")
    p_run.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None)
    p_run.add_argument("--log-dir", default=None)
    p_run.set_defaults(func=cmd_run)

    return p


def main(argv=None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
