"""
Burst-Stack Backend CLI

Command-line interface for backend operations:
- Config schema and validation
- Default config generation
- Alignment schedule planning for a given resolution

All commands output JSON for easy parsing by callers.

Usage:
    python burst_stack_backend_cli.py <command> [args]
"""

import argparse
import json
import sys
from pathlib import Path

from burst_stack_backend.configuration import ConfigurationManager, MergeConfig
from burst_stack_backend.schema import load_schema_json
from burst_stack_backend.tile_grid import build_schedule
from burst_stack_backend.validate import validate_config_yaml_text


def _print_json(obj: object) -> None:
    sys.stdout.write(json.dumps(obj, ensure_ascii=False, indent=2))
    sys.stdout.write("\n")
    sys.stdout.flush()


def cmd_get_schema(_: argparse.Namespace) -> int:
    _print_json(load_schema_json())
    return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
    if args.path is not None:
        yaml_text = Path(args.path).read_text(encoding="utf-8")
    elif args.stdin:
        yaml_text = sys.stdin.read()
    else:
        yaml_text = args.yaml

    if yaml_text is None:
        sys.stderr.write("validate-config requires --path, --yaml or --stdin\n")
        return 2

    result = validate_config_yaml_text(yaml_text=yaml_text, schema_path=args.schema)
    if args.path is not None:
        result["path"] = args.path
    _print_json(result)
    if args.strict_exit_codes and not result["valid"]:
        return 1
    return 0


def cmd_default_config(args: argparse.Namespace) -> int:
    cfg = ConfigurationManager.generate_default_config(Path(args.path))
    _print_json({"path": args.path, "saved": True, "config": cfg})
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    if args.config is not None:
        try:
            cfg = ConfigurationManager.load_config(Path(args.config))
        except ValueError as e:
            _print_json({"ok": False, "error": str(e)})
            return 1
    else:
        cfg = None

    try:
        mc = MergeConfig.from_dict(cfg)
        schedule = build_schedule(
            args.width,
            args.height,
            tile_size=mc.tile_size,
            mosaic_period=mc.mosaic_period,
            search_bound=mc.search_bound,
            search_radius=mc.search_radius,
            min_tile_size=mc.min_tile_size,
        )
    except ValueError as e:
        _print_json({"ok": False, "error": str(e)})
        return 1

    # walk the pooled shapes the pyramid will have
    levels = []
    h, w = args.height, args.width
    for level, factor in enumerate(schedule.downscale_factors):
        h, w = h // factor, w // factor
        geometry = schedule.geometry(level, (h, w))
        levels.append(
            {
                "level": level,
                "width": w,
                "height": h,
                "downscale_factor": factor,
                "tile_size": geometry.tile_size,
                "search_radius": geometry.search_radius,
                "n_tiles_x": geometry.n_tiles_x,
                "n_tiles_y": geometry.n_tiles_y,
                "n_candidates": geometry.n_pos_2d,
            }
        )

    _print_json({"ok": True, "schedule": schedule.to_dict(), "levels": levels})
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="burst_stack_backend_cli")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_schema = sub.add_parser("get-schema")
    p_schema.set_defaults(func=cmd_get_schema)

    p_validate = sub.add_parser("validate-config")
    src = p_validate.add_mutually_exclusive_group(required=True)
    src.add_argument("--path")
    src.add_argument("--yaml")
    src.add_argument("--stdin", action="store_true")
    p_validate.add_argument(
        "--schema",
        default=None,
        help="Optional path to a schema file (defaults to the bundled burst_stack.schema.json)",
    )
    p_validate.add_argument(
        "--strict-exit-codes",
        action="store_true",
        help="Return exit code 1 when validation fails. Default: always 0 and rely on JSON result.",
    )
    p_validate.set_defaults(func=cmd_validate_config)

    p_default = sub.add_parser("default-config")
    p_default.add_argument("path")
    p_default.set_defaults(func=cmd_default_config)

    p_plan = sub.add_parser("plan")
    p_plan.add_argument("--width", type=int, required=True)
    p_plan.add_argument("--height", type=int, required=True)
    p_plan.add_argument("--config", default=None)
    p_plan.set_defaults(func=cmd_plan)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
