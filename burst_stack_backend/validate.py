from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from burst_stack_backend.schema import load_schema_json


@dataclass
class ValidationIssue:
    severity: str  # "error" | "warning"
    code: str
    path: str
    message: str


def _json_path(parts: list[str | int]) -> str:
    if not parts:
        return "$"
    out = "$"
    for p in parts:
        if isinstance(p, int):
            out += f"[{p}]"
        elif p.isidentifier():
            out += f".{p}"
        else:
            out += f"['{p}']"
    return out


def _as_int(x: Any) -> int | None:
    if isinstance(x, bool):
        return None
    if isinstance(x, int):
        return x
    return None


def _result(issues: list[ValidationIssue]) -> dict:
    return {
        "valid": not any(i.severity == "error" for i in issues),
        "errors": [i.__dict__ for i in issues if i.severity == "error"],
        "warnings": [i.__dict__ for i in issues if i.severity == "warning"],
    }


def validate_config(cfg: Any, schema_path: str | None = None) -> dict:
    """Schema and cross-field validation of an already parsed configuration."""
    issues: list[ValidationIssue] = []

    if not isinstance(cfg, dict):
        issues.append(
            ValidationIssue(
                severity="error",
                code="config_not_object",
                path="$",
                message="configuration root must be a mapping/object",
            )
        )
        return _result(issues)

    schema = load_schema_json(schema_path)
    validator = Draft202012Validator(schema)

    for err in sorted(validator.iter_errors(cfg), key=lambda e: [str(p) for p in e.path]):
        issues.append(
            ValidationIssue(
                severity="error",
                code="schema_validation_error",
                path=_json_path(list(err.path)),
                message=err.message,
            )
        )

    def get_path(obj: dict, keys: list[str]) -> Any:
        cur: Any = obj
        for k in keys:
            if not isinstance(cur, dict) or k not in cur:
                return None
            cur = cur[k]
        return cur

    min_tile = _as_int(get_path(cfg, ["alignment", "min_tile_size"]))
    if min_tile is not None and min_tile % 2:
        issues.append(
            ValidationIssue(
                severity="error",
                code="min_tile_size_invalid",
                path="$.alignment.min_tile_size",
                message="alignment.min_tile_size must be even",
            )
        )

    tile = _as_int(get_path(cfg, ["alignment", "tile_size"]))
    floor = min_tile if min_tile is not None else 8
    if tile is not None and tile != 0 and (tile % 2 or tile < floor):
        issues.append(
            ValidationIssue(
                severity="error",
                code="tile_size_invalid",
                path="$.alignment.tile_size",
                message=f"alignment.tile_size must be 0 (auto) or an even number >= {floor}",
            )
        )

    policy = get_path(cfg, ["reference", "policy"])
    if policy == "fixed" and get_path(cfg, ["reference", "index"]) is None:
        issues.append(
            ValidationIssue(
                severity="error",
                code="reference_index_missing",
                path="$.reference.index",
                message="reference.policy 'fixed' requires reference.index",
            )
        )

    # soft: a coarsest level smaller than two tiles leaves a single tile to search
    bound = _as_int(get_path(cfg, ["alignment", "search_bound"]))
    if bound is not None and tile:
        if bound < 2 * tile:
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code="search_bound_small",
                    path="$.alignment.search_bound",
                    message="alignment.search_bound is smaller than two tiles; the coarsest level holds a single tile",
                )
            )

    return _result(issues)


def validate_config_yaml_text(
    yaml_text: str,
    schema_path: str | None = None,
) -> dict:
    try:
        cfg = yaml.safe_load(yaml_text)
    except yaml.YAMLError as e:
        return _result(
            [
                ValidationIssue(
                    severity="error",
                    code="yaml_parse_error",
                    path="$",
                    message=str(e),
                )
            ]
        )

    # an empty document means "all defaults"
    if cfg is None:
        cfg = {}
    return validate_config(cfg, schema_path)
