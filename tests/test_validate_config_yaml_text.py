import yaml

from burst_stack_backend.validate import validate_config_yaml_text


def _base_cfg() -> dict:
    return {
        "alignment": {"tile_size": 16, "search_radius": 2, "search_bound": 64, "min_tile_size": 8},
        "merge": {"robustness": 1.0, "kernel_size": 5},
        "reference": {"policy": "auto", "index": None, "small_burst_max": 5, "large_burst_index": 6},
        "data": {"mosaic_period": 2, "decoder": "rawpy"},
        "runtime": {"max_workers": 4, "memory_threshold_percent": 95.0},
        "logging": {"level": "INFO", "log_dir": None},
    }


def _validate(cfg: dict) -> dict:
    yaml_text = yaml.safe_dump(cfg, sort_keys=False)
    return validate_config_yaml_text(yaml_text=yaml_text)


def _codes(result: dict) -> set[str]:
    return {e.get("code") for e in result.get("errors", [])}


def _warning_codes(result: dict) -> set[str]:
    return {w.get("code") for w in result.get("warnings", [])}


def test_valid_config_is_valid() -> None:
    res = _validate(_base_cfg())
    assert res["valid"] is True
    assert res["errors"] == []
    assert res["warnings"] == []


def test_empty_document_is_valid() -> None:
    res = validate_config_yaml_text("")
    assert res["valid"] is True


def test_partial_config_is_valid() -> None:
    res = _validate({"merge": {"robustness": 0.25}})
    assert res["valid"] is True


def test_yaml_parse_error() -> None:
    res = validate_config_yaml_text("merge: [unclosed")
    assert res["valid"] is False
    assert "yaml_parse_error" in _codes(res)


def test_config_not_object() -> None:
    res = validate_config_yaml_text("- a\n- b\n")
    assert res["valid"] is False
    assert "config_not_object" in _codes(res)


def test_robustness_out_of_range() -> None:
    cfg = _base_cfg()
    cfg["merge"]["robustness"] = 1.5
    res = _validate(cfg)
    assert res["valid"] is False
    assert "schema_validation_error" in _codes(res)
    assert any(e["path"] == "$.merge.robustness" for e in res["errors"])


def test_unknown_section_rejected() -> None:
    cfg = _base_cfg()
    cfg["stacking"] = {"method": "average"}
    res = _validate(cfg)
    assert res["valid"] is False
    assert "schema_validation_error" in _codes(res)


def test_unknown_decoder_rejected() -> None:
    cfg = _base_cfg()
    cfg["data"]["decoder"] = "jpeg"
    res = _validate(cfg)
    assert res["valid"] is False
    assert "schema_validation_error" in _codes(res)


def test_odd_tile_size_invalid() -> None:
    cfg = _base_cfg()
    cfg["alignment"]["tile_size"] = 15
    res = _validate(cfg)
    assert res["valid"] is False
    assert "tile_size_invalid" in _codes(res)


def test_tile_size_below_floor_invalid() -> None:
    cfg = _base_cfg()
    cfg["alignment"]["tile_size"] = 4
    res = _validate(cfg)
    assert res["valid"] is False
    assert "tile_size_invalid" in _codes(res)


def test_auto_tile_size_valid() -> None:
    cfg = _base_cfg()
    cfg["alignment"]["tile_size"] = 0
    res = _validate(cfg)
    assert res["valid"] is True


def test_min_tile_size_invalid() -> None:
    cfg = _base_cfg()
    cfg["alignment"]["min_tile_size"] = 7
    res = _validate(cfg)
    assert res["valid"] is False
    assert "min_tile_size_invalid" in _codes(res)


def test_fixed_reference_requires_index() -> None:
    cfg = _base_cfg()
    cfg["reference"]["policy"] = "fixed"
    res = _validate(cfg)
    assert res["valid"] is False
    assert "reference_index_missing" in _codes(res)

    cfg["reference"]["index"] = 0
    assert _validate(cfg)["valid"] is True


def test_small_search_bound_is_warning() -> None:
    cfg = _base_cfg()
    cfg["alignment"]["tile_size"] = 32
    cfg["alignment"]["search_bound"] = 48
    res = _validate(cfg)
    assert res["valid"] is True
    assert "search_bound_small" in _warning_codes(res)
