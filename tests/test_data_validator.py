import json

import numpy as np
import pandas as pd
import pytest

from src.data_validation import data_validator
from conftest import make_song_table


def _config(tmp_path, columns, **dv):
    cfg = {
        "data_validation": {
            "enabled": True,
            "action_on_error": "raise",
            "report_path": str(tmp_path / "report.json"),
            "schema": {"columns": columns},
        }
    }
    cfg["data_validation"].update(dv)
    return cfg


SIMPLE_SCHEMA = [
    {"name": "year", "dtype": "int", "semantic_type": "numeric", "required": True, "min": 1958, "max": 2021},
    {"name": "song", "dtype": "category", "semantic_type": "identifier", "required": True},
    {"name": "mode", "dtype": "category", "semantic_type": "categorical", "required": True},
    {"name": "valence", "dtype": "float", "semantic_type": "numeric", "required": True, "min": 0.0, "max": 1.0},
]


def _frame():
    return pd.DataFrame({
        "year": [1965, 1999, 2015],
        "song": ["a", "b", "c"],
        "mode": [0, 1, 1],
        "valence": [0.1, 0.5, 0.9],
    })


def test_apply_schema_types_columns(tmp_path):
    typed = data_validator.apply_schema(_frame(), _config(tmp_path, SIMPLE_SCHEMA))
    assert typed["year"].dtype == np.int64
    assert isinstance(typed["song"].dtype, pd.CategoricalDtype)
    assert isinstance(typed["mode"].dtype, pd.CategoricalDtype)
    assert typed["valence"].dtype == np.float64


def test_apply_schema_rejects_undeclared_column(tmp_path):
    df = _frame().assign(extra=1)
    with pytest.raises(ValueError, match="without a schema declaration"):
        data_validator.apply_schema(df, _config(tmp_path, SIMPLE_SCHEMA))


def test_apply_schema_rejects_unknown_semantic_type(tmp_path):
    schema = [dict(c) for c in SIMPLE_SCHEMA]
    schema[2]["semantic_type"] = "ordinal"
    with pytest.raises(ValueError, match="semantic type 'ordinal'"):
        data_validator.apply_schema(_frame(), _config(tmp_path, schema))


def test_apply_schema_requires_declarations(tmp_path):
    with pytest.raises(ValueError):
        data_validator.apply_schema(_frame(), _config(tmp_path, []))


def test_columns_by_semantic_type(test_config):
    assert data_validator.columns_by_semantic_type(test_config, "identifier") == ["song", "performer"]
    assert data_validator.columns_by_semantic_type(test_config, "categorical") == ["mode"]
    with pytest.raises(ValueError):
        data_validator.columns_by_semantic_type(test_config, "text")


def test_validate_data_pass_writes_report(tmp_path):
    cfg = _config(tmp_path, SIMPLE_SCHEMA, unique_key=["year", "song"])
    typed = data_validator.apply_schema(_frame(), cfg)
    report = data_validator.validate_data(typed, cfg)
    assert report["result"] == "pass"
    with open(tmp_path / "report.json") as f:
        on_disk = json.load(f)
    assert on_disk["n_rows"] == 3
    assert on_disk["details"]["mode"]["n_categories"] == 2


def test_validate_data_out_of_range_raises(tmp_path):
    cfg = _config(tmp_path, SIMPLE_SCHEMA)
    df = data_validator.apply_schema(_frame().assign(valence=[0.1, 0.5, 1.5]), cfg)
    with pytest.raises(ValueError, match="Data validation failed"):
        data_validator.validate_data(df, cfg)
    with open(tmp_path / "report.json") as f:
        on_disk = json.load(f)
    assert on_disk["result"] == "fail"
    assert any("above max" in e for e in on_disk["errors"])


def test_validate_data_duplicate_key_warns_when_configured(tmp_path, caplog):
    cfg = _config(tmp_path, SIMPLE_SCHEMA, unique_key=["year"], action_on_error="warn")
    df = data_validator.apply_schema(_frame().assign(year=[1965, 1965, 2015]), cfg)
    report = data_validator.validate_data(df, cfg)
    assert report["result"] == "fail"
    assert report["details"]["_unique_key"]["duplicated_rows"] == 1
    assert "proceeding as per config" in caplog.text


def test_validate_data_missing_required_column(tmp_path):
    cfg = _config(tmp_path, SIMPLE_SCHEMA, action_on_error="warn")
    report = data_validator.validate_data(_frame().drop(columns=["mode"]), cfg)
    assert "Missing required column: mode" in report["errors"]


def test_validate_data_wrong_dtype(tmp_path):
    cfg = _config(tmp_path, SIMPLE_SCHEMA, action_on_error="warn")
    report = data_validator.validate_data(_frame(), cfg)  # song/mode not yet categorical
    assert any("expected 'category'" in e for e in report["errors"])


def test_validate_data_disabled_returns_none(tmp_path):
    cfg = _config(tmp_path, SIMPLE_SCHEMA, enabled=False)
    assert data_validator.validate_data(_frame(), cfg) is None


def test_project_schema_accepts_synthetic_songs(test_config):
    df = data_validator.apply_schema(make_song_table(), test_config)
    assert data_validator.validate_data(df, test_config)["result"] == "pass"
