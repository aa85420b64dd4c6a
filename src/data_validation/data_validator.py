"""
Schema declaration and validation for the cleaned song table.

Every column of the cleaned table is declared up front with a storage dtype
and a semantic type (numeric, categorical or identifier). ``apply_schema``
coerces a frame to those declarations and ``validate_data`` checks it,
writing a JSON report.
"""
import logging
import os
import json
from typing import Any, Dict, List, Optional, Tuple
import pandas as pd

logger = logging.getLogger(__name__)

SEMANTIC_TYPES = ("numeric", "categorical", "identifier")
DTYPE_KINDS = {"int": "iu", "float": "f", "str": "OUS", "bool": "b"}


def _is_dtype_compatible(series, expected_dtype: str) -> bool:
    if expected_dtype == "category":
        return isinstance(series.dtype, pd.CategoricalDtype)
    return series.dtype.kind in DTYPE_KINDS.get(expected_dtype, "")


def schema_columns(config_dict: Dict[str, Any]) -> List[Dict[str, Any]]:
    return config_dict.get("data_validation", {}).get("schema", {}).get("columns", [])


def columns_by_semantic_type(config_dict: Dict[str, Any], semantic_type: str) -> List[str]:
    """Names of the declared columns with the given semantic type."""
    if semantic_type not in SEMANTIC_TYPES:
        raise ValueError(f"Unknown semantic type '{semantic_type}'. Expected one of {SEMANTIC_TYPES}.")
    return [c["name"] for c in schema_columns(config_dict) if c.get("semantic_type") == semantic_type]


def apply_schema(dataframe: pd.DataFrame, config_dict: Dict[str, Any]) -> pd.DataFrame:
    """
    Coerce each column to its declared dtype.

    Raises ValueError for columns that are present but undeclared and for
    declarations with an unknown semantic type; no type is ever inferred.
    """
    declared = {c["name"]: c for c in schema_columns(config_dict)}
    if not declared:
        raise ValueError("No data_validation.schema.columns declared; cannot type the table.")

    undeclared = [col for col in dataframe.columns if col not in declared]
    if undeclared:
        logger.error(f"Columns without a schema declaration: {undeclared}")
        raise ValueError(f"Columns without a schema declaration: {undeclared}")

    typed = dataframe.copy()
    for col in typed.columns:
        col_schema = declared[col]
        semantic_type = col_schema.get("semantic_type")
        if semantic_type not in SEMANTIC_TYPES:
            raise ValueError(
                f"Column '{col}' declares semantic type '{semantic_type}'; "
                f"expected one of {SEMANTIC_TYPES}."
            )
        dtype = col_schema.get("dtype", "category" if semantic_type != "numeric" else "float")
        if dtype == "category":
            typed[col] = typed[col].astype("category")
        elif dtype == "int":
            typed[col] = pd.to_numeric(typed[col], errors="raise").astype("int64")
        elif dtype == "float":
            typed[col] = pd.to_numeric(typed[col], errors="raise").astype("float64")
        elif dtype == "str":
            typed[col] = typed[col].astype(str)
        else:
            raise ValueError(f"Column '{col}' declares unsupported dtype '{dtype}'.")
    logger.debug(f"Applied schema to {len(typed.columns)} columns.")
    return typed


def _column_issues(dataframe: pd.DataFrame, col_schema: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str], List[str]]:
    """Checks one declared column; returns its report entry, errors and warnings."""
    name = col_schema["name"]
    required = col_schema.get("required", True)
    if name not in dataframe.columns:
        if not required:
            return {"status": "not present (optional)"}, [], []
        msg = f"Missing required column: {name}"
        return {"status": "missing", "error": msg}, [msg], []

    entry = {"status": "present", "semantic_type": col_schema.get("semantic_type")}
    errors, warnings = [], []

    n_missing = int(dataframe[name].isnull().sum())
    if n_missing:
        entry["missing_count"] = n_missing
        (errors if required else warnings).append(f"Column '{name}' has {n_missing} missing values")

    values = dataframe[name].dropna()
    expected = col_schema.get("dtype")
    if expected and not _is_dtype_compatible(values, expected):
        msg = f"Column '{name}' has dtype '{values.dtype}', expected '{expected}'"
        entry.update({"dtype": str(values.dtype), "dtype_expected": expected, "error": msg})
        return entry, errors + [msg], warnings

    if isinstance(values.dtype, pd.CategoricalDtype):
        entry["n_categories"] = int(len(values.cat.categories))
        return entry, errors, warnings

    for bound, outside, label in (("min", values.__lt__, "below"), ("max", values.__gt__, "above")):
        if bound in col_schema:
            n_outside = int(outside(col_schema[bound]).sum())
            if n_outside:
                entry[f"{label}_{bound}"] = n_outside
                errors.append(f"Column '{name}' has {n_outside} values {label} {bound} ({col_schema[bound]})")
    return entry, errors, warnings


def _duplicate_key_rows(dataframe: pd.DataFrame, unique_key: List[str]) -> int:
    missing = [k for k in unique_key if k not in dataframe.columns]
    if missing:
        raise KeyError(f"Unique key columns missing: {missing}")
    return int(dataframe.duplicated(subset=unique_key).sum())


def validate_data(dataframe: pd.DataFrame, config_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Checks the frame against the declared schema and the unique key.

    Always writes a JSON report. With ``action_on_error: raise`` any error
    raises ValueError after the report is written; with ``warn`` the errors
    are only logged.
    """
    dv_cfg = config_dict.get("data_validation", {})
    if not dv_cfg.get("enabled", True):
        logger.info("Data validation is disabled in config.")
        return None
    report_path = str(dv_cfg.get("report_path", "logs/validation_report.json"))

    errors, warnings, details = [], [], {}
    for col_schema in schema_columns(config_dict):
        entry, col_errors, col_warnings = _column_issues(dataframe, col_schema)
        details[col_schema["name"]] = entry
        errors.extend(col_errors)
        warnings.extend(col_warnings)
    if not details:
        logger.warning("No data_validation.schema.columns defined in config; only the unique key is checked.")

    unique_key = list(dv_cfg.get("unique_key") or [])
    if unique_key:
        try:
            duplicated = _duplicate_key_rows(dataframe, unique_key)
        except KeyError as e:
            errors.append(str(e.args[0]))
        else:
            details["_unique_key"] = {"columns": unique_key, "duplicated_rows": duplicated}
            if duplicated:
                errors.append(f"{duplicated} rows duplicate the key {unique_key}")

    for msg in errors:
        logger.error("%s", msg)
    for msg in warnings:
        logger.warning("%s", msg)

    result = {
        "result": "fail" if errors else "pass",
        "n_rows": int(len(dataframe)),
        "errors": errors,
        "warnings": warnings,
        "details": details,
    }
    _write_report(result, report_path)

    if errors:
        if dv_cfg.get("action_on_error", "raise").lower() == "raise":
            raise ValueError(f"Data validation failed with {len(errors)} errors. See {report_path} for details")
        logger.warning("Data validation errors detected but proceeding as per config.")
    return result


def _write_report(result: Dict[str, Any], report_path: str) -> None:
    report_dir = os.path.dirname(report_path)
    if report_dir:
        os.makedirs(report_dir, exist_ok=True)
    with open(report_path, "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2)
    logger.info(f"Validation report written to {report_path}")
