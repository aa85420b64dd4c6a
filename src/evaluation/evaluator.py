"""
Regression model evaluation utilities.

- Computes standard regression metrics from predictions.
- Summarizes cross-validation folds (mean error and its standard error).
- Implements the one-standard-error rule for hyperparameter selection; the
  selector can be passed straight to ``GridSearchCV(refit=...)``.
"""

import logging
from functools import partial
from typing import Any, Callable, Dict, Mapping, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error, r2_score, mean_absolute_error

# Assumes logging is configured by the calling script (e.g., model.py)
logger = logging.getLogger(__name__)

NAN_METRICS = {"mse": np.nan, "rmse": np.nan, "mae": np.nan, "r2": np.nan, "adj_r2": np.nan}


def round_metrics_dict(metrics_dict: Dict[str, Any], ndigits: int = 4) -> Dict[str, Any]:
    """Round float values in a (possibly nested) metrics dictionary."""
    rounded = {}
    for k, v in metrics_dict.items():
        if isinstance(v, dict):
            rounded[k] = round_metrics_dict(v, ndigits)
        elif isinstance(v, (bool, np.bool_)):
            rounded[k] = bool(v)
        elif isinstance(v, (float, np.floating)):
            rounded[k] = round(float(v), ndigits)
        elif isinstance(v, (int, np.integer)):
            rounded[k] = int(v)
        else:
            rounded[k] = v
    return rounded


def calculate_regression_metrics_from_predictions(
    y_true: pd.Series,
    y_pred: pd.Series,
    num_features: int
) -> Dict[str, float]:
    """
    Calculate a standard set of regression metrics from true and predicted values.

    Args:
        y_true: Ground truth target values.
        y_pred: Predicted target values.
        num_features: Number of features used in the model to calculate Adjusted R-squared.

    Returns:
        Dictionary of metric names and their values.
    """
    if len(y_true) != len(y_pred):
        raise ValueError(
            f"Length of y_true ({len(y_true)}) and y_pred ({len(y_pred)}) must be the same."
        )
    if len(y_true) == 0:
        logger.warning("y_true is empty. Returning NaN for all metrics.")
        return dict(NAN_METRICS)

    metrics = {}
    metrics["mse"] = mean_squared_error(y_true, y_pred)
    metrics["rmse"] = np.sqrt(metrics["mse"])
    metrics["mae"] = mean_absolute_error(y_true, y_pred)
    metrics["r2"] = r2_score(y_true, y_pred)

    n = len(y_true)
    p = num_features
    if n - p - 1 > 0:
        metrics["adj_r2"] = 1 - (1 - metrics["r2"]) * (n - 1) / (n - p - 1)
    else:
        logger.warning(
            f"Cannot calculate Adjusted R-squared: n ({n}) - p ({p}) - 1 is not positive."
        )
        metrics["adj_r2"] = np.nan

    return metrics


def summarize_cv_results(cv_results: Mapping[str, Any], param: str) -> pd.DataFrame:
    """
    Per-candidate mean absolute error and its standard error across folds.

    ``cv_results`` is a ``GridSearchCV.cv_results_`` mapping scored with
    ``neg_mean_absolute_error``; fold scores are negated back into errors.
    """
    split_keys = sorted(
        (k for k in cv_results if k.startswith("split") and k.endswith("_test_score")),
        key=lambda k: int(k[len("split"):-len("_test_score")])
    )
    if not split_keys:
        raise ValueError("cv_results holds no per-split test scores.")

    fold_errors = -np.column_stack([np.asarray(cv_results[k], dtype=float) for k in split_keys])
    n_folds = fold_errors.shape[1]
    std = fold_errors.std(axis=1, ddof=1) if n_folds > 1 else np.zeros(fold_errors.shape[0])

    return pd.DataFrame({
        param: [p[param] for p in cv_results["params"]],
        "mean_mae": fold_errors.mean(axis=1),
        "std_err": std / np.sqrt(n_folds),
        "n_folds": n_folds,
    })


def select_by_one_std_err(cv_results: Mapping[str, Any], param: str, larger_is_simpler: bool = True) -> int:
    """
    Index of the simplest candidate whose mean error is within one standard
    error of the best candidate's mean error.
    """
    summary = summarize_cv_results(cv_results, param)
    best = int(summary["mean_mae"].idxmin())
    threshold = summary.loc[best, "mean_mae"] + summary.loc[best, "std_err"]
    within = summary[summary["mean_mae"] <= threshold]
    chosen = int(within[param].idxmax() if larger_is_simpler else within[param].idxmin())
    logger.info(
        f"One-SE rule on '{param}': best={summary.loc[best, param]} "
        f"(MAE {summary.loc[best, 'mean_mae']:.4f} +/- {summary.loc[best, 'std_err']:.4f}), "
        f"chosen={summary.loc[chosen, param]} (MAE {summary.loc[chosen, 'mean_mae']:.4f})"
    )
    return chosen


def one_std_err_refit(param: str, larger_is_simpler: bool = True) -> Callable[[Mapping[str, Any]], int]:
    """``GridSearchCV`` refit callable applying the one-standard-error rule to ``param``."""
    return partial(select_by_one_std_err, param=param, larger_is_simpler=larger_is_simpler)


def log_regression_metrics(metrics: Dict[str, Any], split_label: Optional[str] = None) -> Dict[str, Any]:
    """Log rounded metrics and return them."""
    rounded = round_metrics_dict(metrics)
    log_msg_split = f" for '{split_label}'" if split_label else ""
    logger.info(f"Regression Evaluation Metrics{log_msg_split}: {rounded}")
    return rounded
