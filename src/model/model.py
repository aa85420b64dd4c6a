"""
Supervised comparison of three popularity models.

Each model is fitted on the cleaned song table through its recipe pipeline
and assessed with shuffled k-fold cross-validation on mean absolute error:

- LASSO: penalty tuned over a log grid, picked with the one-standard-error rule.
- GAM: smoothing penalty multiplier tuned the same way.
- Random forest: fixed hyperparameters, ranked by impurity importance.

Any failing fold or convergence warning aborts the comparison.
"""
import os
import json
import logging
import warnings
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn.exceptions import ConvergenceWarning as SklearnConvergenceWarning
from sklearn.linear_model import Lasso
from sklearn.model_selection import GridSearchCV, KFold, cross_validate
from statsmodels.tools.sm_exceptions import ConvergenceWarning as StatsmodelsConvergenceWarning

from src.data_load.data_loader import load_config
from src.evaluation.evaluator import (
    calculate_regression_metrics_from_predictions,
    log_regression_metrics,
    one_std_err_refit,
    round_metrics_dict,
    summarize_cv_results,
)
from src.features.pipeline import Recipe, build_pipeline
from src.model.gam import GamRegressor
from src.preprocess.preprocessing import get_logger, load_processed_data
from src.visualization import plots

# Module-level logger - will be initialized by main_modeling
logger = logging.getLogger(__name__)

MODEL_NAMES = ("lasso", "gam", "random_forest")


@dataclass
class ModelResult:
    """Outcome of one comparator call."""
    name: str
    predictions: pd.Series
    metrics: Dict[str, float]
    importance: pd.Series
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    cv_summary: Optional[pd.DataFrame] = None
    recipe: Dict[str, Any] = field(default_factory=dict)

    def summary(self, top_n: int = 10) -> Dict[str, Any]:
        return {
            "hyperparameters": self.hyperparameters,
            "metrics": round_metrics_dict(self.metrics),
            "top_features": round_metrics_dict(self.importance.head(top_n).to_dict()),
            "recipe": self.recipe,
        }


@contextmanager
def convergence_is_fatal(model_name: str):
    """Turns convergence warnings from scikit-learn or statsmodels into a RuntimeError."""
    with warnings.catch_warnings():
        warnings.simplefilter("error", category=SklearnConvergenceWarning)
        warnings.simplefilter("error", category=StatsmodelsConvergenceWarning)
        try:
            yield
        except (SklearnConvergenceWarning, StatsmodelsConvergenceWarning) as e:
            logger.error(f"{model_name}: fit did not converge: {e}")
            raise RuntimeError(f"{model_name} fit did not converge: {e}") from e


def validate_modeling_config(config: Dict[str, Any]) -> None:
    """Validate the presence of essential keys in the modeling configuration."""
    logger.info("Validating modeling configuration.")
    for key in ["recipe", "model", "logging", "data_source", "artifacts"]:
        if key not in config:
            raise KeyError(f"Missing required top-level config key: '{key}'")
    for name in MODEL_NAMES:
        if name not in config["model"]:
            raise KeyError(f"Missing '{name}' section in 'model' config.")
    if "metrics_path" not in config["artifacts"]:
        raise KeyError("Missing 'metrics_path' in 'artifacts' config.")
    logger.info("Modeling configuration validation successful.")


def make_cv(config: Dict[str, Any]) -> KFold:
    """Shuffled k-fold splitter seeded from the top-level ``seed``."""
    cv_cfg = config.get("model", {}).get("cv", {})
    shuffle = cv_cfg.get("shuffle", True)
    return KFold(
        n_splits=int(cv_cfg.get("folds", 10)),
        shuffle=shuffle,
        random_state=config.get("seed", 42) if shuffle else None,
    )


def penalty_grid(lasso_cfg: Dict[str, Any]) -> np.ndarray:
    grid_cfg = lasso_cfg.get("penalty_grid", {})
    return np.logspace(
        grid_cfg.get("log10_min", -4),
        grid_cfg.get("log10_max", 1),
        int(grid_cfg.get("levels", 50)),
    )


def _n_jobs(config: Dict[str, Any]) -> Optional[int]:
    return config.get("model", {}).get("cv", {}).get("n_jobs", 1)


def tune_one_std_err(
    pipeline,
    param: str,
    grid,
    X: pd.DataFrame,
    y: pd.Series,
    cv: KFold,
    n_jobs: Optional[int] = 1,
    larger_is_simpler: bool = True,
) -> Tuple[GridSearchCV, pd.DataFrame]:
    """
    Cross-validates ``pipeline`` over ``grid`` values of ``param`` on MAE and
    refits the simplest candidate within one standard error of the best.
    """
    search = GridSearchCV(
        pipeline,
        param_grid={param: list(grid)},
        scoring="neg_mean_absolute_error",
        cv=cv,
        n_jobs=n_jobs,
        refit=one_std_err_refit(param, larger_is_simpler=larger_is_simpler),
        error_score="raise",
    )
    search.fit(X, y)
    return search, summarize_cv_results(search.cv_results_, param)


def _result_metrics(cv_summary: pd.DataFrame, index: int, y: pd.Series, predictions: np.ndarray,
                    n_features: int) -> Dict[str, float]:
    metrics = {
        "cv_mae": float(cv_summary.loc[index, "mean_mae"]),
        "cv_mae_std_err": float(cv_summary.loc[index, "std_err"]),
    }
    train = calculate_regression_metrics_from_predictions(y, pd.Series(predictions, index=y.index), n_features)
    metrics.update({f"train_{k}": v for k, v in train.items()})
    return metrics


def run_lasso(df: pd.DataFrame, config: Dict[str, Any]) -> ModelResult:
    """LASSO on standardized predictors, penalty chosen by the one-SE rule."""
    lasso_cfg = config.get("model", {}).get("lasso", {})
    recipe = Recipe.from_config(config, steps=lasso_cfg.get("steps"))
    X, y = recipe.prepare(df)
    pipeline = build_pipeline(recipe, Lasso(max_iter=int(lasso_cfg.get("max_iter", 10000))))
    param = "model__alpha"

    logger.info(f"LASSO: tuning penalty over {int(lasso_cfg.get('penalty_grid', {}).get('levels', 50))} values.")
    with convergence_is_fatal("lasso"):
        search, cv_summary = tune_one_std_err(pipeline, param, penalty_grid(lasso_cfg), X, y,
                                              make_cv(config), _n_jobs(config))

    best = search.best_estimator_
    model = best.named_steps["model"]
    coefficients = pd.Series(model.coef_, index=model.feature_names_in_)
    logger.info(f"LASSO coefficients (penalty={search.best_params_[param]:.4g}):\n{coefficients.round(4).to_string()}")
    logger.info(f"LASSO kept {int((coefficients != 0).sum())} of {len(coefficients)} predictors.")

    predictions = best.predict(X)
    n_nonzero = int((coefficients != 0).sum())
    result = ModelResult(
        name="lasso",
        predictions=pd.Series(predictions, index=df.index, name="lasso"),
        metrics=_result_metrics(cv_summary, search.best_index_, y, predictions, n_nonzero),
        importance=coefficients.abs().sort_values(ascending=False),
        hyperparameters={"penalty": float(search.best_params_[param])},
        cv_summary=cv_summary.rename(columns={param: "penalty"}),
        recipe=recipe.to_dict(),
    )
    log_regression_metrics(result.metrics, split_label="lasso")
    return result


def run_gam(df: pd.DataFrame, config: Dict[str, Any]) -> ModelResult:
    """Additive model: smooth numeric terms, linear categorical terms, penalty by the one-SE rule."""
    gam_cfg = config.get("model", {}).get("gam", {})
    recipe = Recipe.from_config(config, steps=gam_cfg.get("steps"))
    X, y = recipe.prepare(df)
    estimator = GamRegressor(
        linear_terms=list(gam_cfg.get("linear_terms", recipe.categorical)),
        smooth_df=int(gam_cfg.get("smooth_df", 2)),
        degree=int(gam_cfg.get("smooth_degree", 2)),
    )
    pipeline = build_pipeline(recipe, estimator)
    param = "model__penalty_multiplier"
    grid = [float(v) for v in gam_cfg.get("multiplier_grid", [0.0, 0.0001, 0.001, 0.01, 0.1, 1.0])]

    logger.info(f"GAM: tuning penalty multiplier over {grid}.")
    with convergence_is_fatal("gam"):
        search, cv_summary = tune_one_std_err(pipeline, param, grid, X, y, make_cv(config), _n_jobs(config))

    best = search.best_estimator_
    X_model = best[:-1].transform(X) if len(best.steps) > 1 else X
    importance = best.named_steps["model"].term_importance(X_model)
    logger.info(f"GAM term importance:\n{importance.round(4).to_string()}")
    effective_df = best.named_steps["model"].smooth_effective_df()
    logger.info(f"GAM smooth-term effective df:\n{effective_df.round(3).to_string()}")

    predictions = best.predict(X)
    n_terms = len(importance) * int(gam_cfg.get("smooth_df", 2))
    result = ModelResult(
        name="gam",
        predictions=pd.Series(predictions, index=df.index, name="gam"),
        metrics=_result_metrics(cv_summary, search.best_index_, y, predictions, n_terms),
        importance=importance,
        hyperparameters={"penalty_multiplier": float(search.best_params_[param]),
                         "smooth_df": int(gam_cfg.get("smooth_df", 2))},
        cv_summary=cv_summary.rename(columns={param: "penalty_multiplier"}),
        recipe=recipe.to_dict(),
    )
    log_regression_metrics(result.metrics, split_label="gam")
    return result


def run_random_forest(df: pd.DataFrame, config: Dict[str, Any]) -> ModelResult:
    """Random forest on unscaled predictors, ranked by impurity importance."""
    rf_cfg = config.get("model", {}).get("random_forest", {})
    recipe = Recipe.from_config(config, steps=rf_cfg.get("steps", []))
    X, y = recipe.prepare(df)
    forest = RandomForestRegressor(
        n_estimators=int(rf_cfg.get("n_estimators", 500)),
        min_samples_leaf=int(rf_cfg.get("min_samples_leaf", 2)),
        random_state=config.get("seed", 42),
        n_jobs=_n_jobs(config),
    )
    pipeline = build_pipeline(recipe, forest)

    logger.info(f"Random forest: {forest.n_estimators} trees, min_samples_leaf={forest.min_samples_leaf}.")
    scores = cross_validate(
        pipeline, X, y,
        cv=make_cv(config),
        scoring="neg_mean_absolute_error",
        error_score="raise",
    )
    fold_mae = -np.asarray(scores["test_score"], dtype=float)
    cv_summary = pd.DataFrame({
        "n_estimators": [forest.n_estimators],
        "mean_mae": [fold_mae.mean()],
        "std_err": [fold_mae.std(ddof=1) / np.sqrt(len(fold_mae)) if len(fold_mae) > 1 else 0.0],
        "n_folds": [len(fold_mae)],
    })

    pipeline.fit(X, y)
    model = pipeline.named_steps["model"]
    importance = pd.Series(model.feature_importances_, index=model.feature_names_in_).sort_values(ascending=False)
    logger.info(f"Random forest impurity importance:\n{importance.round(4).to_string()}")

    predictions = pipeline.predict(X)
    result = ModelResult(
        name="random_forest",
        predictions=pd.Series(predictions, index=df.index, name="random_forest"),
        metrics=_result_metrics(cv_summary, 0, y, predictions, len(importance)),
        importance=importance,
        hyperparameters={"n_estimators": forest.n_estimators, "min_samples_leaf": forest.min_samples_leaf},
        cv_summary=cv_summary,
        recipe=recipe.to_dict(),
    )
    log_regression_metrics(result.metrics, split_label="random_forest")
    return result


RUNNERS = {"lasso": run_lasso, "gam": run_gam, "random_forest": run_random_forest}


def compare_models(df: pd.DataFrame, config: Dict[str, Any],
                   models: Optional[List[str]] = None) -> Tuple[Dict[str, ModelResult], pd.DataFrame]:
    """Runs the requested models (all by default) and tabulates their CV error."""
    names = list(models) if models else list(MODEL_NAMES)
    unknown = [n for n in names if n not in RUNNERS]
    if unknown:
        raise ValueError(f"Unknown models {unknown}; expected any of {list(RUNNERS)}.")

    results = {}
    for name in names:
        logger.info(f"--- Fitting model: {name} ---")
        results[name] = RUNNERS[name](df, config)

    comparison = pd.DataFrame({name: res.metrics for name, res in results.items()}).T
    comparison = comparison.sort_values("cv_mae")
    logger.info(f"Model comparison (sorted by CV MAE):\n{comparison.round(4).to_string()}")
    return results, comparison


def save_metrics(results: Dict[str, ModelResult], comparison: pd.DataFrame, config: Dict[str, Any]) -> str:
    """Writes per-model summaries and the comparison table as JSON."""
    metrics_path = config["artifacts"]["metrics_path"]
    metrics_dir = os.path.dirname(metrics_path)
    if metrics_dir and not os.path.exists(metrics_dir):
        os.makedirs(metrics_dir, exist_ok=True)
    top_n = int(config.get("model", {}).get("importance_top_n", 15))
    payload = {
        "models": {name: res.summary(top_n) for name, res in results.items()},
        "best_model": str(comparison.index[0]),
        "seed": config.get("seed", 42),
    }
    with open(metrics_path, "w") as f:
        json.dump(payload, f, indent=4)
    logger.info(f"Evaluation metrics saved to: {metrics_path}")
    return metrics_path


def plot_results(results: Dict[str, ModelResult], comparison: pd.DataFrame, config: Dict[str, Any]) -> List[str]:
    plots_dir = config.get("artifacts", {}).get("plots_dir", "reports/figures")
    top_n = int(config.get("model", {}).get("importance_top_n", 15))
    paths = [plots.plot_model_comparison(comparison, os.path.join(plots_dir, "model_comparison.png"))]
    for name, res in results.items():
        paths.append(plots.plot_feature_importance(
            res.importance, os.path.join(plots_dir, f"{name}_importance.png"),
            title=f"{name}: feature ranking", top_n=top_n))
        if res.cv_summary is not None and len(res.cv_summary) > 1:
            param = res.cv_summary.columns[0]
            paths.append(plots.plot_cv_curve(
                res.cv_summary, param, res.hyperparameters[param],
                os.path.join(plots_dir, f"{name}_cv_curve.png")))
    return paths


def main_modeling(config_path: str = "config.yaml") -> Dict[str, ModelResult]:
    """Run the model comparison on the processed table."""
    config = load_config(config_path)

    global logger
    logger = get_logger(config.get("logging", {}), default_log_file="logs/modeling.log", name=__name__)

    try:
        validate_modeling_config(config)
        df = load_processed_data(config)
        if df.empty:
            raise ValueError("Processed data is empty; nothing to model.")
        results, comparison = compare_models(df, config, config["model"].get("active"))
    except Exception as e:
        logger.critical(f"Modeling failed: {e}")
        raise

    save_metrics(results, comparison, config)
    plot_results(results, comparison, config)
    logger.info(f"Modeling completed. Best model by CV MAE: {comparison.index[0]}")
    return results


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    config_file_path = "config.yaml"

    if not os.path.exists(config_file_path):
        logging.critical(f"CRITICAL: Main - Configuration file '{config_file_path}' not found. Modeling cannot start.")
    else:
        main_modeling(config_path=config_file_path)
