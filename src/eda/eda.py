"""
Exploratory summaries of the cleaned song table: descriptive statistics,
correlations, popularity by decade and the accompanying figures.
"""
import os
import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from src.data_load.data_loader import load_config
from src.preprocess.preprocessing import get_logger, load_processed_data
from src.visualization import plots

# Module-level logger - will be initialized by main_eda
logger = logging.getLogger(__name__)


def numeric_columns(df: pd.DataFrame, exclude: Optional[List[str]] = None) -> List[str]:
    excluded = set(exclude or [])
    return [c for c in df.columns if pd.api.types.is_numeric_dtype(df[c]) and c not in excluded]


def summarize_features(df: pd.DataFrame, exclude: Optional[List[str]] = None) -> pd.DataFrame:
    """``describe()`` of the numeric columns, one row per column."""
    cols = numeric_columns(df, exclude)
    if not cols:
        raise ValueError("No numeric columns to summarize.")
    return df[cols].describe().T


def correlation_matrix(df: pd.DataFrame, exclude: Optional[List[str]] = None) -> pd.DataFrame:
    return df[numeric_columns(df, exclude)].corr()


def add_decade(df: pd.DataFrame, year_column: str = "year") -> pd.DataFrame:
    out = df.copy()
    out["decade"] = (out[year_column] // 10 * 10).astype(int)
    return out


def popularity_by_decade(df: pd.DataFrame, target: str = "popularity") -> pd.DataFrame:
    """Song count, mean and median of the target per decade."""
    by_decade = add_decade(df).groupby("decade")[target]
    return by_decade.agg(["count", "mean", "median"])


def main_eda(config_path: str = "config.yaml") -> Dict[str, Any]:
    """Writes summary tables under ``artifacts.eda_dir`` and figures under ``artifacts.plots_dir``."""
    config = load_config(config_path)

    global logger
    logger = get_logger(config.get("logging", {}), default_log_file="logs/eda.log", name=__name__)

    art_cfg = config.get("artifacts", {})
    eda_dir = art_cfg.get("eda_dir", "reports/eda")
    plots_dir = art_cfg.get("plots_dir", "reports/figures")
    target = config.get("recipe", {}).get("target", "popularity")
    scatter_features = config.get("eda", {}).get("scatter_features", [])

    try:
        df = load_processed_data(config)
        summary = summarize_features(df)
        corr = correlation_matrix(df)
        by_decade = popularity_by_decade(df, target)
    except Exception as e:
        logger.error(f"EDA failed: {e}")
        raise

    os.makedirs(eda_dir, exist_ok=True)
    summary.to_csv(os.path.join(eda_dir, "feature_summary.csv"))
    corr.to_csv(os.path.join(eda_dir, "correlations.csv"))
    by_decade.to_csv(os.path.join(eda_dir, "popularity_by_decade.csv"))
    logger.info(f"Popularity by decade:\n{by_decade.round(2).to_string()}")

    correlated = corr[target].drop(target).abs().sort_values(ascending=False)
    logger.info(f"Strongest correlations with {target}:\n{correlated.head(5).round(3).to_string()}")

    figures = []
    if scatter_features:
        figures.append(plots.plot_feature_scatter(df, scatter_features, target,
                                                  os.path.join(plots_dir, "popularity_scatter.png")))
    if "mode" in df.columns:
        figures.append(plots.plot_box(df, "mode", target, os.path.join(plots_dir, "popularity_by_mode.png")))
    figures.append(plots.plot_box(add_decade(df), "decade", target,
                                  os.path.join(plots_dir, "popularity_by_decade.png")))
    figures.append(plots.plot_correlation_matrix(corr, os.path.join(plots_dir, "correlation_matrix.png")))

    logger.info("EDA completed.")
    return {"summary": summary, "correlations": corr, "by_decade": by_decade, "figures": figures}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    main_eda(config_path="config.yaml")
