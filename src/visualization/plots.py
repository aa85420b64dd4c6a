"""
Static figures for the analysis: EDA plots, cross-validation curves,
feature rankings, elbow curves and cluster scatters.

Every function draws one figure, saves it as PNG under the given path and
returns that path.
"""
import logging
import os
from typing import Dict, List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

logger = logging.getLogger(__name__)


def _save(fig, path: str) -> str:
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    fig.tight_layout()
    fig.savefig(path, dpi=120)
    plt.close(fig)
    logger.info(f"Saved figure: {path}")
    return path


def plot_feature_scatter(df: pd.DataFrame, features: List[str], target: str, path: str) -> str:
    """Target against each feature, one panel per feature."""
    n_cols = 3
    n_rows = int(np.ceil(len(features) / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(4 * n_cols, 3.5 * n_rows), squeeze=False)
    for ax, feature in zip(axes.flat, features):
        sns.scatterplot(data=df, x=feature, y=target, ax=ax, s=6, alpha=0.3, edgecolor=None)
        ax.set_title(f"{target} vs {feature}")
    for ax in list(axes.flat)[len(features):]:
        ax.set_visible(False)
    return _save(fig, path)


def plot_box(df: pd.DataFrame, x: str, y: str, path: str, title: Optional[str] = None) -> str:
    fig, ax = plt.subplots(figsize=(8, 4.5))
    sns.boxplot(data=df, x=x, y=y, ax=ax)
    ax.set_title(title or f"{y} by {x}")
    return _save(fig, path)


def plot_correlation_matrix(corr: pd.DataFrame, path: str) -> str:
    fig, ax = plt.subplots(figsize=(10, 8))
    sns.heatmap(corr, annot=True, fmt=".2f", cmap="coolwarm", vmin=-1, vmax=1, ax=ax)
    ax.set_title("Correlation matrix")
    return _save(fig, path)


def plot_cv_curve(cv_summary: pd.DataFrame, param: str, chosen, path: str, log_x: bool = True) -> str:
    """Mean CV error with one-standard-error bars and the chosen value marked."""
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.errorbar(cv_summary[param], cv_summary["mean_mae"], yerr=cv_summary["std_err"],
                fmt="o-", ms=3, capsize=2)
    ax.axvline(chosen, color="red", linestyle="--", label=f"chosen {param} = {chosen:.4g}")
    values = cv_summary[param].astype(float)
    if log_x and (values > 0).all():
        ax.set_xscale("log")
    elif log_x and (values > 0).any():
        # a zero penalty cannot sit on a log axis
        ax.set_xscale("symlog", linthresh=float(values[values > 0].min()))
    ax.set_xlabel(param)
    ax.set_ylabel("CV mean absolute error")
    ax.legend()
    return _save(fig, path)


def plot_feature_importance(importance: pd.Series, path: str, title: str, top_n: int = 15) -> str:
    top = importance.sort_values(ascending=False).head(top_n)
    fig, ax = plt.subplots(figsize=(7, 0.35 * len(top) + 1.5))
    sns.barplot(x=top.values, y=top.index, ax=ax, color="steelblue")
    ax.set_title(title)
    ax.set_xlabel("importance")
    return _save(fig, path)


def plot_model_comparison(comparison: pd.DataFrame, path: str) -> str:
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.bar(comparison.index, comparison["cv_mae"], yerr=comparison["cv_mae_std_err"], capsize=4)
    ax.set_ylabel("CV mean absolute error")
    ax.set_title("Model comparison (10-fold CV)")
    return _save(fig, path)


def plot_elbow(curve: pd.Series, path: str, chosen_k: Optional[int] = None, title: str = "Elbow curve") -> str:
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(curve.index, curve.values, "o-")
    if chosen_k is not None:
        ax.axvline(chosen_k, color="red", linestyle="--", label=f"k = {chosen_k}")
        ax.legend()
    ax.set_xlabel("number of clusters k")
    ax.set_ylabel("total within-cluster sum of squares")
    ax.set_title(title)
    return _save(fig, path)


def plot_clusters(df: pd.DataFrame, x: str, y: str, path: str, hue: str = "cluster",
                  title: Optional[str] = None) -> str:
    fig, ax = plt.subplots(figsize=(7, 5))
    sns.scatterplot(data=df, x=x, y=y, hue=hue, palette="tab10", s=10, alpha=0.7, ax=ax)
    ax.set_title(title or f"Clusters on {x} and {y}")
    return _save(fig, path)


def plot_cluster_pairs(df: pd.DataFrame, features: List[str], out_dir: str, prefix: str,
                       hue: str = "cluster") -> Dict[str, str]:
    """One cluster scatter per feature pair."""
    paths = {}
    for i, x in enumerate(features):
        for y in features[i + 1:]:
            name = f"{prefix}_{x}_{y}"
            paths[name] = plot_clusters(df, x, y, os.path.join(out_dir, f"{name}.png"), hue=hue,
                                        title=f"{prefix}: {x} vs {y}")
    return paths
