"""
K-means song archetypes within decades.

For each configured decade the chosen features (valence, acousticness,
loudness by default) are standardized within the decade, an elbow curve of
total within-cluster sum of squares is computed for k = 1..k_max, and a final
k-means fit at the pinned k labels every song 1..k. Cluster profiles and a
one-way ANOVA of popularity across clusters summarize the result.
"""
import os
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import f_oneway
from sklearn.cluster import KMeans

from src.data_load.data_loader import load_config
from src.preprocess.preprocessing import get_logger, load_processed_data, standardize_columns
from src.visualization import plots

# Module-level logger - will be initialized by main_clustering
logger = logging.getLogger(__name__)

DEFAULT_FEATURES = ["valence", "acousticness", "loudness"]


def filter_decade(df: pd.DataFrame, decade_start: int, year_column: str = "year") -> pd.DataFrame:
    """Rows with ``decade_start <= year < decade_start + 10``."""
    if decade_start % 10 != 0:
        raise ValueError(f"Decade start must be a multiple of 10, got {decade_start}.")
    mask = (df[year_column] >= decade_start) & (df[year_column] < decade_start + 10)
    subset = df.loc[mask].copy()
    logger.info(f"Decade {decade_start}s: {len(subset)} songs.")
    return subset


def _check_k(k: int, n_rows: int) -> None:
    if k < 1:
        raise ValueError(f"Number of clusters must be at least 1, got {k}.")
    if k > n_rows:
        raise ValueError(f"Cannot form {k} clusters from {n_rows} rows.")


def _farthest_point(X: np.ndarray, centers: np.ndarray) -> np.ndarray:
    distances = ((X[:, None, :] - centers[None, :, :]) ** 2).sum(axis=2).min(axis=1)
    return X[int(distances.argmax())]


def elbow_curve(X, k_max: int = 15, seed: int = 42, n_init: int = 10) -> pd.Series:
    """
    Total within-cluster sum of squares for k = 1..k_max.

    Besides ``n_init`` k-means++ restarts, every k > 1 is also started from
    the previous solution's centres plus the point farthest from them; the
    lower inertia is kept, so the curve never increases with k.
    """
    X = np.asarray(X, dtype=float)
    _check_k(k_max, len(X))

    inertias = {}
    previous_centers = None
    for k in range(1, k_max + 1):
        best = KMeans(n_clusters=k, n_init=n_init, random_state=seed).fit(X)
        if previous_centers is not None:
            init = np.vstack([previous_centers, _farthest_point(X, previous_centers)])
            warm = KMeans(n_clusters=k, init=init, n_init=1, random_state=seed).fit(X)
            if warm.inertia_ < best.inertia_:
                best = warm
        inertias[k] = float(best.inertia_)
        previous_centers = best.cluster_centers_
        logger.debug(f"k={k}: within-cluster SS={inertias[k]:.4f}")

    curve = pd.Series(inertias, name="within_ss")
    curve.index.name = "k"
    return curve


def fit_kmeans(X, k: int = 6, seed: int = 42, n_init: int = 10) -> Tuple[np.ndarray, KMeans]:
    """Final k-means fit; labels run from 1 to k."""
    X = np.asarray(X, dtype=float)
    _check_k(k, len(X))
    model = KMeans(n_clusters=k, n_init=n_init, random_state=seed).fit(X)
    return model.labels_ + 1, model


def cluster_profile(df: pd.DataFrame, features: List[str], label_column: str = "cluster",
                    target: Optional[str] = "popularity") -> Tuple[pd.DataFrame, Optional[Dict[str, float]]]:
    """
    Per-cluster size and feature means (and mean target), plus a one-way
    ANOVA of the target across clusters.
    """
    columns = list(features) + ([target] if target and target in df.columns else [])
    profile = df.groupby(label_column, observed=True)[columns].mean()
    profile.insert(0, "size", df.groupby(label_column, observed=True).size())

    anova = None
    if target and target in df.columns:
        groups = [g[target].to_numpy() for _, g in df.groupby(label_column, observed=True)]
        if len(groups) > 1 and all(len(g) > 1 for g in groups):
            stat, p_value = f_oneway(*groups)
            anova = {"f_statistic": float(stat), "p_value": float(p_value)}
            logger.info(f"ANOVA of {target} across clusters: F={stat:.3f}, p={p_value:.3g}")
        else:
            logger.warning("ANOVA skipped: need at least two clusters with two songs each.")
    return profile, anova


def cluster_decade(df: pd.DataFrame, decade: int, features: Optional[List[str]] = None, k: int = 6,
                   k_max: int = 15, seed: int = 42, n_init: int = 10) -> Dict[str, Any]:
    """
    Standardizes ``features`` within one decade, computes the elbow curve and
    labels every song of the decade with its cluster.
    """
    features = list(features or DEFAULT_FEATURES)
    missing = [f for f in features if f not in df.columns]
    if missing:
        raise KeyError(f"Clustering features missing from table: {missing}")

    subset = filter_decade(df, decade)
    if subset.empty:
        raise ValueError(f"No songs in the {decade}s; cannot cluster.")

    scaled, _ = standardize_columns(subset, features, logger_param=logger)
    X = scaled[features].to_numpy()

    curve = elbow_curve(X, k_max=k_max, seed=seed, n_init=n_init)
    labels, model = fit_kmeans(X, k=k, seed=seed, n_init=n_init)
    scaled["cluster"] = labels
    subset["cluster"] = labels

    profile, anova = cluster_profile(subset, features, "cluster")
    logger.info(f"{decade}s cluster profile (k={k}):\n{profile.round(3).to_string()}")
    return {
        "decade": decade,
        "labels": subset,
        "scaled": scaled,
        "elbow": curve,
        "profile": profile,
        "anova": anova,
        "inertia": float(model.inertia_),
    }


def save_cluster_outputs(result: Dict[str, Any], features: List[str], config: Dict[str, Any], k: int) -> None:
    art_cfg = config.get("artifacts", {})
    cluster_dir = art_cfg.get("cluster_dir", "reports/clusters")
    plots_dir = art_cfg.get("plots_dir", "reports/figures")
    decade = result["decade"]
    os.makedirs(cluster_dir, exist_ok=True)

    profile_path = os.path.join(cluster_dir, f"profile_{decade}s.csv")
    result["profile"].to_csv(profile_path)
    result["elbow"].to_csv(os.path.join(cluster_dir, f"elbow_{decade}s.csv"))
    logger.info(f"Cluster profile saved to {profile_path}")

    plots.plot_elbow(result["elbow"], os.path.join(plots_dir, f"elbow_{decade}s.png"), chosen_k=k,
                     title=f"Elbow curve, {decade}s")
    plots.plot_cluster_pairs(result["scaled"].assign(cluster=result["scaled"]["cluster"].astype(str)),
                             features, plots_dir, prefix=f"clusters_{decade}s")


def main_clustering(config_path: str = "config.yaml") -> Dict[int, Dict[str, Any]]:
    """Cluster each configured decade of the processed table."""
    config = load_config(config_path)

    global logger
    logger = get_logger(config.get("logging", {}), default_log_file="logs/clustering.log", name=__name__)

    cl_cfg = config.get("clustering", {})
    features = list(cl_cfg.get("features", DEFAULT_FEATURES))
    k = int(cl_cfg.get("k", 6))
    k_max = int(cl_cfg.get("k_max", 15))
    seed = config.get("seed", 42)

    results = {}
    try:
        df = load_processed_data(config)
        for decade in cl_cfg.get("decades", [1960, 2010]):
            logger.info(f"--- Clustering the {decade}s ---")
            results[decade] = cluster_decade(df, int(decade), features, k=k, k_max=k_max, seed=seed,
                                              n_init=int(cl_cfg.get("n_init", 10)))
    except Exception as e:
        logger.critical(f"Clustering failed: {e}")
        raise

    for result in results.values():
        save_cluster_outputs(result, features, config, k)
    logger.info("Clustering completed.")
    return results


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    main_clustering(config_path="config.yaml")
