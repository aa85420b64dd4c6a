"""
data_loader.py

Loads the two raw tables of the analysis (Billboard chart history and Spotify
audio features) from local CSV files or remote URLs, driven by a YAML
configuration file, and joins them on their shared key columns.
"""

import os
import logging
import pandas as pd
import yaml
from typing import Dict, Any, List, Optional, Tuple

# Module-level logger. Assumes configuration by the calling script or __main__.
logger = logging.getLogger(__name__)

DEFAULT_JOIN_KEYS = ["song_id", "song", "performer"]


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """Loads the YAML configuration file."""
    if not os.path.isfile(config_path):
        logger.error(f"Configuration file not found: {config_path}")
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with open(config_path, "r") as f:
        config = yaml.safe_load(f)
    logger.debug(f"Configuration loaded from {config_path}")
    return config


def _is_remote(path: str) -> bool:
    return path.startswith("http://") or path.startswith("https://")


def _read_csv_data(
    path: str,
    delimiter: str = ",",
    header: int = 0,
    encoding: str = "utf-8"
) -> pd.DataFrame:
    """Read one CSV from a local file or an http(s) URL."""
    if not path or not isinstance(path, str):
        logger.error("No valid data path provided for CSV loading.")
        raise ValueError("No valid data path specified for CSV loading.")
    if not _is_remote(path) and not os.path.isfile(path):
        logger.error(f"Data file does not exist: {path}")
        raise FileNotFoundError(f"Data file not found: {path}")

    try:
        df = pd.read_csv(path, delimiter=delimiter, header=header, encoding=encoding)
        logger.info(f"Loaded data from CSV: {path}, shape={df.shape}")
        return df
    except Exception as e:
        logger.error(f"Failed to load data from CSV '{path}': {e}", exc_info=True)
        raise


def _load_table(path: str, data_cfg: Dict[str, Any], cache_dir: Optional[str]) -> pd.DataFrame:
    """Read a table, going through the local cache for remote sources."""
    cached_path = None
    if cache_dir and _is_remote(path):
        cached_path = os.path.join(cache_dir, os.path.basename(path))
        if os.path.isfile(cached_path):
            logger.info(f"Using cached copy of {path}: {cached_path}")
            path = cached_path
            cached_path = None

    df = _read_csv_data(
        path=path,
        delimiter=data_cfg.get("delimiter", ","),
        header=data_cfg.get("header", 0),
        encoding=data_cfg.get("encoding", "utf-8"),
    )

    if cached_path:
        os.makedirs(cache_dir, exist_ok=True)
        df.to_csv(cached_path, index=False)
        logger.info(f"Cached remote table to {cached_path}")
    return df


def get_raw_data(config_path: str = "config.yaml") -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Loads the chart history and audio feature tables named in the config.

    Returns:
        (chart_df, audio_df)
    """
    try:
        config = load_config(config_path)
    except FileNotFoundError:
        raise
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML configuration from '{config_path}': {e}", exc_info=True)
        raise ValueError(f"Error parsing YAML configuration from '{config_path}'.") from e

    return get_raw_data_from_config(config)


def get_raw_data_from_config(config: Dict[str, Any]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    data_cfg = config.get("data_source", {})

    file_type = data_cfg.get("type", "csv").lower()
    if file_type != "csv":
        logger.error(f"Unsupported file type in config: '{file_type}'. Only 'csv' supported.")
        raise ValueError(f"Unsupported file type: '{file_type}'. This loader only supports 'csv'.")

    paths = {}
    for key in ("chart_path", "audio_path"):
        path = data_cfg.get(key)
        if not path or not isinstance(path, str):
            logger.error(f"Config missing 'data_source.{key}'.")
            raise ValueError(f"Config must specify 'data_source.{key}' for raw data.")
        paths[key] = path

    cache_dir = data_cfg.get("cache_dir")
    logger.info(f"Attempting to load chart history from: {paths['chart_path']}")
    chart_df = _load_table(paths["chart_path"], data_cfg, cache_dir)
    logger.info(f"Attempting to load audio features from: {paths['audio_path']}")
    audio_df = _load_table(paths["audio_path"], data_cfg, cache_dir)
    return chart_df, audio_df


def join_datasets(
    chart_df: pd.DataFrame,
    audio_df: pd.DataFrame,
    join_keys: Optional[List[str]] = None
) -> pd.DataFrame:
    """Inner-join chart weeks with audio features on the shared key columns."""
    keys = list(join_keys) if join_keys else DEFAULT_JOIN_KEYS
    for name, frame in (("chart", chart_df), ("audio", audio_df)):
        missing = [k for k in keys if k not in frame.columns]
        if missing:
            logger.error(f"Join keys {missing} missing from {name} table.")
            raise KeyError(f"Join keys {missing} missing from {name} table.")

    joined = chart_df.merge(audio_df, on=keys, how="inner", suffixes=("", "_audio"))
    logger.info(
        f"Joined chart ({len(chart_df)} rows) with audio features ({len(audio_df)} rows) "
        f"on {keys}: {len(joined)} rows"
    )
    if joined.empty:
        logger.error("Join of chart history and audio features produced zero rows.")
        raise ValueError(f"Join on {keys} produced zero rows.")
    return joined


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(module)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    logger.info("Running data_loader.py standalone...")

    try:
        chart, audio = get_raw_data()
        joined_df = join_datasets(chart, audio, load_config().get("data_source", {}).get("join_keys"))
        logger.info(f"Joined data loaded successfully via __main__. Shape: {joined_df.shape}")
        logger.info("First 5 rows of joined data:\n%s", joined_df.head().to_string())
    except Exception as e:
        logger.error(f"__main__: Failed to load data: {e}", exc_info=True)
