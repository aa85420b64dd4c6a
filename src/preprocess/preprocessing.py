import os
import sys
import logging
import pandas as pd
from sklearn.preprocessing import StandardScaler
from typing import Dict, Any, Tuple, Optional, List

from src.data_load.data_loader import load_config, get_raw_data_from_config, join_datasets
from src.data_validation.data_validator import apply_schema, validate_data

# Module-level logger - this will be initialized by main_preprocessing
logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = [
    "song", "performer", "duration_ms", "danceability", "energy", "key", "loudness",
    "mode", "speechiness", "acousticness", "instrumentalness", "liveness", "valence",
    "tempo", "time_signature", "popularity",
]
DEFAULT_RENAME = {
    "spotify_track_duration_ms": "duration_ms",
    "spotify_track_popularity": "popularity",
}
DEFAULT_UNIQUE_KEY = ["year", "song", "performer"]


def get_logger(logging_config: Dict[str, Any], default_log_file: str = "logs/preprocessing.log",
               name: str = __name__) -> logging.Logger:
    """Sets up the root handlers from the logging config and returns the named logger."""
    log_file = logging_config.get("log_file", default_log_file)
    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    log_format = logging_config.get(
        "format", "%(asctime)s - %(levelname)s - %(name)s - %(module)s - %(message)s"
    )
    date_format = logging_config.get("datefmt", "%Y-%m-%d %H:%M:%S")
    log_level_str = logging_config.get("level", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    root = logging.getLogger()
    already_logging_to_file = any(
        isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file)
        for h in root.handlers
    )
    if not already_logging_to_file:
        # Clear existing handlers from root to avoid duplicated lines across stages
        for handler in root.handlers[:]:
            root.removeHandler(handler)

        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setFormatter(logging.Formatter(log_format, date_format))
        file_handler.setLevel(log_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(log_format, date_format))
        console_handler.setLevel(log_level)

        root.addHandler(file_handler)
        root.addHandler(console_handler)
    root.setLevel(log_level)

    module_logger = logging.getLogger(name)
    module_logger.setLevel(log_level)
    return module_logger


def derive_year(df: pd.DataFrame, week_column: str = "week_id", week_format: str = "%m/%d/%Y",
                logger_param: Optional[logging.Logger] = None) -> pd.DataFrame:
    """Adds a ``year`` column parsed from the chart week."""
    effective_logger = logger_param if logger_param else logger
    if "year" in df.columns and week_column not in df.columns:
        effective_logger.info("'year' already present and no chart week column; keeping it.")
        return df
    if week_column not in df.columns:
        raise KeyError(f"Chart week column '{week_column}' not found; cannot derive 'year'.")

    df_out = df.copy()
    df_out["year"] = pd.to_datetime(df_out[week_column], format=week_format, errors="coerce").dt.year
    unparsed = int(df_out["year"].isnull().sum() - df_out[week_column].isnull().sum())
    if unparsed > 0:
        effective_logger.warning(f"{unparsed} chart weeks could not be parsed with format '{week_format}'.")
    effective_logger.info(
        f"Derived 'year' from '{week_column}': {df_out['year'].min()}-{df_out['year'].max()}"
    )
    return df_out


def select_columns(df: pd.DataFrame, columns: List[str], rename: Optional[Dict[str, str]] = None,
                   logger_param: Optional[logging.Logger] = None) -> pd.DataFrame:
    """Renames source columns and keeps ``year`` plus the fixed analysis columns."""
    effective_logger = logger_param if logger_param else logger
    df_out = df.rename(columns=rename or {})
    wanted = ["year"] + [c for c in columns if c != "year"]
    missing = [c for c in wanted if c not in df_out.columns]
    if missing:
        effective_logger.error(f"Columns required by the cleaner are missing: {missing}")
        raise KeyError(f"Columns required by the cleaner are missing: {missing}")
    effective_logger.info(f"Selecting {len(wanted)} columns: {wanted}")
    return df_out[wanted].copy()


def drop_missing(df: pd.DataFrame, logger_param: Optional[logging.Logger] = None) -> pd.DataFrame:
    """Drops every row with a missing value in any column. No imputation."""
    effective_logger = logger_param if logger_param else logger
    df_out = df.dropna(how="any")
    effective_logger.info(f"Dropped {len(df) - len(df_out)} rows with missing values. Shape: {df_out.shape}")
    return df_out


def deduplicate(df: pd.DataFrame, key: List[str], logger_param: Optional[logging.Logger] = None) -> pd.DataFrame:
    """Keeps the first row per key combination."""
    effective_logger = logger_param if logger_param else logger
    missing = [k for k in key if k not in df.columns]
    if missing:
        raise KeyError(f"Deduplication key columns missing: {missing}")
    df_out = df.drop_duplicates(subset=key, keep="first").reset_index(drop=True)
    effective_logger.info(f"Removed {len(df) - len(df_out)} duplicate rows on {key}. Shape: {df_out.shape}")
    return df_out


def clean_dataset(df: pd.DataFrame, config: Dict[str, Any],
                  logger_param: Optional[logging.Logger] = None) -> pd.DataFrame:
    """Turns the joined chart/audio table into the typed, null-free, deduplicated song table."""
    effective_logger = logger_param if logger_param else logger
    clean_cfg = config.get("cleaning", {})

    current_df = derive_year(
        df,
        week_column=clean_cfg.get("week_column", "week_id"),
        week_format=clean_cfg.get("week_format", "%m/%d/%Y"),
        logger_param=effective_logger,
    )
    current_df = select_columns(
        current_df,
        clean_cfg.get("columns", DEFAULT_COLUMNS),
        clean_cfg.get("rename", DEFAULT_RENAME),
        logger_param=effective_logger,
    )
    current_df = drop_missing(current_df, logger_param=effective_logger)
    current_df = deduplicate(current_df, clean_cfg.get("unique_key", DEFAULT_UNIQUE_KEY),
                             logger_param=effective_logger)
    current_df = apply_schema(current_df, config)
    effective_logger.info(f"Cleaned table ready. Shape: {current_df.shape}")
    return current_df


def near_zero_variance_columns(df: pd.DataFrame, columns: List[str], freq_cut: float = 95 / 5,
                               unique_cut: float = 10.0) -> List[str]:
    """
    Columns whose values are (nearly) constant.

    A column is flagged when it has a single distinct value, or when the ratio
    of the most common to the second most common value exceeds ``freq_cut``
    while distinct values make up at most ``unique_cut`` percent of the rows.
    """
    flagged = []
    n_rows = len(df)
    for col in columns:
        counts = df[col].value_counts(dropna=True)
        if len(counts) <= 1:
            flagged.append(col)
            continue
        freq_ratio = counts.iloc[0] / counts.iloc[1]
        percent_unique = 100.0 * len(counts) / n_rows
        if freq_ratio > freq_cut and percent_unique <= unique_cut:
            flagged.append(col)
    return flagged


def standardize_columns(df: pd.DataFrame, columns_to_scale: List[str],
                        logger_param: Optional[logging.Logger] = None) -> Tuple[pd.DataFrame, StandardScaler]:
    """Scales columns to zero mean and unit (population) variance."""
    effective_logger = logger_param if logger_param else logger
    non_numeric = [c for c in columns_to_scale if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(f"Cannot standardize non-numeric columns: {non_numeric}")

    df_scaled = df.copy()
    scaler = StandardScaler()
    df_scaled[columns_to_scale] = scaler.fit_transform(df_scaled[columns_to_scale])
    effective_logger.info(f"Standardized columns {columns_to_scale}.")
    return df_scaled, scaler


def save_processed_data(df: pd.DataFrame, data_path: str, logger_param: Optional[logging.Logger] = None) -> None:
    effective_logger = logger_param if logger_param else logger
    data_dir = os.path.dirname(data_path)
    if data_dir and not os.path.exists(data_dir):
        os.makedirs(data_dir, exist_ok=True)
    df.to_csv(data_path, index=False)
    effective_logger.info(f"Processed data saved to: {data_path} | Shape: {df.shape}")


def load_processed_data(config: Dict[str, Any]) -> pd.DataFrame:
    """Reads the cleaned table written by main_preprocessing and re-applies the schema."""
    processed_path = config.get("data_source", {}).get("processed_path")
    if not processed_path:
        raise KeyError("Missing 'processed_path' in 'data_source' config.")
    if not os.path.isfile(processed_path):
        raise FileNotFoundError(f"Processed data not found at '{processed_path}'. Run the preprocess stage first.")
    df = pd.read_csv(processed_path)
    logger.info(f"Loaded processed data from {processed_path}. Shape: {df.shape}")
    return apply_schema(df, config)


def validate_preprocessing_config(config: Dict[str, Any], logger_param: Optional[logging.Logger] = None) -> None:
    """Validates the presence of essential keys in the preprocessing configuration."""
    effective_logger = logger_param if logger_param else logger
    effective_logger.info("Validating preprocessing configuration.")
    for key in ["data_source", "cleaning", "data_validation", "logging"]:
        if key not in config:
            raise KeyError(f"Missing required top-level config key: '{key}'")
    for key in ["chart_path", "audio_path", "processed_path"]:
        if key not in config["data_source"]:
            raise KeyError(f"Missing '{key}' in 'data_source' config.")
    if "columns" not in config["cleaning"]:
        effective_logger.warning("Config: 'cleaning.columns' not found. Using the default 16 columns.")
    effective_logger.info("Preprocessing configuration validation successful.")


def main_preprocessing(config_path: str = "config.yaml") -> pd.DataFrame:
    """Loads, joins, cleans and validates the raw tables, then writes the processed CSV."""
    config = load_config(config_path)

    global logger
    logger = get_logger(config.get("logging", {}))

    try:
        validate_preprocessing_config(config, logger_param=logger)
        chart_df, audio_df = get_raw_data_from_config(config)
        joined_df = join_datasets(chart_df, audio_df, config["data_source"].get("join_keys"))
        clean_df = clean_dataset(joined_df, config, logger_param=logger)
        validate_data(clean_df, config)
    except Exception as e:
        logger.error(f"Preprocessing failed: {e}")
        raise

    save_processed_data(clean_df, config["data_source"]["processed_path"], logger_param=logger)
    logger.info("Preprocessing pipeline finished.")
    return clean_df


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    config_file_path = "config.yaml"

    if not os.path.exists(config_file_path):
        logging.error(f"CRITICAL: Main - Configuration file '{config_file_path}' not found. Preprocessing cannot start.")
    else:
        main_preprocessing(config_path=config_file_path)
