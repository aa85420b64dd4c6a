import os
import numpy as np
import pandas as pd
import pytest
from unittest.mock import MagicMock

from src.preprocess import preprocessing


def _raw_joined_rows() -> pd.DataFrame:
    """
    Twenty joined chart/audio rows: three chart weeks of ("X", "Y") in 2015,
    sixteen distinct songs, and one song with a missing valence.
    """
    rng = np.random.default_rng(7)
    weeks = ["1/3/2015", "1/10/2015", "1/17/2015"]
    weeks += [f"6/{(i % 28) + 1}/{1960 + 3 * i}" for i in range(16)]
    weeks += ["8/8/1988"]
    songs = ["X"] * 3 + [f"S{i}" for i in range(16)] + ["Z"]
    performers = ["Y"] * 3 + [f"P{i}" for i in range(16)] + ["W"]
    n = len(weeks)
    df = pd.DataFrame({
        "week_id": weeks,
        "song_id": [s + p for s, p in zip(songs, performers)],
        "song": songs,
        "performer": performers,
        "week_position": rng.integers(1, 101, n),
        "spotify_track_duration_ms": rng.uniform(120000, 300000, n),
        "danceability": rng.uniform(0, 1, n),
        "energy": rng.uniform(0, 1, n),
        "key": rng.integers(0, 12, n).astype(float),
        "loudness": rng.uniform(-20, -2, n),
        "mode": rng.integers(0, 2, n).astype(float),
        "speechiness": rng.uniform(0, 0.3, n),
        "acousticness": rng.uniform(0, 1, n),
        "instrumentalness": rng.uniform(0, 0.5, n),
        "liveness": rng.uniform(0, 0.6, n),
        "valence": rng.uniform(0, 1, n),
        "tempo": rng.uniform(60, 200, n),
        "time_signature": rng.choice([3.0, 4.0], n),
        "spotify_track_popularity": rng.uniform(0, 100, n),
        "spotify_genre": ["['pop']"] * n,
    })
    df.loc[n - 1, "valence"] = np.nan
    return df


def test_derive_year_parses_chart_week():
    df = pd.DataFrame({"week_id": ["7/17/1965", "12/31/2019"]})
    out = preprocessing.derive_year(df, logger_param=MagicMock())
    assert list(out["year"]) == [1965, 2019]


def test_derive_year_missing_week_column_raises():
    with pytest.raises(KeyError):
        preprocessing.derive_year(pd.DataFrame({"song": ["a"]}), logger_param=MagicMock())


def test_select_columns_renames_and_keeps_year():
    df = preprocessing.derive_year(_raw_joined_rows(), logger_param=MagicMock())
    out = preprocessing.select_columns(df, preprocessing.DEFAULT_COLUMNS, preprocessing.DEFAULT_RENAME,
                                       logger_param=MagicMock())
    assert list(out.columns) == ["year"] + preprocessing.DEFAULT_COLUMNS
    assert "spotify_genre" not in out.columns


def test_select_columns_missing_column_raises():
    df = preprocessing.derive_year(_raw_joined_rows(), logger_param=MagicMock()).drop(columns=["tempo"])
    with pytest.raises(KeyError, match="tempo"):
        preprocessing.select_columns(df, preprocessing.DEFAULT_COLUMNS, preprocessing.DEFAULT_RENAME,
                                     logger_param=MagicMock())


def test_deduplicate_keeps_first_row():
    df = pd.DataFrame({"year": [2015, 2015, 2016], "song": ["X", "X", "X"], "performer": ["Y", "Y", "Y"],
                       "valence": [0.1, 0.9, 0.5]})
    out = preprocessing.deduplicate(df, ["year", "song", "performer"], logger_param=MagicMock())
    assert len(out) == 2
    assert out.loc[0, "valence"] == 0.1


def test_clean_dataset_twenty_rows(test_config):
    """Duplicate chart weeks collapse, the incomplete row is dropped, nothing else changes."""
    raw = _raw_joined_rows()
    clean = preprocessing.clean_dataset(raw, test_config, logger_param=MagicMock())

    assert len(clean) == 17
    assert clean.notnull().all().all()
    assert not clean.duplicated(subset=["year", "song", "performer"]).any()
    assert ((clean["song"] == "X") & (clean["performer"] == "Y")).sum() == 1
    assert "Z" not in set(clean["song"].astype(str))
    assert isinstance(clean["mode"].dtype, pd.CategoricalDtype)
    assert clean["year"].dtype == np.int64
    assert list(clean.columns) == ["year"] + test_config["cleaning"]["columns"]


def test_near_zero_variance_columns_rule():
    n = 100
    df = pd.DataFrame({
        "constant": [1.0] * n,
        "rare": [0.0] * 96 + [1.0] * 4,          # ratio 24 > 19, 2% unique
        "balanced": [0.0, 1.0] * 50,
        "continuous": np.linspace(0, 1, n),
    })
    flagged = preprocessing.near_zero_variance_columns(df, list(df.columns))
    assert flagged == ["constant", "rare"]


def test_standardize_columns_zero_mean_unit_variance(song_table):
    cols = ["valence", "acousticness", "loudness"]
    scaled, scaler = preprocessing.standardize_columns(song_table, cols, logger_param=MagicMock())
    for col in cols:
        assert abs(scaled[col].mean()) < 1e-9
        assert abs(scaled[col].std(ddof=0) - 1.0) < 1e-9
    # input is left untouched
    assert song_table["loudness"].max() < 0


def test_standardize_columns_rejects_categoricals(song_table):
    with pytest.raises(ValueError, match="non-numeric"):
        preprocessing.standardize_columns(song_table, ["mode"], logger_param=MagicMock())


def test_validate_preprocessing_config_missing_key():
    with pytest.raises(KeyError, match="Missing required top-level config key"):
        preprocessing.validate_preprocessing_config({"data_source": {}}, logger_param=MagicMock())


def test_validate_preprocessing_config_warns_without_columns(test_config):
    del test_config["cleaning"]["columns"]
    mock_logger = MagicMock()
    preprocessing.validate_preprocessing_config(test_config, logger_param=mock_logger)
    assert any("cleaning.columns" in call.args[0] for call in mock_logger.warning.call_args_list)


def test_load_processed_data_missing_file(test_config):
    with pytest.raises(FileNotFoundError, match="Run the preprocess stage first"):
        preprocessing.load_processed_data(test_config)


def test_main_preprocessing_end_to_end(test_config, config_file):
    raw = _raw_joined_rows()
    chart_cols = ["week_id", "song_id", "song", "performer", "week_position"]
    raw[chart_cols].to_csv(test_config["data_source"]["chart_path"], index=False)
    audio = raw.drop(columns=["week_id", "week_position"]).drop_duplicates(subset=["song_id"])
    audio.to_csv(test_config["data_source"]["audio_path"], index=False)

    clean = preprocessing.main_preprocessing(config_path=config_file)

    assert len(clean) == 17
    assert os.path.isfile(test_config["data_source"]["processed_path"])
    assert os.path.isfile(test_config["data_validation"]["report_path"])
    reloaded = preprocessing.load_processed_data(test_config)
    assert reloaded.shape == clean.shape


def test_main_preprocessing_zero_row_join_raises(test_config, config_file):
    raw = _raw_joined_rows()
    raw[["week_id", "song_id", "song", "performer"]].to_csv(test_config["data_source"]["chart_path"], index=False)
    raw.drop(columns=["week_id"]).assign(song_id="nomatch").to_csv(test_config["data_source"]["audio_path"],
                                                                   index=False)
    with pytest.raises(ValueError, match="zero rows"):
        preprocessing.main_preprocessing(config_path=config_file)
