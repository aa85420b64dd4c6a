"""Shared fixtures: a small synthetic song table and a config pointing at tmp_path."""
import copy
import os
import sys

import numpy as np
import pandas as pd
import pytest
import yaml

TEST_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(TEST_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

with open(os.path.join(PROJECT_ROOT, "config.yaml"), "r") as _f:
    PROJECT_CONFIG = yaml.safe_load(_f)


def make_song_table(n_per_decade: int = 60, seed: int = 0) -> pd.DataFrame:
    """Cleaned-looking song rows spread over the 1960s and the 2010s."""
    rng = np.random.default_rng(seed)
    n = 2 * n_per_decade
    years = np.concatenate([
        rng.integers(1960, 1970, n_per_decade),
        rng.integers(2010, 2020, n_per_decade),
    ])
    danceability = rng.uniform(0.2, 0.9, n)
    acousticness = rng.uniform(0.0, 1.0, n)
    energy = rng.uniform(0.1, 1.0, n)
    popularity = 40 + 30 * danceability - 20 * acousticness + 10 * energy ** 2 + rng.normal(0, 3, n)
    return pd.DataFrame({
        "year": years,
        "song": [f"song {i}" for i in range(n)],
        "performer": [f"artist {i % 9}" for i in range(n)],
        "duration_ms": rng.uniform(120000, 300000, n),
        "danceability": danceability,
        "energy": energy,
        "key": rng.integers(0, 12, n).astype(float),
        "loudness": rng.uniform(-20, -2, n),
        "mode": rng.integers(0, 2, n),
        "speechiness": rng.uniform(0.02, 0.3, n),
        "acousticness": acousticness,
        "instrumentalness": rng.uniform(0.0, 0.5, n),
        "liveness": rng.uniform(0.05, 0.6, n),
        "valence": rng.uniform(0.1, 0.95, n),
        "tempo": rng.uniform(70, 180, n),
        "time_signature": rng.choice([3.0, 4.0, 5.0], n),
        "popularity": np.clip(popularity, 0, 100),
    })


@pytest.fixture
def test_config(tmp_path):
    """Project config with every output under tmp_path and small model settings."""
    config = copy.deepcopy(PROJECT_CONFIG)
    config["logging"]["log_file"] = str(tmp_path / "logs" / "test.log")
    config["data_source"]["cache_dir"] = None
    config["data_source"]["chart_path"] = str(tmp_path / "billboard.csv")
    config["data_source"]["audio_path"] = str(tmp_path / "audio_features.csv")
    config["data_source"]["processed_path"] = str(tmp_path / "processed" / "songs_clean.csv")
    config["data_validation"]["report_path"] = str(tmp_path / "logs" / "validation_report.json")
    config["model"]["cv"]["folds"] = 3
    config["model"]["lasso"]["penalty_grid"]["levels"] = 6
    config["model"]["gam"]["multiplier_grid"] = [0.0, 1.0]
    config["model"]["random_forest"]["n_estimators"] = 20
    config["clustering"]["k_max"] = 6
    config["clustering"]["k"] = 3
    config["clustering"]["n_init"] = 3
    config["artifacts"] = {
        "plots_dir": str(tmp_path / "figures"),
        "metrics_path": str(tmp_path / "metrics.json"),
        "cluster_dir": str(tmp_path / "clusters"),
        "eda_dir": str(tmp_path / "eda"),
    }
    return config


@pytest.fixture
def song_table(test_config):
    from src.data_validation.data_validator import apply_schema
    return apply_schema(make_song_table(), test_config)


@pytest.fixture
def config_file(test_config, tmp_path):
    """test_config written to disk, for the main_* entry points."""
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(test_config, f)
    return str(path)


@pytest.fixture
def processed_config_file(config_file, test_config, song_table):
    """config_file plus the synthetic table saved as the processed CSV."""
    processed_path = test_config["data_source"]["processed_path"]
    os.makedirs(os.path.dirname(processed_path), exist_ok=True)
    song_table.to_csv(processed_path, index=False)
    return config_file
