import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import logging
import hydra
import wandb
from omegaconf import DictConfig
from src.preprocess.preprocessing import main_preprocessing
from src.tracking.tracking import run_tracked_stage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)


def log_table_shape(clean_df) -> None:
    wandb.log({
        "n_songs": len(clean_df),
        "n_columns": clean_df.shape[1],
        "first_year": int(clean_df["year"].min()),
        "last_year": int(clean_df["year"].max()),
    })


@hydra.main(config_path=str(PROJECT_ROOT), config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    run_tracked_stage(cfg, "preprocess", main_preprocessing, log_outputs=log_table_shape)


if __name__ == "__main__":
    main()
