import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import logging
import hydra
import wandb
from omegaconf import DictConfig
from src.eda.eda import main_eda
from src.tracking.tracking import run_tracked_stage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)


def log_figures(outputs) -> None:
    for path in outputs["figures"]:
        wandb.log({Path(path).stem: wandb.Image(path)})


@hydra.main(config_path=str(PROJECT_ROOT), config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    run_tracked_stage(cfg, "eda", main_eda, log_outputs=log_figures)


if __name__ == "__main__":
    main()
