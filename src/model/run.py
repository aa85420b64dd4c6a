import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import logging
import hydra
import wandb
from omegaconf import DictConfig
from src.model.model import main_modeling
from src.tracking.tracking import run_tracked_stage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)


def log_model_results(results) -> None:
    """CV and training metrics per model, plus its feature ranking as a table."""
    for name, res in results.items():
        wandb.log({f"{name}/{metric}": value for metric, value in res.metrics.items()})
        wandb.log({f"{name}/importance": wandb.Table(
            columns=["feature", "importance"],
            data=[[feature, float(value)] for feature, value in res.importance.items()],
        )})


@hydra.main(config_path=str(PROJECT_ROOT), config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    run_tracked_stage(cfg, "model", main_modeling, log_outputs=log_model_results, tags=["model", "comparison"])


if __name__ == "__main__":
    main()
