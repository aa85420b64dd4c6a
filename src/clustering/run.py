import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import logging
import hydra
import wandb
from omegaconf import DictConfig
from src.clustering.clustering import main_clustering
from src.tracking.tracking import run_tracked_stage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)


def log_clusters(results) -> None:
    for decade, res in results.items():
        wandb.log({f"{decade}s/elbow": wandb.Table(
            columns=["k", "within_ss"],
            data=[[int(k), float(v)] for k, v in res["elbow"].items()],
        )})
        wandb.log({f"{decade}s/inertia": res["inertia"], f"{decade}s/n_songs": len(res["labels"])})
        if res["anova"] is not None:
            wandb.log({f"{decade}s/anova_{key}": value for key, value in res["anova"].items()})


@hydra.main(config_path=str(PROJECT_ROOT), config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    run_tracked_stage(cfg, "clustering", main_clustering, log_outputs=log_clusters, tags=["clustering", "kmeans"])


if __name__ == "__main__":
    main()
