"""
Weights & Biases bookkeeping shared by the stage wrappers in ``src/*/run.py``.

``run_tracked_stage`` opens a run named ``<job_type>_<timestamp>``, calls the
stage entry point on the project config, hands its return value to an
optional logging callback and records the stage status. Failures are logged
to the run, raised as a W&B alert and re-raised.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional

import wandb
from omegaconf import DictConfig, OmegaConf

PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_PATH = PROJECT_ROOT / "config.yaml"

logger = logging.getLogger(__name__)


def run_tracked_stage(
    cfg: DictConfig,
    job_type: str,
    stage_fn: Callable[..., Any],
    log_outputs: Optional[Callable[[Any], None]] = None,
    tags: Optional[List[str]] = None,
) -> Any:
    run_name = f"{job_type}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    status_key = f"{job_type}_status"
    run = None
    try:
        run = wandb.init(
            project=cfg.main.WANDB_PROJECT,
            entity=cfg.main.WANDB_ENTITY,
            job_type=job_type,
            name=run_name,
            config=OmegaConf.to_container(cfg, resolve=True),
            tags=tags or [job_type],
        )
        logger.info("Started WandB run: %s", run_name)
        outputs = stage_fn(config_path=str(CONFIG_PATH))
        if log_outputs is not None:
            log_outputs(outputs)
        wandb.log({status_key: "completed"})
        return outputs
    except Exception as e:
        logger.exception("Failed during %s step", job_type)
        if run is not None:
            wandb.log({status_key: "failed", "error": str(e)})
            run.alert(title=f"{job_type.capitalize()} Error", text=str(e))
        raise
    finally:
        if wandb.run is not None:
            wandb.finish()
            logger.info("WandB run finished")
