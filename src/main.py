"""
Command-line orchestrator for the Billboard popularity analysis.

    python -m src.main --config config.yaml --stage all

Stages run in the order preprocess, eda, model, cluster; every stage after
preprocess reads the processed table written by preprocess.
"""

import argparse
import sys
import logging
from typing import Callable, Dict

from src.data_load.data_loader import load_config
from src.preprocess.preprocessing import get_logger, main_preprocessing
from src.eda.eda import main_eda
from src.model.model import main_modeling
from src.clustering.clustering import main_clustering

# Module-level logger; rebound once the config is read
logger = logging.getLogger(__name__)

STAGE_ORDER = ["preprocess", "eda", "model", "cluster"]
STAGES = STAGE_ORDER + ["all"]


def stage_functions() -> Dict[str, Callable[..., object]]:
    # looked up at call time so the module attributes can be patched
    return {
        "preprocess": main_preprocessing,
        "eda": main_eda,
        "model": main_modeling,
        "cluster": main_clustering,
    }


def run_stages(stage: str, config_path: str) -> None:
    """Runs one stage, or every stage in order for ``all``."""
    if stage not in STAGES:
        raise ValueError(f"Unknown stage '{stage}'; expected one of {STAGES}.")
    selected = STAGE_ORDER if stage == "all" else [stage]
    functions = stage_functions()
    for name in selected:
        logger.info(f"--- Running: {name} stage ---")
        functions[name](config_path=config_path)
        logger.info(f"--- Completed: {name} stage ---")


def main(argv=None):
    """Parse arguments and run selected pipeline stages."""
    parser = argparse.ArgumentParser(
        description="Billboard popularity analysis pipeline.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--config", type=str, default="config.yaml",
        help="Path to the main YAML configuration file."
    )
    parser.add_argument(
        "--stage", type=str, default="all", choices=STAGES,
        help="Pipeline stage to execute."
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logging.critical(f"{e}")
        sys.exit(1)

    global logger
    logger = get_logger(config.get("logging", {}), default_log_file="logs/main_orchestrator.log", name=__name__)
    logger.info(f"Pipeline execution started. Stage: '{args.stage}', Config: '{args.config}'")

    try:
        run_stages(args.stage, args.config)
    except FileNotFoundError as e:
        logger.critical(f"Pipeline failed (stage '{args.stage}'): File not found. {e}", exc_info=True)
        logger.critical("Ensure previous stages ran successfully and created expected outputs.")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Pipeline failed (stage '{args.stage}'): {e}", exc_info=True)
        sys.exit(1)

    logger.info("Pipeline execution completed successfully for stage(s): '%s'.", args.stage)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    main()
