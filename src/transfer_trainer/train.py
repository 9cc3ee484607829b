"""Training entrypoint for transfer_trainer.

Usage:
    python -m transfer_trainer.train data_root=path/to/images
    python -m transfer_trainer.train data_root=... engine.num_epochs=20
    python -m transfer_trainer.train data_root=... engine.backbone=mobilenet_v2
    python -m transfer_trainer.train data_root=... 'predict=[a.jpg,b.jpg]'
"""

import sys
from pathlib import Path

import hydra
from hydra.core.hydra_config import HydraConfig
from loguru import logger
from omegaconf import DictConfig, OmegaConf

from transfer_trainer.callbacks.model_info import HeadInfoCallback
from transfer_trainer.config import EngineConfig  # registers the "engine" config group
from transfer_trainer.data.utils import load_image_folder
from transfer_trainer.engine import TrainingEngine
from transfer_trainer.schemas.training import TrainingProgress


@hydra.main(version_base=None, config_path="conf", config_name="train")
def main(cfg: DictConfig) -> None:
    """Train on an image folder, save the snapshot, and run optional predictions."""
    logger.remove()
    logger.add(sys.stderr, level=cfg.get("log_level", "INFO"))

    logger.info(f"Configuration:\n{OmegaConf.to_yaml(cfg)}")

    config: EngineConfig = hydra.utils.instantiate(cfg.engine)
    labeled_images = load_image_folder(Path(cfg.data_root))

    callbacks = [HeadInfoCallback()] if cfg.get("head_info", True) else []
    engine = TrainingEngine(config, project_id=cfg.get("project_id"), callbacks=callbacks)
    engine.load()

    def _report(progress: TrainingProgress) -> None:
        logger.info(
            f"Epoch {progress.epoch + 1}/{config.num_epochs}: "
            f"loss={progress.loss:.4f} acc={progress.accuracy:.4f}"
        )

    head = engine.train(labeled_images, on_progress=_report)
    logger.info(f"Trained head: {head.summary()}")

    output_dir = Path(HydraConfig.get().runtime.output_dir)
    engine.save_snapshot(output_dir / "training_snapshot.json")

    for image_path in cfg.get("predict") or []:
        result = engine.predict(Path(image_path))
        logger.info(
            f"{image_path}: {result.class_name} ({result.probability:.1%})"
        )


if __name__ == "__main__":
    main()
