"""Head info callback — reports head size and the selected hyperparameters."""

from __future__ import annotations

import lightning as L
from loguru import logger
from rich import box
from rich.console import Console
from rich.table import Table


class HeadInfoCallback(L.Callback):
    """Display classifier head statistics at training start.

    Reports parameter counts, model size in MB, and the architecture and
    optimizer hyperparameters chosen for the run.

    Args:
        console: Rich console to print to. Defaults to a new stderr console.
    """

    def __init__(self, console: Console | None = None) -> None:
        super().__init__()
        self.console = console or Console(stderr=True)

    def on_fit_start(
        self, trainer: L.Trainer, pl_module: L.LightningModule
    ) -> None:
        """Compute head stats and print them as a table."""
        total_params = sum(p.numel() for p in pl_module.parameters())
        trainable_params = sum(
            p.numel() for p in pl_module.parameters() if p.requires_grad
        )
        param_size = sum(
            p.numel() * p.element_size() for p in pl_module.parameters()
        )
        model_size_mb = param_size / (1024 * 1024)

        table = Table(
            title="Classifier Head",
            header_style="bold magenta",
            box=box.SQUARE,
            show_lines=True,
        )
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Model Class", type(pl_module).__name__)
        table.add_row("Total Parameters", f"{total_params:,}")
        table.add_row("Trainable Parameters", f"{trainable_params:,}")
        table.add_row("Model Size", f"{model_size_mb:.3f} MB")
        for key, value in pl_module.hparams.items():
            table.add_row(str(key), str(value))
        table.add_row("Epochs", str(trainer.max_epochs))

        self.console.print(table)

        logger.info(
            f"Head: {type(pl_module).__name__} | "
            f"Params: {total_params:,} ({trainable_params:,} trainable) | "
            f"Size: {model_size_mb:.3f} MB"
        )
