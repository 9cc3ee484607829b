"""Tests for the per-project TrainingEngine lifecycle."""

import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import make_corrupt_png, make_labeled_images, make_png

from transfer_trainer import (
    AlreadyTrainingError,
    EmptyDatasetError,
    InvalidInputError,
    NotTrainedError,
    TrainingEngine,
    TrainingProgress,
    TrainingState,
)
from transfer_trainer.config import EngineConfig
from transfer_trainer.models.extractor import FeatureExtractor
from transfer_trainer.models.head import ClassifierHead


def _block_trainer(engine: TrainingEngine, release: threading.Event) -> threading.Event:
    """Replace the engine's fit with one that waits for ``release``."""
    started = threading.Event()
    head = MagicMock(spec=ClassifierHead)

    def _train(*args, **kwargs):
        started.set()
        release.wait(timeout=30)
        return head

    engine._trainer.train = _train  # type: ignore[method-assign]
    return started


class TestUntrained:
    def test_initial_state(self, engine: TrainingEngine) -> None:
        assert engine.state() is TrainingState.UNTRAINED
        assert not engine.is_trained
        assert not engine.is_training
        assert engine.snapshot is None

    def test_predict_before_training(self, engine: TrainingEngine, red_png: bytes) -> None:
        with pytest.raises(NotTrainedError):
            engine.predict(red_png)

    def test_not_stale_without_snapshot(self, engine: TrainingEngine) -> None:
        assert not engine.is_stale(make_labeled_images({"a": 2, "b": 2}))

    def test_save_snapshot_before_training(self, engine: TrainingEngine, tmp_path: Path) -> None:
        with pytest.raises(NotTrainedError):
            engine.save_snapshot(tmp_path / "snapshot.json")


class TestInvalidInput:
    def test_single_class(self, engine: TrainingEngine) -> None:
        with pytest.raises(InvalidInputError, match="at least 2 classes"):
            engine.train(make_labeled_images({"only": 3}))
        assert engine.state() is TrainingState.UNTRAINED
        assert not engine.is_training

    def test_empty_class(self, engine: TrainingEngine) -> None:
        labeled = make_labeled_images({"a": 3}) + [("b", [])]
        with pytest.raises(InvalidInputError, match="No images provided for class 'b'"):
            engine.train(labeled)
        assert engine.head is None

    def test_all_images_undecodable(self, engine: TrainingEngine) -> None:
        with pytest.raises(EmptyDatasetError):
            engine.train([("a", [b"bad"]), ("b", [b"worse"])])
        assert engine.state() is TrainingState.UNTRAINED
        assert not engine.is_training

    def test_corrupt_image_does_not_abort_training(self, engine: TrainingEngine) -> None:
        labeled = make_labeled_images({"a": 2, "b": 2})
        labeled[0][1].append(make_corrupt_png())
        head = engine.train(labeled)
        assert engine.head is head
        assert engine.snapshot is not None
        assert engine.snapshot.image_counts == (3, 2)

    def test_class_with_only_bad_images(self, engine: TrainingEngine) -> None:
        labeled = make_labeled_images({"a": 3}) + [("b", [b"bad", b"bad"])]
        with pytest.raises(InvalidInputError, match="No usable images"):
            engine.train(labeled)
        assert not engine.is_training


class TestTraining:
    def test_train_then_predict(self, engine: TrainingEngine) -> None:
        labeled = make_labeled_images({"red": 3, "green": 3})
        progress: list[TrainingProgress] = []
        head = engine.train(labeled, on_progress=progress.append)

        assert engine.head is head
        assert head.class_names == ("red", "green")
        assert [p.epoch for p in progress] == [0, 1, 2]
        assert engine.state() is TrainingState.TRAINED

        result = engine.predict(make_png((220, 30, 30)))
        assert result.class_name in {"red", "green"}
        assert 0.0 <= result.probability <= 1.0
        assert engine.predict(make_png((220, 30, 30))) == result

    def test_snapshot_taken(self, engine: TrainingEngine) -> None:
        engine.train({"a": make_labeled_images({"a": 2})[0][1], "b": [make_png((1, 2, 3))]})
        snap = engine.snapshot
        assert snap is not None
        assert snap.class_names == ("a", "b")
        assert snap.image_counts == (2, 1)
        assert snap.total_images == 3
        assert snap.project_id == "project-1"

    def test_stale_after_data_changes(self, engine: TrainingEngine) -> None:
        labeled = make_labeled_images({"a": 2, "b": 2})
        engine.train(labeled)
        assert not engine.is_stale(labeled)
        assert engine.state(labeled) is TrainingState.TRAINED

        changed = make_labeled_images({"a": 3, "b": 2})
        assert engine.is_stale(changed)
        assert engine.state(changed) is TrainingState.STALE

    def test_iter_train_streams_epochs(self, engine: TrainingEngine) -> None:
        run = engine.iter_train(make_labeled_images({"a": 2, "b": 2}))
        epochs = [p.epoch for p in run]
        assert epochs == [0, 1, 2]
        assert run.head is engine.head
        assert engine.state() is TrainingState.TRAINED

    def test_reset(self, engine: TrainingEngine) -> None:
        engine.train(make_labeled_images({"a": 2, "b": 2}))
        engine.reset()
        assert engine.state() is TrainingState.UNTRAINED
        assert engine.snapshot is None

    def test_snapshot_persistence(self, engine: TrainingEngine, tmp_path: Path) -> None:
        labeled = make_labeled_images({"a": 2, "b": 2})
        engine.train(labeled)
        path = tmp_path / "snapshot.json"
        engine.save_snapshot(path)
        assert engine.load_snapshot(path) == engine.snapshot
        assert engine.load_snapshot(tmp_path / "absent.json") is None

    def test_failed_retrain_releases_previous_head(self, engine: TrainingEngine) -> None:
        engine.train(make_labeled_images({"a": 2, "b": 2}))
        with pytest.raises(EmptyDatasetError):
            engine.train([("a", [b"bad"]), ("b", [b"bad"])])
        assert engine.head is None
        assert engine.state() is TrainingState.UNTRAINED


class TestConcurrency:
    def test_second_run_rejected(self, engine: TrainingEngine) -> None:
        release = threading.Event()
        started = _block_trainer(engine, release)
        labeled = make_labeled_images({"a": 2, "b": 2})

        run = engine.iter_train(labeled)
        try:
            assert started.wait(timeout=30)
            assert engine.state() is TrainingState.TRAINING
            with pytest.raises(AlreadyTrainingError):
                engine.train(labeled)
            with pytest.raises(AlreadyTrainingError):
                engine.reset()
            with pytest.raises(NotTrainedError):
                engine.predict(make_png())
        finally:
            release.set()
        run.result()

        assert not engine.is_training
        assert engine.is_trained
        assert engine.snapshot is not None

    def test_failed_run_clears_flag(self, engine: TrainingEngine) -> None:
        def _fail(*args, **kwargs):
            raise RuntimeError("boom")

        engine._trainer.train = _fail  # type: ignore[method-assign]
        with pytest.raises(RuntimeError, match="boom"):
            engine.train(make_labeled_images({"a": 2, "b": 2}))
        assert not engine.is_training
        assert engine.state() is TrainingState.UNTRAINED


class TestLoad:
    def test_shared_extractor_reused(self, engine: TrainingEngine, extractor: FeatureExtractor) -> None:
        assert engine.load() is extractor
        assert engine.extractor is extractor

    def test_lazy_load_from_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        created = MagicMock(spec=FeatureExtractor)
        factory = MagicMock(return_value=created)
        monkeypatch.setattr("transfer_trainer.engine.FeatureExtractor", factory)

        engine = TrainingEngine(EngineConfig(backbone="resnet18", image_size=64, pretrained=False))
        assert engine.extractor is None
        assert engine.load() is created
        assert engine.load() is created
        factory.assert_called_once_with(backbone="resnet18", image_size=64, pretrained=False)
