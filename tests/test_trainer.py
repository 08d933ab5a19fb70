"""Tests for the epoch training loop, early stopping and checkpointing."""
import os

import numpy as np
import pytest
import torch
from torch.utils.data import DataLoader, TensorDataset

from cdrbm.common import Checkpointer, EarlyStopping
from cdrbm.config import RBMConfig, TrainingConfig, build_rbm
from cdrbm.errors import InvalidParameterError
from cdrbm.rbm import RBM, RBMTrainer


@pytest.fixture
def loaders(binary_data):
    labels = torch.zeros(binary_data.shape[0])
    training_loader = DataLoader(TensorDataset(binary_data, labels), batch_size=16, shuffle=False)
    validation_loader = DataLoader(TensorDataset(binary_data[:20], labels[:20]), batch_size=8, shuffle=False)
    return training_loader, validation_loader


@pytest.fixture
def model():
    return build_rbm(RBMConfig(n_visible=6, n_hidden=4, seed=0))


class TestRBMTrainer:
    def test_train_model_metrics(self, model, loaders):
        trainer = RBMTrainer(model, *loaders, n_epochs=3, learning_rate=0.05, verbose=False)
        metrics = trainer.train_model()
        assert set(metrics) == {"train_cross_entropy", "val_cross_entropy", "val_free_energy"}
        for values in metrics.values():
            assert isinstance(values, np.ndarray)
            assert values.shape == (3,)
            assert np.isfinite(values).all()

    def test_without_validation(self, model, loaders):
        trainer = RBMTrainer(model, loaders[0], None, n_epochs=2, learning_rate=0.05, verbose=False)
        metrics = trainer.train_model()
        assert set(metrics) == {"train_cross_entropy"}

    def test_training_changes_parameters(self, model, loaders):
        weights_before = model.weights.clone()
        RBMTrainer(model, *loaders, n_epochs=1, learning_rate=0.05, verbose=False).train_model()
        assert not torch.equal(model.weights, weights_before)
        model.parameters_state.validate(6, 4)

    def test_evaluate_leaves_model_alone(self, model, loaders):
        trainer = RBMTrainer(model, *loaders, n_epochs=1, learning_rate=0.05, verbose=False)
        generator_state = model.generator.get_state()
        weights_before = model.weights.clone()
        metrics = trainer.evaluate()
        assert set(metrics) == {"cross_entropy", "free_energy"}
        assert torch.equal(model.generator.get_state(), generator_state)
        assert torch.equal(model.weights, weights_before)
        assert model.inputs is None

    def test_image_like_batches_are_flattened(self):
        images = torch.bernoulli(torch.full((8, 1, 2, 3), 0.5), generator=torch.Generator().manual_seed(0))
        model = RBM(6, 2, generator=torch.Generator().manual_seed(0))
        loader = DataLoader(images, batch_size=4)
        metrics = RBMTrainer(model, loader, None, n_epochs=1, learning_rate=0.1, verbose=False).train_model()
        assert metrics["train_cross_entropy"].shape == (1,)
        assert model.inputs.dtype == torch.float64
        assert model.inputs.shape == (4, 6)

    @pytest.mark.parametrize("kwargs", [{"n_epochs": 0}, {"learning_rate": 0.}, {"k": 0}])
    def test_invalid_arguments(self, model, loaders, kwargs):
        arguments = {"n_epochs": 1, "learning_rate": 0.1, "k": 1}
        arguments.update(kwargs)
        with pytest.raises(InvalidParameterError):
            RBMTrainer(model, *loaders, **arguments)

    def test_verbose_output(self, model, loaders, capsys):
        RBMTrainer(model, *loaders, n_epochs=1, learning_rate=0.05, verbose=True).train_model()
        output = capsys.readouterr().out
        assert "Starting epoch 1" in output
        assert "val_cross_entropy" in output

    def test_tensorboard_logdir(self, model, loaders, tmp_path):
        logdir = tmp_path / "runs"
        RBMTrainer(model, *loaders, n_epochs=1, learning_rate=0.05, verbose=False,
                   tensorboard_logdir=str(logdir)).train_model()
        assert any(name.startswith("events.out.tfevents") for _, _, files in os.walk(logdir) for name in files)

    def test_checkpoints(self, model, loaders, tmp_path):
        checkpointer = Checkpointer(model, str(tmp_path / "ckpt"), "rbm", frequency=2)
        RBMTrainer(model, *loaders, n_epochs=3, learning_rate=0.05, verbose=False,
                   checkpointer=checkpointer).train_model()
        assert sorted(os.listdir(tmp_path / "ckpt")) == ["rbm_0000.pt", "rbm_0002.pt", "rbm_final.pt"]

        restored = RBM(6, 4)
        restored.load_state_dict(torch.load(tmp_path / "ckpt" / "rbm_final.pt"))
        assert torch.equal(restored.weights, model.weights)

    def test_from_config(self, model, loaders):
        config = TrainingConfig(learning_rate=0.2, k=3, n_epochs=2, batch_size=7, verbose=False,
                                early_stopping_patience=1)
        trainer = RBMTrainer.from_config(model, config, loaders[0].dataset, loaders[1].dataset)
        assert trainer.training_loader.batch_size == 7
        assert trainer.validation_loader.batch_size == 7
        assert len(trainer.training_loader) == 10
        assert trainer.learning_rate == 0.2
        assert trainer.k == 3
        assert trainer.early_stopper.patience == 1
        assert trainer.early_stopper.restore_best
        assert trainer.train_model()["train_cross_entropy"].shape[0] <= 2

    def test_from_config_shuffling_is_seeded(self, binary_data):
        config = TrainingConfig(n_epochs=1, batch_size=8, verbose=False)
        first = RBMTrainer.from_config(build_rbm(RBMConfig(n_visible=6, n_hidden=4, seed=5)), config, binary_data)
        second = RBMTrainer.from_config(build_rbm(RBMConfig(n_visible=6, n_hidden=4, seed=5)), config, binary_data)
        assert torch.equal(next(iter(first.training_loader)), next(iter(second.training_loader)))
        assert first.validation_loader is None

    def test_empty_validation_loader(self, model, loaders):
        empty = DataLoader(TensorDataset(torch.zeros(0, 6, dtype=torch.float64)), batch_size=4)
        with pytest.raises(InvalidParameterError):
            RBMTrainer(model, loaders[0], empty, n_epochs=1, learning_rate=0.1)

    def test_model_moves_to_device(self, loaders):
        model = RBM(6, 4, generator=torch.Generator().manual_seed(0))
        trainer = RBMTrainer(model, *loaders, n_epochs=1, learning_rate=0.1, device="cpu", verbose=False)
        assert trainer.model.weights.device.type == "cpu"

    def test_generator_on_other_device(self, model, loaders):
        with pytest.raises(InvalidParameterError):
            RBMTrainer(model, *loaders, n_epochs=1, learning_rate=0.1, device="meta")
        assert model.weights.device.type == "cpu"


class TestEarlyStopping:
    def test_stops_after_patience_is_exhausted(self, model):
        stopper = EarlyStopping(model, patience=1)
        assert [stopper.update(value) for value in [1.0, 0.5, 0.6, 0.7]] == [False, False, False, True]

    def test_restores_best_parameters(self, model):
        stopper = EarlyStopping(model, patience=0, restore_best=True)
        best_weights = model.weights.clone()
        stopper.update(1.0)
        with torch.no_grad():
            model.weights += 1.
        assert stopper.update(2.0)
        assert torch.equal(model.weights, best_weights)

    def test_patience_none_never_stops(self, model):
        stopper = EarlyStopping(model, patience=None)
        assert not any(stopper.update(value) for value in [1., 2., 3., 4.])

    def test_nan_never_counts_as_decrease(self, model):
        stopper = EarlyStopping(model, patience=0)
        assert not stopper.update(1.0)
        assert stopper.update(float("nan"))


class TestCheckpointer:
    def test_frequency(self, model, tmp_path):
        checkpointer = Checkpointer(model, str(tmp_path), "m", frequency=3)
        assert checkpointer.maybe_checkpoint(1) is None
        path = checkpointer.maybe_checkpoint(3)
        assert path.endswith("m_0003.pt")
        assert os.path.exists(path)
