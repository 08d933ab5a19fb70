import pytest
import torch

from cdrbm.rbm import RBM, RBMParameters


SEED = 1234


@pytest.fixture
def seed():
    return SEED


@pytest.fixture
def generator(seed):
    return torch.Generator().manual_seed(seed)


@pytest.fixture
def zero_parameters():
    """4 visible, 3 hidden units, everything zero."""
    return RBMParameters.zeros(4, 3)


@pytest.fixture
def half_inputs():
    return torch.full((2, 4), 0.5, dtype=torch.float64)


@pytest.fixture
def zero_rbm(half_inputs):
    return RBM(4, 3, generator=torch.Generator().manual_seed(SEED), inputs=half_inputs)


@pytest.fixture
def random_parameters():
    return RBMParameters.random(6, 5, torch.Generator().manual_seed(0))


@pytest.fixture
def binary_data():
    return torch.bernoulli(torch.full((64, 6), 0.3, dtype=torch.float64),
                           generator=torch.Generator().manual_seed(7))
