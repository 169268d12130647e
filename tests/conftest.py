"""Pytest fixtures for the importance sweep tests."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from experiment_rf_importance_sweep import SummaryWriter


@pytest.fixture
def rng():
    """Seeded generator so every test draws the same data."""
    return np.random.default_rng(2024)


@pytest.fixture
def results_folder(tmp_path):
    folder = tmp_path / "results"
    folder.mkdir()
    return str(folder)


@pytest.fixture
def summary(tmp_path):
    with SummaryWriter(str(tmp_path / "summary.txt"), print_to_console=False) as writer:
        yield writer


@pytest.fixture
def small_forest():
    """Forest settings small enough for unit tests."""
    return {'n_estimators': 30, 'max_features': 1, 'min_samples_leaf': 5}
