"""Shared fixtures: a small stratified, clustered household sample."""

import numpy as np
import polars as pl
import pytest

from povineq import SurveyDesign, as_replicate_design, prepare
from povineq.utils.config_utils import clear_config_cache


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    monkeypatch.delenv("POVINEQ_CONFIG", raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def survey_df():
    """4 strata x 5 PSUs x 6 households, strictly positive incomes."""
    rng = np.random.default_rng(2024)
    n_strata, n_psu, n_units = 4, 5, 6
    n = n_strata * n_psu * n_units

    return pl.DataFrame(
        {
            "hh_id": np.arange(1, n + 1),
            "strata": np.repeat(np.arange(1, n_strata + 1), n_psu * n_units),
            "psu": np.repeat(np.arange(1, n_strata * n_psu + 1), n_units),
            "weight": np.round(rng.uniform(50, 150, size=n), 1),
            "income": np.round(rng.lognormal(mean=9.5, sigma=0.6, size=n), 2),
            "assets": np.round(rng.uniform(0, 100, size=n), 1),
            "region": np.where(np.arange(n) % 3 == 0, "A", "B"),
            "sex": np.tile(["F", "M"], n // 2),
            "age": rng.integers(16, 90, size=n),
        }
    )


@pytest.fixture
def design(survey_df):
    return prepare(SurveyDesign(survey_df, weight_col="weight", strata_col="strata", psu_col="psu"))


@pytest.fixture
def boot_design(design):
    return as_replicate_design(design, method="bootstrap", replicates=200, seed=42)


@pytest.fixture
def make_design():
    """Factory for prepared single-stage designs where every row is its own PSU."""

    def _make(values, weights=None, column="income"):
        weights = [1.0] * len(values) if weights is None else weights
        df = pl.DataFrame({column: values, "weight": weights})
        return prepare(SurveyDesign(df, weight_col="weight"))

    return _make
