"""Tests for the Alkire-Foster multidimensional poverty class."""

import numpy as np
import polars as pl
import pytest

from povineq import SurveyDesign, as_replicate_design, prepare, svyafc

EDUCATION = ["none", "primary", "secondary"]


@pytest.fixture
def afc_design():
    """Four households, income and an ordered education level."""
    df = pl.DataFrame(
        {
            "income": [0.0, 5000.0, 10000.0, 20000.0],
            "education": ["none", "secondary", "none", "primary"],
            "weight": [1.0, 1.0, 1.0, 1.0],
        }
    ).with_columns(pl.col("education").cast(pl.Enum(EDUCATION)))
    return prepare(SurveyDesign(df, weight_col="weight"))


def test_single_dimension_headcount(afc_design):
    """With one dimension and g = 0 the measure is the headcount ratio."""
    res = svyafc("~income", afc_design, k=0.5, g=0, cutoffs=[10000])

    assert res.statistic == "alkire-foster"
    assert res.dimensions == ("income",)
    assert float(res) == pytest.approx(0.5)

    h, a = res.extra["coef"].to_list()
    assert res.extra["term"].to_list() == ["H", "A"]
    assert h == pytest.approx(0.5)
    assert a == pytest.approx(1.0)


def test_adjusted_headcount_decomposition(afc_design):
    """M0 = H x A with ordered categorical dimensions compared on level order."""
    res = svyafc("~income + education", afc_design, k=0.5, g=0, cutoffs=[10000, "primary"])

    # deprivation scores 1, 0.5, 0.5, 0
    assert float(res) == pytest.approx(0.5)
    h, a = res.extra["coef"].to_list()
    assert h == pytest.approx(0.75)
    assert a == pytest.approx(2 / 3)
    assert h * a == pytest.approx(float(res))
    assert res.parameters["dimw"] == [0.5, 0.5]


def test_multidimensional_cutoff(afc_design):
    """Raising k to 1 keeps only households deprived in every dimension."""
    res = svyafc("~income + education", afc_design, k=1, g=0, cutoffs=[10000, "primary"])

    assert float(res) == pytest.approx(0.25)
    h, a = res.extra["coef"].to_list()
    assert h == pytest.approx(0.25)
    assert a == pytest.approx(1.0)


def test_gap_exponent(afc_design):
    """g > 0 weights numeric gaps; ordered dimensions count fully when deprived."""
    res = svyafc("~income + education", afc_design, k=0.5, g=1, cutoffs=[10000, "primary"])

    # censored sums 1, 0.25, 0.5, 0
    assert float(res) == pytest.approx(1.75 / 4)
    assert res.extra is None


def test_dimension_weights(afc_design):
    res = svyafc(
        "~income + education", afc_design, k=0.5, g=0, cutoffs=[10000, "primary"], dimw=[0.75, 0.25]
    )

    # scores 1, 0.75, 0.25, 0: the third household is no longer poor
    assert float(res) == pytest.approx(1.75 / 4)
    assert res.extra["coef"][0] == pytest.approx(0.5)


def test_linearized_and_replicate_agree(design, boot_design):
    kwargs = {"k": 0.5, "g": 0, "cutoffs": [12000, 30]}
    lin = svyafc("~income + assets", design, **kwargs)
    boot = svyafc("~income + assets", boot_design, **kwargs)

    assert float(boot) == pytest.approx(float(lin))
    assert lin.se()[0] > 0
    assert boot.se()[0] > 0

    h, a = lin.extra["coef"].to_list()
    assert 0 <= h <= 1
    assert h * a == pytest.approx(float(lin))
    assert (lin.extra["se"] > 0).all()


def test_domain_estimate(design):
    kwargs = {"k": 0.5, "g": 1, "cutoffs": [12000, 30]}
    sub = svyafc("~income + assets", design.subset(pl.col("sex") == "F"), **kwargs)
    whole = svyafc("~income + assets", design, **kwargs)

    assert not sub.is_na
    assert float(sub) != pytest.approx(float(whole))


def test_no_poor_units_warns(afc_design):
    with pytest.warns(UserWarning, match="multidimensionally poor"):
        res = svyafc("~education", afc_design, k=1, g=0, cutoffs=["none"])

    assert float(res) == pytest.approx(0.0)
    assert res.extra["coef"][0] == pytest.approx(0.0)


def test_missing_achievement():
    df = pl.DataFrame(
        {
            "income": [0.0, 5000.0, None, 20000.0, 8000.0],
            "assets": [1.0, 20.0, 30.0, 40.0, 50.0],
            "weight": [1.0, 2.0, 1.0, 1.0, 1.0],
        }
    )
    design = prepare(SurveyDesign(df, weight_col="weight"))
    kwargs = {"k": 0.5, "g": 0, "cutoffs": [10000, 25]}

    res = svyafc("~income + assets", design, **kwargs)
    assert res.is_na
    assert res.dimensions == ("income", "assets")

    dropped = svyafc("~income + assets", design, na_rm=True, **kwargs)
    complete = svyafc("~income + assets", design.subset(pl.col("income").is_not_null()), **kwargs)
    assert float(dropped) == pytest.approx(float(complete))
    assert dropped.se()[0] == pytest.approx(complete.se()[0])


def test_parameter_errors(afc_design):
    with pytest.raises(ValueError, match="k in"):
        svyafc("~income", afc_design, k=0, g=0, cutoffs=[10000])
    with pytest.raises(ValueError, match="g < 0"):
        svyafc("~income", afc_design, k=0.5, g=-1, cutoffs=[10000])
    with pytest.raises(ValueError, match="cutoffs"):
        svyafc("~income", afc_design, k=0.5, g=0, cutoffs=None)
    with pytest.raises(ValueError, match="list"):
        svyafc("~income", afc_design, k=0.5, g=0, cutoffs=10000)
    with pytest.raises(ValueError, match="2 dimensions"):
        svyafc("~income + education", afc_design, k=0.5, g=0, cutoffs=[10000])
    with pytest.raises(ValueError, match="dimw"):
        svyafc("~income", afc_design, k=0.5, g=0, cutoffs=[10000], dimw=[0.5, 0.5])
    with pytest.raises(ValueError, match="not a level"):
        svyafc("~education", afc_design, k=0.5, g=0, cutoffs=["tertiary"])
    with pytest.raises(ValueError, match="numeric cutoff"):
        svyafc("~income", afc_design, k=0.5, g=0, cutoffs=["10000"])


def test_unsupported_dimension_types(afc_design):
    unordered = afc_design.variables.with_columns(pl.col("education").cast(pl.String).cast(pl.Categorical))
    design = prepare(SurveyDesign(unordered, weight_col="weight"))
    with pytest.raises(TypeError, match="unordered"):
        svyafc("~education", design, k=0.5, g=0, cutoffs=["primary"])

    text = afc_design.variables.with_columns(pl.col("education").cast(pl.String))
    design = prepare(SurveyDesign(text, weight_col="weight"))
    with pytest.raises(TypeError, match="ordered categorical"):
        svyafc("~education", design, k=0.5, g=0, cutoffs=["primary"])


def test_negative_achievements_rejected():
    df = pl.DataFrame({"income": [-1.0, 5.0], "weight": [1.0, 1.0]})
    design = prepare(SurveyDesign(df, weight_col="weight"))

    with pytest.raises(ValueError, match="non-negative"):
        svyafc("~income", design, k=0.5, g=0, cutoffs=[3])


def test_integer_achievements_accepted(afc_design):
    """Integer-typed achievement columns behave like their float versions."""
    as_int = afc_design.variables.with_columns(pl.col("income").cast(pl.Int64))
    design = prepare(SurveyDesign(as_int, weight_col="weight"))

    res = svyafc("~income", design, k=0.5, g=1, cutoffs=[10000])
    expected = svyafc("~income", afc_design, k=0.5, g=1, cutoffs=[10000])
    assert float(res) == pytest.approx(float(expected))


def test_undefined_replicate_keeps_estimate(design):
    """A one-household domain has a finite estimate but no jackknife variance."""
    jk = as_replicate_design(design, method="jk1").subset(pl.col("hh_id") == 1)

    res = svyafc("~income + assets", jk, k=0.5, g=1, cutoffs=[1e6, 200])
    assert np.isfinite(res.estimate).all()
    assert float(res) > 0
    assert np.isnan(res.variance).all()
