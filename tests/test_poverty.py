"""Tests for the CHU and Watts poverty measures and the poverty threshold."""

import math

import numpy as np
import polars as pl
import pytest

from povineq import as_replicate_design, svyarpt, svychu, svywatts
from povineq.indicators import _common

DECILES = [float(i) for i in range(1, 11)]


def test_watts_absolute_threshold(make_design):
    """Watts index: mean of log(z / y) over the poor, zero for the rest."""
    design = make_design([1.0, 2.0, 4.0, 8.0])

    res = svywatts("~income", design, type_thresh="abs", abs_thresh=4)
    assert res.statistic == "watts"
    assert float(res) == pytest.approx(0.75 * math.log(2))
    assert res.se()[0] > 0
    assert res.thresh is None


def test_chu_absolute_threshold(make_design):
    design = make_design([1.0, 2.0, 4.0, 8.0])

    res = svychu("~income", design, g=0.5, type_thresh="abs", abs_thresh=4, thresh=True)
    assert res.statistic == "chu0.5"
    assert float(res) == pytest.approx((0.5 + 1 - math.sqrt(0.5)) / 4)
    assert res.thresh == pytest.approx(4.0)
    assert res.parameters["g"] == 0.5


def test_chu_zero_is_watts(design):
    """g = 0 is the Watts limit of the CHU class."""
    chu = svychu("~income", design, g=0, type_thresh="relq")
    watts = svywatts("~income", design, type_thresh="relq")

    assert chu.statistic == "watts"
    assert float(chu) == pytest.approx(float(watts))
    assert chu.se()[0] == pytest.approx(watts.se()[0])


def test_relative_thresholds(make_design):
    """relq uses percent x quantile, relm percent x mean."""
    design = make_design(DECILES)

    relq = svywatts("~income", design, type_thresh="relq", thresh=True)
    assert relq.thresh == pytest.approx(3.0)
    assert float(relq) == pytest.approx((math.log(3) + math.log(1.5)) / 10)

    relm = svywatts("~income", design, type_thresh="relm", thresh=True)
    assert relm.thresh == pytest.approx(3.3)

    q25 = svychu("~income", design, g=1, type_thresh="relq", percent=1.0, quantiles=0.25, thresh=True)
    assert q25.thresh == pytest.approx(3.0)


def test_estimated_threshold_adds_variance(design):
    """Linearizing the estimated threshold changes the variance."""
    th = svywatts("~income", design, type_thresh="relq", thresh=True).thresh
    estimated = svywatts("~income", design, type_thresh="relq")
    fixed = svywatts("~income", design, type_thresh="abs", abs_thresh=th)

    assert float(estimated) == pytest.approx(float(fixed))
    assert estimated.se()[0] != pytest.approx(fixed.se()[0])


def test_domain_uses_full_population_threshold(design, boot_design):
    """Subsets reuse the threshold of the whole sample."""
    full = svychu("~income", design, g=0.5, type_thresh="relq", thresh=True)

    sub = svychu(
        "~income", design.subset(pl.col("region") == "A"), g=0.5, type_thresh="relq", thresh=True
    )
    boot_sub = svychu(
        "~income", boot_design.subset(pl.col("region") == "A"), g=0.5, type_thresh="relq", thresh=True
    )

    assert sub.thresh == pytest.approx(full.thresh)
    assert boot_sub.thresh == pytest.approx(full.thresh)
    assert float(boot_sub) == pytest.approx(float(sub))
    assert boot_sub.method == "replication"
    assert boot_sub.se()[0] > 0


def test_nonpositive_incomes_dropped_with_warning(make_design):
    design = make_design([0.0, 1.0, 2.0, 4.0, 8.0])

    with pytest.warns(UserWarning, match="strictly positive"):
        res = svywatts("~income", design, type_thresh="abs", abs_thresh=4)

    assert float(res) == pytest.approx(0.75 * math.log(2))


def test_missing_income(survey_df):
    """NA without na_rm; with it, the same as the complete-case domain."""
    from povineq import SurveyDesign, prepare

    df = survey_df.with_columns(
        pl.when(pl.col("hh_id") == 10).then(None).otherwise(pl.col("income")).alias("income")
    )
    design = prepare(SurveyDesign(df, weight_col="weight", strata_col="strata", psu_col="psu"))

    assert svywatts("~income", design, type_thresh="abs", abs_thresh=10000).is_na

    dropped = svywatts("~income", design, type_thresh="abs", abs_thresh=10000, na_rm=True)
    complete = svywatts(
        "~income", design.subset(pl.col("income").is_not_null()), type_thresh="abs", abs_thresh=10000
    )
    assert float(dropped) == pytest.approx(float(complete))
    assert dropped.se()[0] == pytest.approx(complete.se()[0])


def test_parameter_errors(design):
    with pytest.raises(ValueError, match="g="):
        svychu("~income", design, g=None, type_thresh="abs", abs_thresh=1)
    with pytest.raises(ValueError, match="interval"):
        svychu("~income", design, g=1.5, type_thresh="abs", abs_thresh=1)

    # the packaged default is an absolute threshold
    with pytest.raises(ValueError, match="abs_thresh"):
        svywatts("~income", design)

    with pytest.raises(ValueError, match="type_thresh"):
        svywatts("~income", design, type_thresh="relative")
    with pytest.raises(ValueError, match="percent"):
        svywatts("~income", design, type_thresh="relq", percent=0)
    with pytest.raises(ValueError, match="quantiles"):
        svywatts("~income", design, type_thresh="relq", quantiles=1.0)


def test_arpt(make_design, design, boot_design):
    """At-risk-of-poverty threshold: 60% of the median by default."""
    res = svyarpt("~income", make_design(DECILES))
    assert res.statistic == "arpt"
    assert float(res) == pytest.approx(3.0)
    assert res.se()[0] > 0
    assert res.lin.shape == (10,)

    lin = svyarpt("~income", design)
    boot = svyarpt("~income", boot_design)
    assert float(boot) == pytest.approx(float(lin))
    assert np.isfinite(boot.se()[0])

    with pytest.raises(ValueError, match="quantiles"):
        svyarpt("~income", design, quantiles=0)


def test_replicate_threshold_skips_density(design, boot_design, monkeypatch):
    """Replicate designs only need the threshold value, not its linearization."""
    expected = svywatts("~income", boot_design, type_thresh="relq", thresh=True)

    def no_density(*args, **kwargs):
        raise AssertionError("density estimate requested")

    monkeypatch.setattr(_common, "density_at", no_density)

    boot = svywatts("~income", boot_design, type_thresh="relq", thresh=True)
    assert float(boot) == pytest.approx(float(expected))
    assert boot.thresh == pytest.approx(expected.thresh)
    assert np.isfinite(boot.se()[0])

    with pytest.raises(AssertionError, match="density"):
        svywatts("~income", design, type_thresh="relq")


def test_undefined_replicate_keeps_estimate(design):
    """A one-household domain has a finite estimate but no jackknife variance."""
    jk = as_replicate_design(design, method="jk1").subset(pl.col("hh_id") == 1)

    watts = svywatts("~income", jk, type_thresh="abs", abs_thresh=1e6)
    arpt = svyarpt("~income", jk)

    for res in (watts, arpt):
        assert np.isfinite(res.estimate).all()
        assert float(res) > 0
        assert np.isnan(res.variance).all()
