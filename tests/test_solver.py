import numpy as np
import pytest

from antfit.fit.solver import ConstrainedFit, FitSettings, FitStatus


def test_two_measurements_of_one_quantity():
    fit = ConstrainedFit()
    res = fit.solve(np.array([1.0, 3.0]), np.array([1.0, 1.0]), lambda x: np.array([x[0] - x[1]]))
    assert res.status is FitStatus.Success
    assert res.ndof == 1
    assert np.allclose(res.x, [2.0, 2.0])
    assert res.chi2 == pytest.approx(2.0)
    assert res.probability == pytest.approx(0.157299, abs=1e-5)


def test_unmeasured_variable():
    fit = ConstrainedFit()
    g = lambda x: np.array([x[0] - x[2], x[1] - x[2]])
    res = fit.solve(np.array([1.0, 3.0, 0.0]), np.array([1.0, 1.0, 0.0]), g)
    assert res.status is FitStatus.Success
    assert res.ndof == 1
    assert res.x[2] == pytest.approx(2.0)
    assert res.chi2 == pytest.approx(2.0)


def test_underconstrained():
    fit = ConstrainedFit()
    res = fit.solve(np.array([1.0, 3.0]), np.array([0.0, 0.0]), lambda x: np.array([x[0] - x[1]]))
    assert res.status is FitStatus.Underconstrained
    assert res.ndof == -1


def test_numeric_instability():
    fit = ConstrainedFit()
    res = fit.solve(np.array([np.nan, 3.0]), np.array([1.0, 1.0]), lambda x: np.array([x[0] - x[1]]))
    assert res.status is FitStatus.NumericInstability


def test_not_converged():
    fit = ConstrainedFit(FitSettings(max_iterations=1))
    res = fit.solve(np.array([1.0, 3.0]), np.array([1.0, 1.0]), lambda x: np.array([x[0] - x[1]]))
    assert res.status is FitStatus.NotConverged
    assert np.isnan(res.probability)


def test_workspace_reused_across_sizes():
    fit = ConstrainedFit()
    a = fit.solve(np.array([1.0, 3.0]), np.array([1.0, 1.0]), lambda x: np.array([x[0] - x[1]]))
    b = fit.solve(np.array([0.0, 1.0, 5.0]), np.array([1.0, 1.0, 1.0]), lambda x: np.array([x.sum() - 3.0]))
    c = fit.solve(np.array([1.0, 3.0]), np.array([1.0, 1.0]), lambda x: np.array([x[0] - x[1]]))
    assert a.status is b.status is c.status is FitStatus.Success
    assert a.chi2 == pytest.approx(c.chi2)
    assert b.chi2 == pytest.approx(3.0)
