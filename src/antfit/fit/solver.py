"""
Constrained least-squares solver.

Minimises chi2 = sum_i ((y_i - y0_i) / sigma_i)^2 over the measured variables
y, subject to g(y, a) = 0, where a are unmeasured (free) variables. Each
iteration linearises g around the current point (numerical central-difference
Jacobian) and solves the linear problem with Lagrange multipliers:

    r      = g(x_k) + B (y0 - y_k)
    S      = B V B^T
    da     = -(A^T S^-1 A)^-1 A^T S^-1 r
    lambda = S^-1 (r + A da)
    y      = y0 - V B^T lambda

with B = dg/dy, A = dg/da and V = diag(sigma^2). The fit has converged once
chi2 changes by less than chi2_accuracy and every constraint is satisfied to
constraint_accuracy.

A variable with sigma == 0 is unmeasured. ndof = n_constraints - n_unmeasured.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable
import math

import numpy as np
from scipy.stats import chi2 as chi2_dist


class FitStatus(Enum):
    Success = "success"
    NotConverged = "not_converged"
    NumericInstability = "numeric_instability"   # NaN/inf or singular matrix
    Underconstrained = "underconstrained"


@dataclass(frozen=True)
class FitSettings:
    max_iterations: int = 30
    constraint_accuracy: float = 1.0e-3     # max |g| [MeV]
    chi2_accuracy: float = 1.0e-2
    derivative_step: float = 1.0e-4         # relative to sigma (or to |x| if unmeasured)


@dataclass(frozen=True)
class SolverResult:
    status: FitStatus
    chi2: float = math.nan
    ndof: int = 0
    probability: float = math.nan
    n_iterations: int = 0
    x: np.ndarray = field(default_factory=lambda: np.zeros(0))


ConstraintFn = Callable[[np.ndarray], np.ndarray]


class ConstrainedFit:
    """
    Reusable solver workspace. Arrays are only reallocated when the number of
    variables or constraints changes; nothing else survives between solve()
    calls.
    """

    def __init__(self, settings: FitSettings | None = None):
        self.settings = settings or FitSettings()
        self._shape = (-1, -1)
        self._J = np.zeros((0, 0))
        self._x = np.zeros(0)

    def _ensure_workspace(self, n: int, m: int) -> None:
        if self._shape != (n, m):
            self._J = np.zeros((m, n))
            self._x = np.zeros(n)
            self._shape = (n, m)

    def _jacobian(self, g: ConstraintFn, x: np.ndarray, steps: np.ndarray) -> np.ndarray:
        J = self._J
        xw = self._x
        xw[:] = x
        for j in range(x.size):
            h = steps[j]
            xw[j] = x[j] + h
            gp = g(xw)
            xw[j] = x[j] - h
            gm = g(xw)
            xw[j] = x[j]
            J[:, j] = (gp - gm) / (2.0 * h)
        return J

    def _steps(self, x: np.ndarray, sigmas: np.ndarray) -> np.ndarray:
        rel = self.settings.derivative_step
        return np.where(sigmas > 0, rel * sigmas, rel * np.maximum(np.abs(x), 1.0))

    def solve(self, x0: np.ndarray, sigmas: np.ndarray, g: ConstraintFn) -> SolverResult:
        s = self.settings
        x0 = np.asarray(x0, dtype=float)
        sigmas = np.asarray(sigmas, dtype=float)
        measured = sigmas > 0
        unmeasured = ~measured
        n_unmeasured = int(unmeasured.sum())

        f = np.asarray(g(x0), dtype=float)
        ndof = f.size - n_unmeasured
        if ndof < 1:
            return SolverResult(FitStatus.Underconstrained, ndof=ndof, x=x0.copy())

        self._ensure_workspace(x0.size, f.size)
        V = sigmas[measured] ** 2
        y0 = x0[measured]
        x = x0.copy()
        chi2 = 0.0

        for it in range(1, s.max_iterations + 1):
            if not np.all(np.isfinite(f)):
                return SolverResult(FitStatus.NumericInstability, ndof=ndof, n_iterations=it, x=x)

            J = self._jacobian(g, x, self._steps(x, sigmas))
            if not np.all(np.isfinite(J)):
                return SolverResult(FitStatus.NumericInstability, ndof=ndof, n_iterations=it, x=x)
            B = J[:, measured]
            A = J[:, unmeasured]

            r = f + B @ (y0 - x[measured])
            S = (B * V) @ B.T
            try:
                if n_unmeasured:
                    SinvA = np.linalg.solve(S, A)
                    Sinvr = np.linalg.solve(S, r)
                    da = -np.linalg.solve(A.T @ SinvA, A.T @ Sinvr)
                    lam = Sinvr + SinvA @ da
                else:
                    lam = np.linalg.solve(S, r)
            except np.linalg.LinAlgError:
                return SolverResult(FitStatus.NumericInstability, ndof=ndof, n_iterations=it, x=x)

            x_new = x.copy()
            x_new[measured] = y0 - V * (B.T @ lam)
            if n_unmeasured:
                x_new[unmeasured] = x[unmeasured] + da
            if not np.all(np.isfinite(x_new)):
                return SolverResult(FitStatus.NumericInstability, ndof=ndof, n_iterations=it, x=x)

            chi2_new = float(np.sum((x_new[measured] - y0) ** 2 / V))
            f = np.asarray(g(x_new), dtype=float)
            x = x_new
            converged = (
                np.all(np.isfinite(f))
                and abs(chi2_new - chi2) < s.chi2_accuracy
                and float(np.max(np.abs(f))) < s.constraint_accuracy
            )
            chi2 = chi2_new
            if converged:
                prob = float(chi2_dist.sf(chi2, ndof))
                if not math.isfinite(prob):
                    return SolverResult(FitStatus.NumericInstability, chi2, ndof, n_iterations=it, x=x)
                return SolverResult(FitStatus.Success, chi2, ndof, prob, it, x)

        return SolverResult(FitStatus.NotConverged, chi2, ndof, n_iterations=s.max_iterations, x=x)
