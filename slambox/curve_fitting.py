"""Fitting the curve ``y = exp(a x^2 + b x + c)`` by non-linear least squares.

Two solvers are offered: plain Gauss-Newton and a damped
Levenberg-Marquardt iteration.  The error of a sample is
``e = y - exp(a x^2 + b x + c)``, weighted by ``1 / sigma^2``.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)

_TAU = 1e-5
_MAX_TRIALS = 10


@dataclass
class FitResult:
    """Outcome of a fit: the parameters, their squared error and accepted steps."""

    params: np.ndarray
    cost: float
    iterations: int


def model(params, x):
    """Evaluate ``exp(a x^2 + b x + c)`` for a scalar or an array of ``x``."""
    a, b, c = _as_params(params)
    x = np.asarray(x, dtype=float)
    with np.errstate(over="ignore"):
        return np.exp(a * x * x + b * x + c)


def generate_data(params=TRUE_PARAMS, n: int = 100, sigma: float = 1.0, seed: int | None = 0):
    """Sample ``n`` points at ``x = i / 100`` with Gaussian noise added to ``y``.

    The noise has standard deviation ``sigma ** 2``.  Returns ``(x, y)``.
    """
    if n < 0:
        raise ValueError("n must not be negative")
    if sigma < 0:
        raise ValueError("sigma must not be negative")
    rng = np.random.default_rng(seed)
    x = np.arange(n, dtype=float) / 100.0
    y = model(params, x) + rng.normal(0.0, sigma * sigma, size=n)
    return x, y


def residuals(params, x_data, y_data) -> np.ndarray:
    """Return ``y - exp(a x^2 + b x + c)`` for every sample."""
    x, y = _prepare(x_data, y_data)
    return y - model(params, x)


def jacobian(params, x_data) -> np.ndarray:
    """Return the ``(N, 3)`` derivatives of the residuals by ``(a, b, c)``."""
    x = np.asarray(x_data, dtype=float).reshape(-1)
    f = model(params, x)
    return np.column_stack([-x * x * f, -x * f, -f])


def gauss_newton(x_data, y_data, initial=INITIAL_PARAMS, iterations: int = 100, sigma: float = 1.0) -> FitResult:
    """Fit by Gauss-Newton, stopping when the cost no longer decreases."""
    x, y = _prepare(x_data, y_data)
    params = _as_params(initial).copy()
    inv2 = _inverse_variance(sigma)
    last_cost = 0.0
    accepted = 0
    with np.errstate(over="ignore", invalid="ignore"):
        for it in range(iterations):
            e = residuals(params, x, y)
            J = jacobian(params, x)
            H = inv2 * (J.T @ J)
            b = -inv2 * (J.T @ e)
            cost = float(e @ e)
            dx = _solve(H, b)
            if dx is None:
                logger.info("result is nan!")
                break
            if it > 0 and cost >= last_cost:
                logger.info("cost: %g >= last cost: %g, break.", cost, last_cost)
                break
            params = params + dx
            last_cost = cost
            accepted += 1
            logger.info("total cost: %g, update: %s, estimated params: %s", cost, dx, params)
        final = residuals(params, x, y)
    return FitResult(params, float(final @ final), accepted)


def levenberg_marquardt(
    x_data, y_data, initial=INITIAL_PARAMS, iterations: int = 50, sigma: float = 1.0
) -> FitResult:
    """Fit by Levenberg-Marquardt with an adaptive damping factor."""
    x, y = _prepare(x_data, y_data)
    params = _as_params(initial).copy()
    inv2 = _inverse_variance(sigma)

    def weighted_cost(p: np.ndarray) -> float:
        e = residuals(p, x, y)
        return float(e @ e) * inv2

    accepted = 0
    with np.errstate(over="ignore", invalid="ignore"):
        chi = weighted_cost(params)
        lam: float | None = None
        ni = 2.0
        for _ in range(iterations):
            e = residuals(params, x, y)
            J = jacobian(params, x)
            H = inv2 * (J.T @ J)
            b = -inv2 * (J.T @ e)
            if lam is None:
                lam = _TAU * max(float(np.max(np.diag(H))), 1e-12)
            step_taken = False
            for _trial in range(_MAX_TRIALS):
                dx = _solve(H + lam * np.eye(3), b)
                if dx is not None:
                    candidate = params + dx
                    new_chi = weighted_cost(candidate)
                    scale = float(dx @ (lam * dx + b)) + 1e-3
                    rho = (chi - new_chi) / scale
                else:
                    new_chi, rho = float("inf"), -1.0
                if np.isfinite(new_chi) and rho > 0:
                    alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, 2.0 / 3.0)
                    lam *= max(1.0 / 3.0, alpha)
                    ni = 2.0
                    params, chi = candidate, new_chi
                    step_taken = True
                    break
                lam *= ni
                ni *= 2.0
            if not step_taken:
                break
            accepted += 1
            logger.info("iteration %d: chi2 %g, lambda %g", accepted, chi, lam)
        final = residuals(params, x, y)
    return FitResult(params, float(final @ final), accepted)


def _as_params(params) -> np.ndarray:
    arr = np.asarray(params, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"expected three parameters (a, b, c), got {arr.size}")
    return arr


def _prepare(x_data, y_data) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(x_data, dtype=float).reshape(-1)
    y = np.asarray(y_data, dtype=float).reshape(-1)
    if x.shape != y.shape:
        raise ValueError(f"x and y differ in length: {x.size} vs {y.size}")
    return x, y


def _inverse_variance(sigma: float) -> float:
    if sigma <= 0:
        raise ValueError("sigma must be positive")
    return 1.0 / (sigma * sigma)


def _solve(H: np.ndarray, b: np.ndarray) -> np.ndarray | None:
    try:
        dx = np.linalg.solve(H, b)
    except np.linalg.LinAlgError:
        return None
    return dx if np.all(np.isfinite(dx)) else None


_METHODS = {"gauss-newton": gauss_newton, "levenberg-marquardt": levenberg_marquardt}


def main(argv: Sequence[str] | None = None) -> int:
    """Generate noisy samples of the curve and fit them."""
    parser = argparse.ArgumentParser(description="Fit y = exp(a x^2 + b x + c) to noisy samples.")
    parser.add_argument("--method", choices=sorted(_METHODS), default="gauss-newton")
    parser.add_argument("--points", type=int, default=100)
    parser.add_argument("--sigma", type=float, default=1.0)
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args(argv)

    try:
        x, y = generate_data(TRUE_PARAMS, args.points, args.sigma, args.seed)
        start = time.perf_counter()
        result = _METHODS[args.method](x, y, INITIAL_PARAMS, sigma=args.sigma)
        elapsed = time.perf_counter() - start
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    a, b, c = result.params
    print(f"solve time cost = {elapsed:g} seconds. ")
    print(f"estimated abc = {a:g}, {b:g}, {c:g}")
    return 0


if __name__ == "__main__":
    sys.exit(main())