"""
Special-function backend and Gaussian tail utilities.

The truncated-Gaussian moments used by quantized observations and by the
Laplacian MMSE denoiser are ratios of normal densities to normal CDF
differences. Far from a bin, both the numerator and the denominator underflow
and the naive ratio becomes 0/0. This module provides a log-domain evaluation
that never produces a hard zero mass, plus the plain CDF-difference evaluation,
which fails in the far tail.

Backend selection mirrors `csq.core.backend`:
    - numpy backend -> `scipy.special`
    - cupy backend  -> `cupyx.scipy.special`

Typical Usage
-------------
>>> from csq.core.special import truncated_normal_moments
>>> mean, var = truncated_normal_moments(mu, sigma, lower, upper)
"""

import numpy as _np
from typing import Tuple
from .backend import np, backend_name
from .types import TailEvaluation, coerce_enum

LOG_SQRT_2PI = 0.9189385332046727  # log(sqrt(2*pi))


def get_special_backend():
    """
    Return the special-function module matching the active array backend.

    Raises:
        NotImplementedError: If the active backend has no special-function counterpart.
    """
    name = backend_name()
    if name == "numpy":
        import scipy.special as sps
        return sps
    if name == "cupy":
        import cupyx.scipy.special as cusps
        return cusps
    raise NotImplementedError(f"No special-function backend for '{name}'")


def normal_pdf(x):
    return np().exp(normal_logpdf(x))


def normal_logpdf(x):
    return -0.5 * x * x - LOG_SQRT_2PI


def normal_cdf(x):
    return get_special_backend().ndtr(x)


def normal_logcdf(x):
    return get_special_backend().log_ndtr(x)


def expit(x):
    """Numerically safe logistic sigmoid."""
    return get_special_backend().expit(x)


def log1mexp(x):
    """
    Compute log(1 - exp(x)) for x <= 0 without cancellation.

    Uses log(-expm1(x)) near zero and log1p(-exp(x)) in the far tail
    (Maechler, "Accurately computing log(1 - exp(-|a|))", 2012).
    """
    xp = np()
    x = xp.minimum(x, 0.0)
    near = x > -0.6931471805599453
    with _np.errstate(divide="ignore", invalid="ignore"):
        out = xp.where(
            near,
            xp.log(-xp.expm1(xp.where(near, x, -1.0))),
            xp.log1p(-xp.exp(xp.where(near, -1.0, x))),
        )
    return out


def log_normal_mass(alpha, beta):
    """
    log(Phi(beta) - Phi(alpha)) for alpha <= beta, evaluated in the log domain.

    Intervals lying in the upper tail are mirrored into the lower tail so
    that both CDF values are small and `log_ndtr` keeps full precision.
    """
    xp = np()
    flip = alpha > 0
    lo = xp.where(flip, -beta, alpha)
    hi = xp.where(flip, -alpha, beta)
    log_hi = normal_logcdf(hi)
    log_lo = normal_logcdf(lo)
    with _np.errstate(invalid="ignore"):
        diff = xp.where(xp.isfinite(log_lo), log_lo - log_hi, -xp.inf)
    return log_hi + log1mexp(diff)


def _standardized_ratios_stable(alpha, beta):
    """
    Return (phi(alpha)/Z, phi(beta)/Z) with Z = Phi(beta) - Phi(alpha).
    """
    xp = np()
    log_z = log_normal_mass(alpha, beta)
    with _np.errstate(over="ignore", invalid="ignore"):
        ra = xp.exp(normal_logpdf(alpha) - log_z)
        rb = xp.exp(normal_logpdf(beta) - log_z)
    ra = xp.where(xp.isfinite(alpha), ra, 0.0)
    rb = xp.where(xp.isfinite(beta), rb, 0.0)
    return ra, rb


def _standardized_ratios_naive(alpha, beta):
    xp = np()
    z = normal_cdf(beta) - normal_cdf(alpha)
    with _np.errstate(divide="ignore", invalid="ignore"):
        ra = xp.where(xp.isfinite(alpha), normal_pdf(alpha), 0.0) / z
        rb = xp.where(xp.isfinite(beta), normal_pdf(beta), 0.0) / z
    return ra, rb


def truncated_normal_moments(
    mean,
    std,
    lower,
    upper,
    tail: TailEvaluation = TailEvaluation.STABLE,
) -> Tuple:
    """
    Mean and variance of N(mean, std^2) restricted to [lower, upper).

    With alpha = (lower - mean)/std, beta = (upper - mean)/std and
    Z = Phi(beta) - Phi(alpha):

        E[u]   = mean + std * (phi(alpha) - phi(beta)) / Z
        Var[u] = std^2 * (1 + (alpha phi(alpha) - beta phi(beta)) / Z
                            - ((phi(alpha) - phi(beta)) / Z)^2)

    Infinite bounds are allowed. With `tail=TailEvaluation.STABLE` the ratios
    are formed in the log domain; with `TailEvaluation.NAIVE` they are formed
    from CDF differences, which yields non-finite moments when Z underflows.

    Returns:
        (mean, variance) arrays broadcast over the inputs. The variance is
        clipped to [0, std^2].
    """
    xp = np()
    tail = coerce_enum(TailEvaluation, tail, "tail")
    std = xp.asarray(std, dtype=xp.float64)
    with _np.errstate(divide="ignore", invalid="ignore"):
        alpha = (lower - mean) / std
        beta = (upper - mean) / std

    if tail == TailEvaluation.NAIVE:
        ra, rb = _standardized_ratios_naive(alpha, beta)
    else:
        ra, rb = _standardized_ratios_stable(alpha, beta)

    shift = ra - rb
    with _np.errstate(invalid="ignore"):
        a_term = xp.where(xp.isfinite(alpha), alpha * ra, 0.0)
        b_term = xp.where(xp.isfinite(beta), beta * rb, 0.0)
    factor = 1.0 + a_term - b_term - shift ** 2

    if tail == TailEvaluation.STABLE:
        # Bins many std away from the mean: the mass concentrates at the nearer edge
        near_edge = xp.where(alpha > 0, lower, upper)
        far = ~xp.isfinite(shift)
        shift = xp.where(far, 0.0, shift)
        factor = xp.where(far | ~xp.isfinite(factor), 0.0, factor)
        post_mean = xp.where(far, near_edge, mean + std * shift)
    else:
        post_mean = mean + std * shift

    factor = xp.clip(factor, 0.0, 1.0) if tail == TailEvaluation.STABLE else factor
    post_var = std ** 2 * factor
    return post_mean, post_var
