from .backend import np


def mse(x_est, x_true):
    """
    Mean Squared Error (MSE) between estimated and true arrays.
    Averaged over every coefficient of every column.
    """
    return float(np().mean((x_est - x_true) ** 2))


def nmse(x_est, x_true):
    """
    Normalized Mean Squared Error (NMSE).
    Scales by the energy of the true signal.
    """
    denom = np().sum(x_true ** 2)
    if denom == 0:
        raise ValueError("NMSE is undefined for an all-zero reference signal.")
    return float(np().sum((x_est - x_true) ** 2) / denom)


def db(value):
    """Convert a power ratio (e.g. an MSE) to decibels."""
    if value <= 0:
        return float("-inf")
    return float(10 * np().log10(value))


def psnr(x_est, x_true, max_val=None):
    """
    Peak Signal-to-Noise Ratio (PSNR).
    If `max_val` is not given, the peak magnitude of `x_true` is used.
    """
    mse_val = mse(x_est, x_true)
    if mse_val == 0:
        return float("inf")
    if max_val is None:
        max_val = float(np().max(np().abs(x_true)))
    return float(10 * np().log10(max_val ** 2 / mse_val))


def support_error(x_est, x_true, threshold=1e-3):
    """
    Fraction of coefficients whose support membership disagrees.
    `x_est` may also be a boolean support mask (e.g. a hard support estimate).
    """
    if x_est.dtype == bool:
        est_support = x_est
    else:
        est_support = np().abs(x_est) > threshold
    true_support = np().abs(x_true) > threshold
    mismatch = np().logical_xor(est_support, true_support)
    return float(np().sum(mismatch) / x_true.size)
