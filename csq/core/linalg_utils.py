from .backend import np
from .rng_utils import get_rng, normal, uniform


def reduce_precision_to_scalar(precision_array, axis=None):
    """
    Reduce a precision array to an equivalent scalar precision
    using the harmonic mean of variances.

    This summarizes per-coefficient uncertainty into the single "uniform"
    variance used by the scalar-variance variant of RBP.

    Args:
        precision_array (np.ndarray): Elementwise precision (positive)
        axis (int or None): Axis to reduce over. None reduces everything.

    Returns:
        float or ndarray: Scalar precision value(s)
    """
    precision_array = np().asarray(precision_array, dtype=np().float64)
    if np().any(precision_array <= 0):
        raise ValueError("Precision values must be positive.")
    return 1.0 / np().mean(1.0 / precision_array, axis=axis)


def resize_param(value, shape):
    """
    Broadcast a scalar or partial-shape hyperparameter to a full array.

    This is a pure function: the input is never modified and a fresh,
    writable array is returned.

    Args:
        value: Scalar, or array broadcastable to `shape` (e.g. shape (T,) or (N, 1)).
        shape (tuple): Target shape, usually (N, T).

    Returns:
        ndarray: Array of shape `shape`.

    Raises:
        ValueError: If `value` cannot be broadcast to `shape`.
    """
    arr = np().asarray(value, dtype=np().float64)
    try:
        return np().broadcast_to(arr, shape).copy()
    except ValueError:
        raise ValueError(f"Parameter of shape {arr.shape} cannot be resized to {shape}.")


def random_normal_array(shape, rng=None, std=1.0):
    """
    Generate an array of i.i.d. N(0, std^2) samples.

    Args:
        shape (tuple): Output shape.
        rng (np.random.Generator or None): Random generator.
        std (float): Standard deviation.

    Returns:
        np.ndarray: Real float64 array.
    """
    rng = get_rng() if rng is None else rng
    return normal(rng, size=shape, std=std).astype(np().float64)


def sparse_random_array(shape, sparsity_rate, rng=None, active_mean=0.0, active_var=1.0):
    """
    Draw a Bernoulli-Gaussian array: each entry is nonzero with probability
    `sparsity_rate`, and nonzero entries are N(active_mean, active_var).

    All three distribution parameters may be scalars or arrays broadcastable
    to `shape`.

    Args:
        shape (tuple): Desired shape.
        sparsity_rate (float or ndarray): Probability in [0, 1] of a nonzero entry.
        rng (np.random.Generator): Random number generator.

    Returns:
        np.ndarray: Sparse real array.
    """
    rho = np().asarray(sparsity_rate, dtype=np().float64)
    if np().any(rho < 0.0) or np().any(rho > 1.0):
        raise ValueError(f"sparsity_rate must lie in [0, 1], got {sparsity_rate}")
    rng = get_rng() if rng is None else rng
    mask = uniform(rng, size=shape) < rho
    values = active_mean + np().sqrt(active_var) * random_normal_array(shape, rng=rng)
    return np().where(mask, values, 0.0)


def gaussian_sensing_matrix(m, n, rng=None, mean=0.0):
    """
    Generate an m-by-n matrix with i.i.d. N(mean / sqrt(m), 1/m) entries.

    With this normalization the columns have unit expected squared norm,
    which is the scaling assumed by state evolution. A nonzero `mean` gives
    the poorly conditioned ensembles under which plain RBP is known to diverge.
    """
    rng = get_rng() if rng is None else rng
    scale = 1.0 / np().sqrt(m)
    return (mean + random_normal_array((m, n), rng=rng)) * scale


def random_orthogonal_matrix(n, rng=None):
    """
    Generate a random real orthogonal matrix of shape (n, n) using the QR
    decomposition of a Gaussian matrix (with sign correction, so the result
    is Haar distributed).
    """
    rng = get_rng() if rng is None else rng
    A = random_normal_array((n, n), rng=rng)
    Q, R = np().linalg.qr(A)
    return Q * np().sign(np().diag(R))
