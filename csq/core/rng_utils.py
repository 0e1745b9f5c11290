from .backend import get_backend


def _sync_cupy_rng(rng):
    """
    Sync CuPy's global RNG with a NumPy generator for reproducibility.
    A 63-bit seed is drawn from `rng` itself, so the NumPy stream advances too.
    """
    import cupy as cp

    seed_val = int(rng.integers(0, 2**63 - 1))
    cp.random.seed(seed_val)


def get_rng(seed=None):
    backend = get_backend()
    name = backend.__name__

    if name == "numpy":
        import numpy as np
        return np.random.default_rng(seed)

    elif name == "cupy":
        # Host-side generator; draws are synced into CuPy's global RNG.
        import numpy as np
        return np.random.default_rng(seed)

    raise NotImplementedError(f"get_rng not implemented for backend '{name}'")


def normal(rng, size, mean=0.0, std=1.0):
    backend = get_backend().__name__

    if backend == "numpy":
        return rng.normal(loc=mean, scale=std, size=size)

    elif backend == "cupy":
        import cupy as cp
        _sync_cupy_rng(rng)
        return std * cp.random.standard_normal(size) + mean

    else:
        raise NotImplementedError(f"normal() not implemented for backend '{backend}'")


def uniform(rng, low=0.0, high=1.0, size=None):
    backend = get_backend().__name__

    if backend == "numpy":
        return rng.uniform(low=low, high=high, size=size)

    elif backend == "cupy":
        import cupy as cp
        _sync_cupy_rng(rng)
        return cp.random.uniform(low=low, high=high, size=size)

    else:
        raise NotImplementedError(f"uniform() not implemented for backend '{backend}'")


def exponential(rng, scale=1.0, size=None):
    backend = get_backend().__name__

    if backend == "numpy":
        return rng.exponential(scale=scale, size=size)

    elif backend == "cupy":
        import cupy as cp
        _sync_cupy_rng(rng)
        return cp.random.exponential(scale=scale, size=size)

    else:
        raise NotImplementedError(f"exponential() not implemented for backend '{backend}'")
