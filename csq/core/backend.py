"""
Backend abstraction for numerical computation.

All array math in csq goes through `from .backend import np` and calls
`np().<function>` so that the estimators can run on NumPy or on a
NumPy-compatible GPU library such as CuPy without code changes.

Special functions (normal CDF in log domain, logistic sigmoid, ...) are not
part of the array API; they are resolved separately by `csq.core.special`,
which follows whichever backend is active here.
"""

import numpy as _np
from typing import Any, Optional

_backend = _np  # Default backend: NumPy


def set_backend(lib):
    """
    Set the global backend to a NumPy-compatible library (e.g., numpy, cupy).

    Args:
        lib: Module object such as numpy or cupy.
    """
    global _backend
    _backend = lib


def get_backend():
    """
    Get the current backend module.

    Returns:
        The active backend module (default: numpy).
    """
    return _backend


def backend_name() -> str:
    return getattr(_backend, "__name__", "unknown")


def move_array_to_current_backend(array: Any, dtype: Optional[_np.dtype] = None) -> Any:
    """
    Ensure array is on the current backend (NumPy or CuPy), with optional dtype conversion.

    Args:
        array (Any): Input array from potentially another backend.
        dtype (np().dtype, optional): If given, cast to this dtype after transfer.

    Returns:
        backend ndarray: Array on current backend, dtype adjusted if needed.
    """
    if hasattr(array, "get") and np().__name__ == "numpy":
        # CuPy array moving to host memory
        array = array.get()

    arr = np().asarray(array)
    if dtype is not None:
        arr = arr.astype(dtype)
    return arr


# Aliases for convenience
np = get_backend  # use: `np().sum(...)`
