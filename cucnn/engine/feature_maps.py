"""
Batched feature matrices.

Every layer reads and writes its maps as a 2D C-contiguous array of shape ``(batch, n_maps * rows * cols)``: one sample
per row, that sample's maps concatenated, each map stored row-major. Viewed column-major the very same memory is the
``(features x batch)`` matrix with one sample per column.

There is no constant bias row; biases are broadcast explicitly by the layers.
"""
import numpy as np
from numba import cuda
from cucnn import root_error_logger
from cucnn.engine import GLOBAL_DTYPE
from cucnn.engine.size import Size
from cucnn.errors import PreconditionError


def is_device_array(arr) -> bool:
    return hasattr(arr, "copy_to_host")


def to_device(arr):
    """Device arrays pass through untouched; anything else is copied over as a contiguous GLOBAL_DTYPE array."""
    if is_device_array(arr):
        return arr
    return cuda.to_device(np.ascontiguousarray(arr, dtype=GLOBAL_DTYPE))


def to_host(arr) -> np.ndarray:
    if is_device_array(arr):
        return arr.copy_to_host()
    return np.asarray(arr)


def to_feature_matrix(maps: np.ndarray) -> np.ndarray:
    """(batch, n_maps, rows, cols) -> (batch, n_maps*rows*cols), as a host array."""
    maps = np.asarray(maps, dtype=GLOBAL_DTYPE)
    if maps.ndim != 4:
        raise PreconditionError(f"expected a (batch, maps, rows, cols) array, got shape {maps.shape}")
    return np.ascontiguousarray(maps.reshape(maps.shape[0], -1))


def from_feature_matrix(mat, n_maps: int, size) -> np.ndarray:
    """(batch, n_maps*rows*cols) -> (batch, n_maps, rows, cols), copying device matrices back to the host."""
    size = Size.of(size)
    mat = to_host(mat)
    check_feature_matrix(mat, n_maps, size, "feature matrix")
    return mat.reshape(mat.shape[0], n_maps, size.rows, size.cols)


def check_feature_matrix(mat, n_maps: int, size: Size, what: str, batch: int = None) -> int:
    """Verifies ``mat`` holds ``n_maps`` maps of ``size`` per sample (and ``batch`` samples, when given).

    :return: the batch size
    :raises PreconditionError: on any mismatch
    """
    expected = n_maps * size.area()
    shape = tuple(mat.shape)
    if len(shape) != 2 or shape[1] != expected or (batch is not None and shape[0] != batch):
        rows = "?" if batch is None else batch
        msg = f"{what}: expected a ({rows}, {expected}) matrix for {n_maps} map(s) of {size}, got {shape}"
        root_error_logger(msg)
        raise PreconditionError(msg)
    return shape[0]


def require_device(arr, what: str):
    """Output buffers must live on the device, writes into a host array would land in a throwaway copy."""
    if not is_device_array(arr):
        msg = f"{what} must be a device array, got {type(arr).__name__}"
        root_error_logger(msg)
        raise PreconditionError(msg)
    return arr


def flat(arr):
    """A 1D view of a contiguous device array."""
    return arr.reshape(arr.size)
