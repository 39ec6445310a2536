import os

# run the device code on numba's CUDA simulator unless the caller explicitly asked for real hardware
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import numpy as np
import pytest

from cucnn import MUTABLE_GLOBALS


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def small_budget():
    """Lowers the shared memory budget for one test so modest kernels force the block to shrink."""
    saved = MUTABLE_GLOBALS.SHARED_MEMORY_BUDGET
    MUTABLE_GLOBALS.SHARED_MEMORY_BUDGET = 1024
    yield 1024
    MUTABLE_GLOBALS.SHARED_MEMORY_BUDGET = saved


@pytest.fixture
def small_grid_z():
    """Lowers the grid z limit for one test so a handful of slices already needs several launches."""
    saved = MUTABLE_GLOBALS.MAX_GRID_Z
    MUTABLE_GLOBALS.MAX_GRID_Z = 4
    yield 4
    MUTABLE_GLOBALS.MAX_GRID_Z = saved


def correlate_reference(data, kernel, mode="valid", rot180data=False, rot180kernel=False):
    """Straight loop version of the engine's correlation, computed in float64."""
    data = np.asarray(data, dtype=np.float64)
    kernel = np.asarray(kernel, dtype=np.float64)
    if rot180data:
        data = data[::-1, ::-1]
    if rot180kernel:
        kernel = kernel[::-1, ::-1]
    dh, dw = data.shape
    kh, kw = kernel.shape
    if mode == "valid":
        pad_h, pad_w = 0, 0
        oh, ow = max(dh - kh + 1, 0), max(dw - kw + 1, 0)
    elif mode == "same":
        pad_h, pad_w = (kh - 1) // 2, (kw - 1) // 2
        oh, ow = dh, dw
    else:
        pad_h, pad_w = kh - 1, kw - 1
        oh, ow = dh + kh - 1, dw + kw - 1
    out = np.zeros((oh, ow))
    for i in range(oh):
        for j in range(ow):
            for m in range(kh):
                for n in range(kw):
                    di, dj = i + m - pad_h, j + n - pad_w
                    if 0 <= di < dh and 0 <= dj < dw:
                        out[i, j] += kernel[m, n] * data[di, dj]
    return out
