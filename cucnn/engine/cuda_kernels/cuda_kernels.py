"""
element-wise utility kernels shared by the layers.

Every kernel here is a flattened grid-stride loop: thread ``t`` visits elements ``t, t+gridsize, t+2*gridsize, ...``.
That keeps the work evenly spread for any array size with a launch as small as one block.
"""

from numba import cuda
from cucnn.engine import GLOBAL_DTYPE
import numpy as np


########################################################################################################################
## flat utility kernels
########################################################################################################################

@cuda.jit(fastmath=True)
def cuda_reset_to_zero_flat(arr: np.ndarray):
    start = cuda.grid(1)
    step = cuda.gridsize(1)
    for v in range(start, arr.shape[0], step):
        arr[v] = 0.


@cuda.jit(fastmath=True)
def cuda_scale_flat(arr: np.ndarray, factor: GLOBAL_DTYPE):
    start = cuda.grid(1)
    step = cuda.gridsize(1)
    for v in range(start, arr.shape[0], step):
        arr[v] *= factor


@cuda.jit(fastmath=True)
def cuda_axpy_flat(target: np.ndarray, source: np.ndarray, alpha: GLOBAL_DTYPE):
    """target += alpha * source"""
    start = cuda.grid(1)
    step = cuda.gridsize(1)
    for v in range(start, target.shape[0], step):
        target[v] += alpha * source[v]


########################################################################################################################
## feature matrix kernels
########################################################################################################################

@cuda.jit(fastmath=True)
def cuda_fill_bias(output: np.ndarray, bias: np.ndarray, map_area: int):
    """Overwrites every pixel of every map of every sample with that map's bias.

    :param output: a batched feature matrix, dims (batch : n_maps*map_area)
    :type output: np.ndarray[GLOBAL_DTYPE]

    :param bias: one scalar per map, dims (n_maps)
    :type bias: np.ndarray[GLOBAL_DTYPE]

    :param map_area: rows*cols of a single map
    :type map_area: int
    """
    start = cuda.grid(1)
    step = cuda.gridsize(1)
    batch, features = output.shape
    total = batch * features
    for v in range(start, total, step):
        f = v % features
        b = v // features
        output[b, f] = bias[f // map_area]
