from cucnn.engine.cuda_kernels.cuda_kernels import *

########################################################################################################################
## update kernels
########################################################################################################################

@cuda.jit(fastmath=True)
def update_bias_conv_kernel(lr: GLOBAL_DTYPE, layer_err: np.ndarray, layer_b: np.ndarray, map_area: int):
    """Applies b_new = b_old - lr * sum(err) per output map, summing over every pixel of every sample.

    :param lr: the step size
    :type lr: GLOBAL_DTYPE

    :param layer_err: a batched feature matrix, dims (batch : n_out*map_area)
    :type layer_err: np.ndarray[GLOBAL_DTYPE]

    :param layer_b: dims (n_out)
    :type layer_b: np.ndarray[GLOBAL_DTYPE]
    """
    start = cuda.grid(1)
    step = cuda.gridsize(1)
    batch, features = layer_err.shape
    total = batch * features
    lr = -lr
    for v in range(start, total, step):
        f = v % features
        b = v // features
        e = layer_err[b, f]
        if e != 0:
            e *= lr
            cuda.atomic.add(layer_b, f // map_area, e)
