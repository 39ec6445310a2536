from cucnn.engine.cuda_kernels.cuda_kernels import *

########################################################################################################################
## average pooling kernels
########################################################################################################################
# Both kernels run one thread per output pixel and use the grid's z axis to walk the (sample, map) slices, so a whole
# batch is pooled by a single launch (or, past the grid z limit, by a few launches each starting at z_start).

@cuda.jit(fastmath=True)
def downsample_kernel(output: np.ndarray, data: np.ndarray, scale: int, z_start: int):
    """Non-overlapping scale x scale block means.

    The denominator is always scale*scale. A block that overruns the edge of data just has fewer terms, which treats
    the missing pixels as zeros instead of renormalizing.

    :param output: dims (Z : oh : ow)
    :param data: dims (Z : dh : dw)
    """
    j, i, z = cuda.grid(3)
    z += z_start
    nz, oh, ow = output.shape
    dh, dw = data.shape[1:]
    if z < nz and i < oh and j < ow:
        tmp = GLOBAL_DTYPE(0.)
        si = i * scale
        sj = j * scale
        for m in range(si, min(si + scale, dh)):
            for n in range(sj, min(sj + scale, dw)):
                tmp += data[z, m, n]
        output[z, i, j] = tmp / (scale * scale)


@cuda.jit(fastmath=True)
def upsample_kernel(output: np.ndarray, data: np.ndarray, scale: int, z_start: int):
    """Replicates every pooled value over its scale x scale block. Pixels whose block lies past data's edge get 0.

    :param output: dims (Z : oh : ow), the pre-pool extent
    :param data: dims (Z : dh : dw), the pooled extent
    """
    j, i, z = cuda.grid(3)
    z += z_start
    nz, oh, ow = output.shape
    dh, dw = data.shape[1:]
    if z < nz and i < oh and j < ow:
        pi = i // scale
        pj = j // scale
        if pi < dh and pj < dw:
            output[z, i, j] = data[z, pi, pj]
        else:
            output[z, i, j] = 0.
