from cucnn.engine.cuda_kernels.cuda_kernels import *
from functools import lru_cache
from cucnn import engine_cfg

# Every convolution here is built on cross-correlation:
#
#   out[i, j] = sum_{m, n} K[m, n] * D[i + m - pad_h, j + n - pad_w]
#
# with pad = 0 for VALID, (k-1)//2 for SAME and k-1 for FULL. Reads that land outside D contribute nothing.
# rot180kernel swaps K for its 180 degree rotation (turning the correlation into a true convolution) and rot180data
# does the same to D before it is read.
# see: http://ufldl.stanford.edu/tutorial/supervised/ConvolutionalNeuralNetwork/


########################################################################################################################
## direct kernels, one thread per output pixel, no shared memory
########################################################################################################################

@cuda.jit(device=True)
def _direct_conv_pixel(data, kernel, z, kz, i, j, pad_h, pad_w, rot180data, rot180kernel):
    dh, dw = data.shape[1:]
    kh, kw = kernel.shape[1:]
    tmp = GLOBAL_DTYPE(0.)
    for m in range(kh):
        di = i + m - pad_h
        if 0 <= di < dh:
            if rot180data:
                di = dh - 1 - di
            km = kh - 1 - m if rot180kernel else m
            for n in range(kw):
                dj = j + n - pad_w
                if 0 <= dj < dw:
                    if rot180data:
                        dj = dw - 1 - dj
                    kn = kw - 1 - n if rot180kernel else n
                    tmp = cuda.fma(data[z, di, dj], kernel[kz, km, kn], tmp)
    return tmp


@cuda.jit(fastmath=True)
def direct_conv_valid(output: np.ndarray, data: np.ndarray, kernel: np.ndarray, rot180data: bool, rot180kernel: bool):
    """VALID correlation of each z-slice of data against kernel[z % kernel.shape[0]].

    :param output: dims (Z : dh-kh+1 : dw-kw+1)
    :param data: dims (Z : dh : dw)
    :param kernel: dims (Z or 1 : kh : kw); a single kernel is shared by every slice
    """
    j, i, z = cuda.grid(3)
    nz, oh, ow = output.shape
    if z < nz and i < oh and j < ow:
        kz = z % kernel.shape[0]
        output[z, i, j] = _direct_conv_pixel(data, kernel, z, kz, i, j, 0, 0, rot180data, rot180kernel)


@cuda.jit(fastmath=True)
def direct_conv_same(output: np.ndarray, data: np.ndarray, kernel: np.ndarray, rot180data: bool, rot180kernel: bool):
    """SAME correlation, output dims equal data dims; the kernel is centred on each output pixel."""
    j, i, z = cuda.grid(3)
    nz, oh, ow = output.shape
    if z < nz and i < oh and j < ow:
        kz = z % kernel.shape[0]
        kh, kw = kernel.shape[1:]
        output[z, i, j] = _direct_conv_pixel(data, kernel, z, kz, i, j, (kh - 1) // 2, (kw - 1) // 2,
                                             rot180data, rot180kernel)


@cuda.jit(fastmath=True)
def direct_conv_full(output: np.ndarray, data: np.ndarray, kernel: np.ndarray, rot180data: bool, rot180kernel: bool):
    """FULL correlation, output dims (dh+kh-1 : dw+kw-1); data is zero padded by k-1 on every side."""
    j, i, z = cuda.grid(3)
    nz, oh, ow = output.shape
    if z < nz and i < oh and j < ow:
        kz = z % kernel.shape[0]
        kh, kw = kernel.shape[1:]
        output[z, i, j] = _direct_conv_pixel(data, kernel, z, kz, i, j, kh - 1, kw - 1, rot180data, rot180kernel)


@cuda.jit(fastmath=True)
def direct_conv_accumulate(output: np.ndarray, data: np.ndarray, kernel: np.ndarray, out_hw, data_hw, kernel_hw, pad,
                           z_inner: int, z_start: int, offsets, output_step, data_step, kernel_step,
                           rot180data: bool, rot180kernel: bool):
    """The global memory twin of the tiled kernel, for kernel operands whose tile cannot fit in shared memory.

    Same flat operands, same (zq, zr) slice addressing and same atomic accumulation (+=) into output as
    :func:`tiled_conv_wrapper`'s kernel, one thread per output pixel of each z-slice.

    :param kernel_hw: (kh, kw) of one kernel slice
    :param pad: (pad_h, pad_w) of the boundary rule
    :param offsets: (output, data, kernel) element offsets of slice (0, 0)
    """
    j, i, z = cuda.grid(3)
    oh, ow = out_hw
    if i < oh and j < ow:
        z += z_start
        dh, dw = data_hw
        kh, kw = kernel_hw
        pad_h, pad_w = pad
        zq = z // z_inner
        zr = z % z_inner
        o_base = offsets[0] + zq * output_step[0] + zr * output_step[1]
        d_base = offsets[1] + zq * data_step[0] + zr * data_step[1]
        k_base = offsets[2] + zq * kernel_step[0] + zr * kernel_step[1]
        tmp = GLOBAL_DTYPE(0.)
        for m in range(kh):
            di = i + m - pad_h
            if 0 <= di < dh:
                if rot180data:
                    di = dh - 1 - di
                km = kh - 1 - m if rot180kernel else m
                for n in range(kw):
                    dj = j + n - pad_w
                    if 0 <= dj < dw:
                        if rot180data:
                            dj = dw - 1 - dj
                        kn = kw - 1 - n if rot180kernel else n
                        tmp = cuda.fma(data[d_base + di * dw + dj], kernel[k_base + km * kw + kn], tmp)
        cuda.atomic.add(output, o_base + i * ow + j, tmp)


########################################################################################################################
## shared memory tiled kernel
########################################################################################################################
def tiled_conv_wrapper(tpb, kernel_hw, pad, rot180data: bool = False, rot180kernel: bool = False):
    """Builds the python source of a tiled correlation kernel for one launch geometry.

    cuda.shared.array needs its shape at compile time, so the block shape, the kernel shape and the two rotation flags
    are baked in as closure constants and every distinct combination compiles to its own kernel. The rotation flags
    only decide which global index a value is loaded from, everything else is shared.

    :param tpb: (x, y) threads per block, must match the launch
    :param kernel_hw: (kh, kw) of the kernel operand
    :param pad: (pad_h, pad_w) shift of the data tile's origin, see the module level comment
    :param rot180data: read the data operand rotated by 180 degrees
    :param rot180kernel: read the kernel operand rotated by 180 degrees
    :return: the un-jitted kernel function
    """
    tpb_x, tpb_y = map(int, tpb)
    kh, kw = map(int, kernel_hw)
    pad_h, pad_w = map(int, pad)
    tile_h = tpb_y + kh - 1
    tile_w = tpb_x + kw - 1
    k_area = kh * kw
    tile_area = tile_h * tile_w
    n_threads = tpb_x * tpb_y
    rot180data = bool(rot180data)
    rot180kernel = bool(rot180kernel)

    def tiled_conv_kernel(output: np.ndarray, data: np.ndarray, kernel: np.ndarray, out_hw, data_hw,
                          z_inner: int, z_start: int,
                          output_offset: int, data_offset: int, kernel_offset: int,
                          output_step, data_step, kernel_step):
        """Accumulates (+=) one 2D correlation per z-slice of the grid into output.

        All three operands are flat 1D arrays. Block z works on slice ``z = z_start + blockIdx.z``, i.e. on the pair
        (zq, zr) = divmod(z, z_inner); each operand's base is ``offset + zq*step[0] + zr*step[1]``. A step of 0 shares
        that operand across the axis, which is how a single kernel is reused over a batch or how several slices sum
        into the same output region. Output writes are atomic so aliased slices accumulate correctly; the caller zeroes
        (or seeds) output beforehand.

        :param out_hw: (oh, ow) of one output slice
        :param data_hw: (dh, dw) of one data slice
        :param z_inner: extent of the inner z axis
        :param z_start: first slice of this launch, nonzero when a deep z range is split over several launches
        :param output_step: (outer, inner) element strides of output between slices
        :param data_step: (outer, inner) element strides of data between slices
        :param kernel_step: (outer, inner) element strides of kernel between slices
        """
        smk = cuda.shared.array(k_area, GLOBAL_DTYPE)
        smd = cuda.shared.array(tile_area, GLOBAL_DTYPE)
        tx, ty = cuda.threadIdx.x, cuda.threadIdx.y
        tid = ty * tpb_x + tx
        oh, ow = out_hw
        dh, dw = data_hw
        z = z_start + cuda.blockIdx.z
        zq = z // z_inner
        zr = z % z_inner
        o_base = output_offset + zq * output_step[0] + zr * output_step[1]
        d_base = data_offset + zq * data_step[0] + zr * data_step[1]
        k_base = kernel_offset + zq * kernel_step[0] + zr * kernel_step[1]
        # cooperative load of the kernel, a 180 degree rotation of a row-major matrix is its flat reversal.
        for v in range(tid, k_area, n_threads):
            if rot180kernel:
                smk[v] = kernel[k_base + k_area - 1 - v]
            else:
                smk[v] = kernel[k_base + v]
        # cooperative load of the halo-padded data tile, zero outside the source.
        row0 = cuda.blockIdx.y * tpb_y - pad_h
        col0 = cuda.blockIdx.x * tpb_x - pad_w
        for v in range(tid, tile_area, n_threads):
            r = row0 + v // tile_w
            c = col0 + v % tile_w
            val = GLOBAL_DTYPE(0.)
            if 0 <= r < dh and 0 <= c < dw:
                if rot180data:
                    val = data[d_base + (dh - 1 - r) * dw + (dw - 1 - c)]
                else:
                    val = data[d_base + r * dw + c]
            smd[v] = val
        cuda.syncthreads()
        i = cuda.blockIdx.y * tpb_y + ty
        j = cuda.blockIdx.x * tpb_x + tx
        if i < oh and j < ow:
            tmp = GLOBAL_DTYPE(0.)
            for m in range(kh):
                row = (ty + m) * tile_w + tx
                for n in range(kw):
                    tmp = cuda.fma(smd[row + n], smk[m * kw + n], tmp)
            cuda.atomic.add(output, o_base + i * ow + j, tmp)

    return tiled_conv_kernel


@lru_cache(maxsize=int(engine_cfg["kernel_cache_size"]))
def get_tiled_conv_kernel(tpb, kernel_hw, pad, rot180data: bool, rot180kernel: bool):
    """Compiled (and memoized) :func:`tiled_conv_wrapper` kernel for the given geometry and orientation.

    A network reuses a handful of geometries per layer, so the cache is bounded and the least recently used kernel is
    dropped first.
    """
    return cuda.jit(func_or_sig=tiled_conv_wrapper(tpb, kernel_hw, pad, rot180data, rot180kernel), fastmath=True)


DIRECT_CONV_MAP = {
    "VALID": direct_conv_valid,
    "SAME": direct_conv_same,
    "FULL": direct_conv_full,
}
