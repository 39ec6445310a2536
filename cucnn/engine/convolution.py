"""
Host side of the convolution engine.

:func:`convolve` is the one-shot 2D API, :func:`batched_convolve` is the z-grid launch the layers build on.
"""
from enum import Enum
import numpy as np
from numba import cuda
from cucnn import MUTABLE_GLOBALS, root_debug_logger, root_error_logger
from cucnn.engine import GLOBAL_DTYPE
from cucnn.engine.size import Size
from cucnn.engine.tiling import launch_grid_for, pixel_launch, flat_launch, z_chunks
from cucnn.engine.feature_maps import to_device, flat
from cucnn.engine.cuda_kernels.cuda_kernels import cuda_reset_to_zero_flat
from cucnn.engine.cuda_kernels.conv_kernels import DIRECT_CONV_MAP, direct_conv_accumulate, get_tiled_conv_kernel
from cucnn.errors import ConfigurationError, PreconditionError, device_guard


class ConvType(Enum):
    SAME = "same"
    VALID = "valid"
    FULL = "full"
    SAME_SHM = "same_shm"
    VALID_SHM = "valid_shm"
    FULL_SHM = "full_shm"

    @property
    def is_tiled(self) -> bool:
        return self.name.endswith("_SHM")

    @property
    def boundary(self) -> "ConvType":
        """The boundary rule without the tiling choice, e.g. VALID for VALID_SHM."""
        return ConvType[self.name.split("_")[0]]


def as_conv_type(conv_type) -> ConvType:
    """Accepts a ConvType or its (case insensitive) name or value."""
    if isinstance(conv_type, ConvType):
        return conv_type
    key = str(conv_type).upper()
    if key in ConvType.__members__:
        return ConvType[key]
    msg = f"unknown convolution boundary mode {conv_type!r}, expected one of {[t.name for t in ConvType]}"
    root_error_logger(msg)
    raise ConfigurationError(msg)


def get_conv_output_size(data_size, kernel_size, conv_type) -> Size:
    data_size = Size.of(data_size)
    kernel_size = Size.of(kernel_size)
    boundary = as_conv_type(conv_type).boundary
    if boundary is ConvType.VALID:
        return (data_size - kernel_size + 1).clamped()
    if boundary is ConvType.SAME:
        return data_size
    return data_size + kernel_size - 1


def conv_padding(conv_type, kernel_size) -> Size:
    """How far the first output pixel's window starts before the data's origin."""
    kernel_size = Size.of(kernel_size)
    boundary = as_conv_type(conv_type).boundary
    if boundary is ConvType.VALID:
        return Size(0, 0)
    if boundary is ConvType.SAME:
        return (kernel_size - 1) // 2
    return kernel_size - 1


def batched_convolve(output, data, kernel, out_size, data_size, kernel_size, conv_type=ConvType.VALID_SHM,
                     n_z: int = 1, z_inner: int = 1, offsets=(0, 0, 0),
                     output_step=(0, 0), data_step=(0, 0), kernel_step=(0, 0),
                     rot180data: bool = False, rot180kernel: bool = False, direct_fallback: bool = False):
    """Launches the tiled correlation over ``n_z`` independent 2D problems and accumulates into ``output``.

    The operands are flat device arrays. Slice z handles ``(zq, zr) = divmod(z, z_inner)`` and finds each operand's
    slice at ``offset + zq*step[0] + zr*step[1]``. A z range deeper than the device's grid z limit is split into
    several launches. The launches are asynchronous: they are ordered after everything already issued on the default
    stream, and nothing waits for them here.

    Only the boundary rule of ``conv_type`` matters, ``VALID`` and ``VALID_SHM`` launch the same tiled kernel. When
    ``direct_fallback`` is set and the kernel operand's tile cannot fit in shared memory, the slices run on
    :func:`direct_conv_accumulate` instead of raising.

    :param output: flat device array, accumulated into, never cleared here
    :param data: flat device array
    :param kernel: flat device array
    :param out_size: Size of one output slice, must agree with the boundary rule
    :param data_size: Size of one data slice
    :param kernel_size: Size of one kernel slice
    :param conv_type: the boundary rule, as a ConvType or its name
    :param offsets: (output, data, kernel) element offsets of slice (0, 0)
    :param output_step: (outer, inner) strides of output
    :param data_step: (outer, inner) strides of data
    :param kernel_step: (outer, inner) strides of kernel
    :param direct_fallback: use global memory reads rather than raise SharedMemoryBudgetError
    """
    boundary = as_conv_type(conv_type).boundary
    out_size, data_size, kernel_size = Size.of(out_size), Size.of(data_size), Size.of(kernel_size)
    expected = get_conv_output_size(data_size, kernel_size, boundary)
    if out_size != expected:
        msg = f"{boundary.name} of {data_size} by {kernel_size} gives {expected}, not {out_size}"
        root_error_logger(msg)
        raise PreconditionError(msg)
    if out_size.area() == 0 or n_z == 0:
        return
    pad = conv_padding(boundary, kernel_size)
    plan = launch_grid_for(out_size, min(n_z, MUTABLE_GLOBALS.MAX_GRID_Z), kernel_size, strict=not direct_fallback)
    offsets = tuple(map(int, offsets))
    output_step, data_step, kernel_step = (tuple(map(int, s)) for s in (output_step, data_step, kernel_step))
    if plan is None:
        root_debug_logger(f"{boundary.name} with a {kernel_size} kernel operand runs on the direct kernel")
        for z_start, count in z_chunks(n_z):
            bpg, tpb = pixel_launch(out_size, count)
            with device_guard(f"direct accumulate {boundary.name} launch grid={bpg} block={tpb} z_start={z_start}"):
                direct_conv_accumulate[bpg, tpb](output, data, kernel, tuple(out_size), tuple(data_size),
                                                 tuple(kernel_size), tuple(pad), int(z_inner), z_start, offsets,
                                                 output_step, data_step, kernel_step,
                                                 bool(rot180data), bool(rot180kernel))
        return
    kern = get_tiled_conv_kernel(plan.tpb, tuple(kernel_size), tuple(pad), bool(rot180data), bool(rot180kernel))
    for z_start, count in z_chunks(n_z):
        bpg = (plan.bpg[0], plan.bpg[1], count)
        with device_guard(f"tiled {boundary.name} launch grid={bpg} block={plan.tpb} z_start={z_start}"):
            kern[bpg, plan.tpb](output, data, kernel, tuple(out_size), tuple(data_size), int(z_inner), z_start,
                                *offsets, output_step, data_step, kernel_step)


def convolve(data, kernel, conv_type=ConvType.VALID, rot180data: bool = False, rot180kernel: bool = False) -> np.ndarray:
    """Correlates a 2D ``data`` matrix with a 2D ``kernel`` under ``conv_type`` and returns the result on the host.

    Direct modes (SAME, VALID, FULL) run one thread per output pixel reading global memory; the ``_SHM`` modes run the
    shared memory tiled kernel. Both give the same numbers.

        >>> convolve(np.ones((4, 4)), np.ones((2, 2)), ConvType.VALID)
        array([[4., 4., 4.],
               [4., 4., 4.],
               [4., 4., 4.]], dtype=float32)

    :param data: 2D host or device array
    :param kernel: 2D host or device array
    :param conv_type: a :class:`ConvType` or its name
    :param rot180data: rotate data by 180 degrees before correlating
    :param rot180kernel: rotate kernel by 180 degrees before correlating, i.e. a true convolution
    :raises ConfigurationError: for an unknown ``conv_type``
    """
    conv_type = as_conv_type(conv_type)
    if len(data.shape) != 2 or len(kernel.shape) != 2:
        raise PreconditionError(f"convolve takes 2D operands, got {tuple(data.shape)} and {tuple(kernel.shape)}")
    data_size = Size.of(data.shape)
    kernel_size = Size.of(kernel.shape)
    out_size = get_conv_output_size(data_size, kernel_size, conv_type)
    if out_size.area() == 0:
        return np.zeros(tuple(out_size), dtype=GLOBAL_DTYPE)
    d_data = to_device(data)
    d_kernel = to_device(kernel)
    output = cuda.device_array(tuple(out_size), dtype=GLOBAL_DTYPE)
    if conv_type.is_tiled:
        out_flat = flat(output)
        bpg, tpb = flat_launch(out_size.area())
        cuda_reset_to_zero_flat[bpg, tpb](out_flat)
        batched_convolve(out_flat, flat(d_data), flat(d_kernel), out_size, data_size, kernel_size, conv_type,
                         rot180data=rot180data, rot180kernel=rot180kernel)
    else:
        bpg, tpb = pixel_launch(out_size, 1)
        kern = DIRECT_CONV_MAP[conv_type.name]
        with device_guard(f"direct {conv_type.name} launch grid={bpg} block={tpb}"):
            kern[bpg, tpb](output.reshape(1, *out_size), d_data.reshape(1, *data_size),
                           d_kernel.reshape(1, *kernel_size), bool(rot180data), bool(rot180kernel))
    with device_guard("convolve synchronize"):
        cuda.synchronize()
    return output.copy_to_host()
