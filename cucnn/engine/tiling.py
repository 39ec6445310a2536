"""
Launch geometry for the engine's kernels.

The tiled convolution caches the kernel plus a halo-padded input tile in shared memory, so the block shape is bounded
by the kernel footprint: bigger kernels mean bigger halos. :func:`plan_tiling` starts from whatever block shape the
caller would like and gives threads back (halving the longer block axis, doubling the matching grid axis so coverage is
unchanged) until the tile fits in ``MUTABLE_GLOBALS.SHARED_MEMORY_BUDGET``.
"""
from collections import namedtuple
from cucnn import MUTABLE_GLOBALS, root_debug_logger, root_error_logger
from cucnn.engine import GLOBAL_DTYPE_BYTES
from cucnn.engine.size import Size
from cucnn.errors import SharedMemoryBudgetError, ConfigurationError

TilingPlan = namedtuple("TilingPlan", ["tpb", "bpg", "shared_bytes"])
TilingPlan.__doc__ = """tpb: (x, y) threads per block; bpg: (x, y, z) blocks per grid; shared_bytes: the tile footprint."""


def _ceil_div(a: int, b: int) -> int:
    return (a + b - 1) // b


def _next_pow2(n: int) -> int:
    p = 1
    while p < n:
        p <<= 1
    return p


def shared_footprint(tpb, kernel_hw, itemsize: int = GLOBAL_DTYPE_BYTES) -> int:
    """Bytes of shared memory one block of the tiled convolution uses: the kernel plus the halo-padded data tile."""
    tpb_x, tpb_y = tpb
    kh, kw = kernel_hw
    return (kh * kw + (tpb_x + kw - 1) * (tpb_y + kh - 1)) * itemsize


def plan_tiling(bpg, tpb, kernel_hw, budget: int = None, min_threads: int = None, strict: bool = True):
    """Shrinks the thread block until the tile for a ``kernel_hw`` kernel fits the shared memory budget.

    :param bpg: the caller's (x, y, z) blocks per grid
    :param tpb: the caller's (x, y) threads per block
    :param kernel_hw: (rows, cols) of the kernel operand
    :param budget: bytes of shared memory a block may use, defaults to MUTABLE_GLOBALS.SHARED_MEMORY_BUDGET
    :param min_threads: stop shrinking once a block holds this many threads or fewer,
                        defaults to MUTABLE_GLOBALS.MIN_THREADS_PER_BLOCK
    :param strict: when False an unfittable tile returns None instead of raising, for callers with another way out
    :rtype: TilingPlan|None
    :raises SharedMemoryBudgetError: when the smallest allowed block still does not fit (strict only)
    :raises ConfigurationError: when the z axis of the grid is larger than the device allows
    """
    budget = MUTABLE_GLOBALS.SHARED_MEMORY_BUDGET if budget is None else budget
    min_threads = MUTABLE_GLOBALS.MIN_THREADS_PER_BLOCK if min_threads is None else min_threads
    tpb_x, tpb_y = map(int, tpb)
    bpg_x, bpg_y, bpg_z = map(int, bpg)
    if bpg_z > MUTABLE_GLOBALS.MAX_GRID_Z:
        msg = f"grid z dimension {bpg_z} exceeds the device limit of {MUTABLE_GLOBALS.MAX_GRID_Z}"
        root_error_logger(msg)
        raise ConfigurationError(msg)
    shared_bytes = shared_footprint((tpb_x, tpb_y), kernel_hw)
    while shared_bytes > budget and tpb_x * tpb_y > min_threads:
        if tpb_x >= tpb_y:
            tpb_x //= 2
            bpg_x *= 2
        else:
            tpb_y //= 2
            bpg_y *= 2
        shared_bytes = shared_footprint((tpb_x, tpb_y), kernel_hw)
        root_debug_logger(f"shrunk block to {(tpb_x, tpb_y)} for kernel {tuple(kernel_hw)}: {shared_bytes} bytes")
    if shared_bytes > budget:
        msg = (f"shared memory footprint of {shared_bytes} bytes exceeds the {budget} byte budget "
               f"for kernel {tuple(kernel_hw)}; grid={(bpg_x, bpg_y, bpg_z)}, block={(tpb_x, tpb_y)}")
        if not strict:
            root_debug_logger(msg)
            return None
        root_error_logger(msg)
        raise SharedMemoryBudgetError(msg)
    return TilingPlan((tpb_x, tpb_y), (bpg_x, bpg_y, bpg_z), shared_bytes)


def launch_grid_for(out_size: Size, n_z: int, kernel_hw, tpb=None, strict: bool = True):
    """The tiled convolution's launch for an ``out_size`` output repeated over ``n_z`` z-slices.

    The starting block is the configured default clipped to the next power of two of each output axis, so tiny outputs
    don't launch mostly idle blocks. ``strict`` is handed to :func:`plan_tiling`.
    """
    tpb = MUTABLE_GLOBALS.TPB_CONV if tpb is None else tpb
    tpb_x = min(int(tpb[0]), _next_pow2(max(out_size.cols, 1)))
    tpb_y = min(int(tpb[1]), _next_pow2(max(out_size.rows, 1)))
    bpg = (_ceil_div(out_size.cols, tpb_x), _ceil_div(out_size.rows, tpb_y), n_z)
    return plan_tiling(bpg, (tpb_x, tpb_y), kernel_hw, strict=strict)


def z_chunks(n_z: int, limit: int = None):
    """Splits ``n_z`` z-slices into ``(z_start, count)`` launches no deeper than the device's grid z limit.

        >>> list(z_chunks(10, limit=4))
        [(0, 4), (4, 4), (8, 2)]
    """
    limit = MUTABLE_GLOBALS.MAX_GRID_Z if limit is None else limit
    for z_start in range(0, n_z, limit):
        yield z_start, min(limit, n_z - z_start)


def pixel_launch(out_size: Size, n_z: int, tpb=None):
    """(bpg, tpb) for kernels that run one thread per output pixel and use the grid's z axis as the slice index."""
    tpb = MUTABLE_GLOBALS.TPB_PIXEL if tpb is None else tpb
    tpb_x = min(int(tpb[0]), _next_pow2(max(out_size.cols, 1)))
    tpb_y = min(int(tpb[1]), _next_pow2(max(out_size.rows, 1)))
    if n_z > MUTABLE_GLOBALS.MAX_GRID_Z:
        msg = f"grid z dimension {n_z} exceeds the device limit of {MUTABLE_GLOBALS.MAX_GRID_Z}"
        root_error_logger(msg)
        raise ConfigurationError(msg)
    bpg = (_ceil_div(out_size.cols, tpb_x), _ceil_div(out_size.rows, tpb_y), n_z)
    return bpg, (tpb_x, tpb_y, 1)


def flat_launch(n: int, tpb: int = None):
    """(bpg, tpb) for the 1D grid-stride kernels."""
    tpb = MUTABLE_GLOBALS.TPB_FLAT if tpb is None else tpb
    tpb = max(min(tpb, _next_pow2(max(n, 1))), 32)
    return max(_ceil_div(n, tpb), 1), tpb
