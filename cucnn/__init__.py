from pathlib import Path
import json
import os
from cucnn.utils.custom_logger import get_logger

root_info_logger = get_logger(__name__, "project info", level="INFO").info
root_debug_logger = get_logger(__name__, "project debug", level=os.environ.get("CUCNN_LOG_LEVEL", "WARNING")).debug
root_error_logger = get_logger(__name__, "project error", level="ERROR").error
code_root = Path(__file__).parent
cfg_path = code_root.joinpath("cfgs")
engine_cfg: dict = json.loads(cfg_path.joinpath("engine_cfg.json").read_text())


class MUTABLE_GLOBALS:
    """Run-time tunables seeded from cfgs/engine_cfg.json.

    These are read at launch time, not import time, so a caller can lower the shared memory budget (or pick a different
    default block shape) between calls without rebuilding anything.
    """
    SHARED_MEMORY_BUDGET = int(os.environ.get("CUCNN_SHARED_MEMORY_BUDGET", engine_cfg["shared_memory_budget"]))
    MIN_THREADS_PER_BLOCK = int(engine_cfg["min_threads_per_block"])
    MAX_GRID_Z = int(engine_cfg["max_grid_z"])
    TPB_CONV = tuple(engine_cfg["tpb_conv"])  # (x, y) threads per block for tiled convolutions
    TPB_PIXEL = tuple(engine_cfg["tpb_pixel"])  # (x, y) threads per block for one-thread-per-pixel kernels
    TPB_FLAT = int(engine_cfg["tpb_flat"])


from cucnn.errors import (ConvEngineError, ConfigurationError, SharedMemoryBudgetError, PreconditionError,
                          DeviceExecutionError)
from cucnn.engine import GLOBAL_DTYPE
from cucnn.engine.size import Size
from cucnn.engine.convolution import ConvType, convolve, batched_convolve, get_conv_output_size
from cucnn.engine.tiling import TilingPlan, plan_tiling
from cucnn.engine.pooling import downsample, upsample
from cucnn.engine.feature_maps import to_feature_matrix, from_feature_matrix
from cucnn.engine.layer_defs import ConvolutionalLayer, SubSamplingLayer

__version__ = "0.1.0"
