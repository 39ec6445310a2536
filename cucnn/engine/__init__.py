import numpy as np
from cucnn import engine_cfg

GLOBAL_DTYPE = np.dtype(engine_cfg["dtype"]).type
GLOBAL_DTYPE_BYTES = GLOBAL_DTYPE(0).nbytes
