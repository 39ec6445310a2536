from contextlib import contextmanager
from cucnn import root_error_logger


class ConvEngineError(RuntimeError):
    """Base class of every fatal condition the engine raises. Nothing in the engine catches these."""


class ConfigurationError(ConvEngineError):
    """Unknown convolution boundary mode, inconsistent layer sizing, or a launch the device cannot express."""


class SharedMemoryBudgetError(ConvEngineError):
    """A tile's shared memory footprint is still over budget after the block was shrunk as far as it goes."""


class PreconditionError(ConvEngineError):
    """A buffer handed to the engine does not have the shape the operation was declared with."""


class DeviceExecutionError(ConvEngineError):
    """The CUDA driver reported a failure for a launch or a synchronization."""


def _is_device_error(err: BaseException) -> bool:
    # the driver, the runtime and the simulator all raise from modules under numba.cuda
    return type(err).__module__.startswith(("numba.cuda", "numba_cuda"))


@contextmanager
def device_guard(description: str):
    """Re-raises CUDA driver failures inside the block as :class:`DeviceExecutionError`.

    Everything else propagates untouched.
    """
    try:
        yield
    except Exception as err:
        if not _is_device_error(err):
            raise
        msg = f"{description} failed: {type(err).__name__}: {err}"
        root_error_logger(msg)
        raise DeviceExecutionError(msg) from err
