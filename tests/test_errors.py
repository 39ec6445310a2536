import pytest

from cucnn import ConvEngineError, ConfigurationError, SharedMemoryBudgetError, PreconditionError, \
    DeviceExecutionError
from cucnn.errors import device_guard


class FakeDriverError(Exception):
    pass


FakeDriverError.__module__ = "numba.cuda.cudadrv.driver"


class FakeSplitPackageError(Exception):
    pass


FakeSplitPackageError.__module__ = "numba_cuda.numba.cuda.cudadrv.driver"


class TestDeviceGuard:

    def test_driver_failure_is_wrapped(self):
        driver_error = FakeDriverError("CUDA_ERROR_LAUNCH_FAILED")
        with pytest.raises(DeviceExecutionError, match="tiled launch grid=\\(1, 1, 1\\)") as info:
            with device_guard("tiled launch grid=(1, 1, 1)"):
                raise driver_error
        assert info.value.__cause__ is driver_error
        assert "FakeDriverError" in str(info.value)
        assert "CUDA_ERROR_LAUNCH_FAILED" in str(info.value)

    def test_split_numba_cuda_package_is_recognised(self):
        with pytest.raises(DeviceExecutionError) as info:
            with device_guard("synchronize"):
                raise FakeSplitPackageError("out of memory")
        assert isinstance(info.value.__cause__, FakeSplitPackageError)

    def test_other_errors_pass_through(self):
        err = ValueError("bad shape")
        with pytest.raises(ValueError) as info:
            with device_guard("downsample launch"):
                raise err
        assert info.value is err
        assert not isinstance(info.value, ConvEngineError)

    def test_engine_errors_pass_through(self):
        with pytest.raises(PreconditionError):
            with device_guard("upsample launch"):
                raise PreconditionError("rows")

    def test_clean_block(self):
        with device_guard("nothing"):
            result = 1 + 1
        assert result == 2


@pytest.mark.parametrize("error_type", [ConfigurationError, SharedMemoryBudgetError, PreconditionError,
                                        DeviceExecutionError])
def test_hierarchy(error_type):
    assert issubclass(error_type, ConvEngineError)
    assert issubclass(error_type, RuntimeError)
