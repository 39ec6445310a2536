import numpy as np
import pytest
from numba import cuda

from cucnn import downsample, upsample, to_feature_matrix, from_feature_matrix, PreconditionError, \
    ConfigurationError, GLOBAL_DTYPE, Size


def _device_zeros(batch, n):
    return cuda.to_device(np.zeros((batch, n), dtype=GLOBAL_DTYPE))


class TestDownsample:

    def test_block_means(self, rng):
        maps = rng.standard_normal((2, 3, 6, 4))
        out = _device_zeros(2, 3 * 3 * 2)
        downsample(out, cuda.to_device(to_feature_matrix(maps)), Size(6, 4), 3, 2)
        cuda.synchronize()
        result = from_feature_matrix(out, 3, (3, 2))
        expected = maps.reshape(2, 3, 3, 2, 2, 2).mean(axis=(3, 5))
        np.testing.assert_allclose(result, expected, rtol=1e-5, atol=1e-5)

    def test_trailing_rows_are_dropped(self):
        maps = np.arange(25, dtype=GLOBAL_DTYPE).reshape(1, 1, 5, 5)
        out = _device_zeros(1, 4)
        downsample(out, to_feature_matrix(maps), (5, 5), 1, 2)
        cuda.synchronize()
        np.testing.assert_allclose(out.copy_to_host().reshape(2, 2), [[3., 5.], [13., 15.]])

    def test_row_mismatch(self):
        out = _device_zeros(3, 4)
        with pytest.raises(PreconditionError):
            downsample(out, np.zeros((2, 16)), (4, 4), 1, 2)

    def test_host_output_rejected(self):
        with pytest.raises(PreconditionError):
            downsample(np.zeros((1, 4)), np.zeros((1, 16)), (4, 4), 1, 2)

    @pytest.mark.parametrize("scale", [0, -2, 1.5])
    def test_bad_scale(self, scale):
        with pytest.raises(ConfigurationError):
            downsample(_device_zeros(1, 4), np.zeros((1, 16)), (4, 4), 1, scale)


class TestUpsample:

    def test_replicates_blocks(self):
        pooled = np.array([[1., 2., 3., 4.]], dtype=GLOBAL_DTYPE)
        out = _device_zeros(1, 16)
        upsample(out, pooled, (4, 4), 1, 2)
        cuda.synchronize()
        np.testing.assert_array_equal(out.copy_to_host().reshape(4, 4),
                                      [[1, 1, 2, 2], [1, 1, 2, 2], [3, 3, 4, 4], [3, 3, 4, 4]])

    def test_zero_past_the_pooled_extent(self):
        out = cuda.to_device(np.full((1, 9), 7., dtype=GLOBAL_DTYPE))
        upsample(out, np.array([[5.]]), (3, 3), 1, 2)
        cuda.synchronize()
        np.testing.assert_array_equal(out.copy_to_host().reshape(3, 3), [[5, 5, 0], [5, 5, 0], [0, 0, 0]])

    def test_constant_blocks_round_trip(self, rng):
        pooled = rng.standard_normal((3, 2, 2, 3)).astype(GLOBAL_DTYPE)
        big = _device_zeros(3, 2 * 4 * 6)
        upsample(big, to_feature_matrix(pooled), (4, 6), 2, 2)
        small = _device_zeros(3, 2 * 2 * 3)
        downsample(small, big, (4, 6), 2, 2)
        cuda.synchronize()
        np.testing.assert_allclose(from_feature_matrix(small, 2, (2, 3)), pooled, rtol=1e-6, atol=1e-6)

    def test_unpool_of_pool_is_the_broadcast_block_mean(self, rng):
        maps = rng.standard_normal((2, 1, 4, 4)).astype(GLOBAL_DTYPE)
        small = _device_zeros(2, 4)
        downsample(small, to_feature_matrix(maps), (4, 4), 1, 2)
        big = _device_zeros(2, 16)
        upsample(big, small, (4, 4), 1, 2)
        cuda.synchronize()
        means = maps.reshape(2, 2, 2, 2, 2).mean(axis=(2, 4))
        expected = np.repeat(np.repeat(means, 2, axis=1), 2, axis=2)
        np.testing.assert_allclose(from_feature_matrix(big, 1, (4, 4))[:, 0], expected, rtol=1e-5, atol=1e-6)

    def test_row_mismatch(self):
        with pytest.raises(PreconditionError):
            upsample(_device_zeros(2, 16), np.zeros((1, 4)), (4, 4), 1, 2)


def test_deep_batches_are_split_over_launches(rng, small_grid_z):
    maps = rng.standard_normal((3, 3, 4, 2)).astype(GLOBAL_DTYPE)
    small = _device_zeros(3, 3 * 2)
    downsample(small, to_feature_matrix(maps), (4, 2), 3, 2)
    big = _device_zeros(3, 3 * 8)
    upsample(big, small, (4, 2), 3, 2)
    cuda.synchronize()
    means = maps.reshape(3, 3, 2, 2, 1, 2).mean(axis=(3, 5))
    np.testing.assert_allclose(from_feature_matrix(small, 3, (2, 1)), means, rtol=1e-5, atol=1e-6)
    np.testing.assert_allclose(from_feature_matrix(big, 3, (4, 2)), np.repeat(np.repeat(means, 2, axis=2), 2, axis=3),
                               rtol=1e-5, atol=1e-6)
