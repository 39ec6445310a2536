"""
Host side of the average pooling kernels.

Both functions take batched feature matrices (see :mod:`cucnn.engine.feature_maps`) and pool every map of every
sample with one launch per grid z chunk. They only enqueue work; synchronizing is left to the caller.
"""
from cucnn import root_error_logger
from cucnn.engine.size import Size
from cucnn.engine.tiling import pixel_launch, z_chunks
from cucnn.engine.feature_maps import check_feature_matrix, require_device
from cucnn.engine.cuda_kernels.pool_kernels import downsample_kernel, upsample_kernel
from cucnn.errors import ConfigurationError, device_guard


def _check_scale(scale: int):
    if int(scale) != scale or scale < 1:
        msg = f"pooling scale must be a positive integer, got {scale!r}"
        root_error_logger(msg)
        raise ConfigurationError(msg)


def downsample(output, data, img_size, n_maps: int, scale: int):
    """Writes the scale x scale block means of every ``img_size`` map of ``data`` into ``output``.

    :param output: device feature matrix, dims (batch : n_maps * (img_size//scale).area())
    :param data: device feature matrix, dims (batch : n_maps * img_size.area())
    """
    _check_scale(scale)
    img_size = Size.of(img_size)
    out_size = img_size // scale
    batch = check_feature_matrix(data, n_maps, img_size, "downsample input")
    check_feature_matrix(require_device(output, "downsample output"), n_maps, out_size, "downsample output", batch)
    n_z = batch * n_maps
    if n_z == 0 or out_size.area() == 0:
        return
    out3d, data3d = output.reshape(n_z, *out_size), data.reshape(n_z, *img_size)
    for z_start, count in z_chunks(n_z):
        bpg, tpb = pixel_launch(out_size, count)
        with device_guard(f"downsample launch grid={bpg} block={tpb} z_start={z_start}"):
            downsample_kernel[bpg, tpb](out3d, data3d, int(scale), z_start)


def upsample(output, data, img_size, n_maps: int, scale: int):
    """Replicates every pooled value of ``data`` over its block of the ``img_size`` maps in ``output``.

    :param output: device feature matrix, dims (batch : n_maps * img_size.area())
    :param data: device feature matrix, dims (batch : n_maps * (img_size//scale).area())
    """
    _check_scale(scale)
    img_size = Size.of(img_size)
    pooled_size = img_size // scale
    batch = check_feature_matrix(data, n_maps, pooled_size, "upsample input")
    check_feature_matrix(require_device(output, "upsample output"), n_maps, img_size, "upsample output", batch)
    n_z = batch * n_maps
    if n_z == 0 or img_size.area() == 0:
        return
    out3d, data3d = output.reshape(n_z, *img_size), data.reshape(n_z, *pooled_size)
    for z_start, count in z_chunks(n_z):
        bpg, tpb = pixel_launch(img_size, count)
        with device_guard(f"upsample launch grid={bpg} block={tpb} z_start={z_start}"):
            upsample_kernel[bpg, tpb](out3d, data3d, int(scale), z_start)
