from cucnn.engine.cuda_kernels.cuda_kernels import *
from cucnn.engine.cuda_kernels.update_kernels import update_bias_conv_kernel
from cucnn import root_info_logger, root_error_logger
from cucnn.engine.size import Size
from cucnn.engine.tiling import flat_launch
from cucnn.engine.convolution import ConvType, batched_convolve
from cucnn.engine.pooling import downsample, upsample
from cucnn.engine.feature_maps import check_feature_matrix, require_device, to_device, flat
from cucnn.errors import ConfigurationError, PreconditionError, device_guard


class BaseLayer:

    def __init__(self, name: str, n_input_maps: int, n_output_maps: int, input_size) -> None:
        """
        :param name: a label used in logs and in the layer's string form
        :type name: str

        :param n_input_maps: how many feature maps each input sample carries
        :type n_input_maps: int

        :param n_output_maps: how many feature maps each output sample carries
        :type n_output_maps: int

        :param input_size: (rows, cols) of a single input map
        :type input_size: Size|tuple[int,int]
        """
        if n_input_maps < 1 or n_output_maps < 1:
            msg = f"{name}: map counts must be positive, got {n_input_maps} in / {n_output_maps} out"
            root_error_logger(msg)
            raise ConfigurationError(msg)
        self.name = name
        self._n_input_maps = int(n_input_maps)
        self._n_output_maps = int(n_output_maps)
        self._input_size = Size.of(input_size)

    @property
    def layer_type(self):
        return "BaseLayer"

    @property
    def n_input_maps(self) -> int:
        return self._n_input_maps

    @property
    def n_output_maps(self) -> int:
        return self._n_output_maps

    @property
    def input_size(self) -> Size:
        return self._input_size

    @input_size.setter
    def input_size(self, size):
        self._input_size = Size.of(size)

    @property
    def output_size(self) -> Size:
        raise NotImplementedError

    @property
    def input_dimension(self) -> int:
        """Features per input sample, i.e. the width of the layer's input feature matrix."""
        return self._n_input_maps * self.input_size.area()

    @property
    def output_dimension(self) -> int:
        return self._n_output_maps * self.output_size.area()

    @property
    def trainable_parameter_count(self) -> int:
        return 0

    def allocate_output(self, batch: int):
        """A zeroed device feature matrix sized for this layer's output."""
        return cuda.to_device(np.zeros((batch, self.output_dimension), dtype=GLOBAL_DTYPE))

    def allocate_upstream_error(self, batch: int):
        """A zeroed device feature matrix sized for the error this layer hands back to its input."""
        return cuda.to_device(np.zeros((batch, self.input_dimension), dtype=GLOBAL_DTYPE))

    def feed_forward(self, output, input_p):
        raise NotImplementedError

    def feed_backward(self, upstream_error, error):
        raise NotImplementedError

    def _check_io(self, output, input_p, out_what: str, in_what: str, out_size: Size, in_size: Size,
                  n_out: int, n_in: int):
        input_p = to_device(input_p)
        batch = check_feature_matrix(input_p, n_in, in_size, f"{self.name} {in_what}")
        check_feature_matrix(require_device(output, f"{self.name} {out_what}"), n_out, out_size,
                             f"{self.name} {out_what}", batch)
        return input_p, batch

    def _synchronize(self, phase: str):
        with device_guard(f"{self.name} {phase} synchronize"):
            cuda.synchronize()

    def __str__(self) -> str:
        return (f"{self.layer_type}/{self.name}:{{in: {self.n_input_maps}x{self.input_size}; "
                f"out: {self.n_output_maps}x{self.output_size}}}")

    __repr__ = __str__


class ConvolutionalLayer(BaseLayer):
    def __init__(self, n_input_maps: int, n_output_maps: int, kernel_size, input_size, name: str = "conv",
                 kernels: np.ndarray = None, biases: np.ndarray = None, rng: np.random.Generator = None) -> None:
        """A layer of n_input_maps x n_output_maps 2D kernels plus one bias per output map.

        Forward is a VALID correlation, so ``output_size == input_size - kernel_size + 1``.

        :param kernel_size: (rows, cols) of every kernel, or an int for square kernels
        :type kernel_size: Size|tuple[int,int]|int

        :param kernels: [OPTIONAL] initial kernels, dims (n_input_maps : n_output_maps : kh : kw); defaults to
                        normal noise scaled by 1/sqrt(fan_in)
        :type kernels: np.ndarray

        :param biases: [OPTIONAL] initial biases, dims (n_output_maps); defaults to zeros
        :type biases: np.ndarray

        :param rng: [OPTIONAL] the generator used for the default kernels
        :type rng: np.random.Generator
        """
        super().__init__(name, n_input_maps, n_output_maps, input_size)
        self._kernel_size = Size.of(kernel_size)
        if self._kernel_size.rows < 1 or self._kernel_size.cols < 1:
            msg = f"{name}: kernel size must be positive, got {self._kernel_size}"
            root_error_logger(msg)
            raise ConfigurationError(msg)
        if self.output_size.area() == 0:
            msg = f"{name}: a {self._kernel_size} kernel does not fit inside a {self.input_size} input"
            root_error_logger(msg)
            raise ConfigurationError(msg)
        kshape = (self.n_input_maps, self.n_output_maps, *self._kernel_size)
        if kernels is None:
            rng = np.random.default_rng() if rng is None else rng
            fan_in = self.n_input_maps * self._kernel_size.area()
            kernels = rng.standard_normal(kshape) / np.sqrt(fan_in)
        if biases is None:
            biases = np.zeros(self.n_output_maps)
        self._kernels = cuda.to_device(self._checked(kernels, kshape, "kernels"))
        self._biases = cuda.to_device(self._checked(biases, (self.n_output_maps,), "biases"))
        self._kernel_grad = cuda.device_array(self._kernels.size, dtype=GLOBAL_DTYPE)
        root_info_logger(f"built {self}")

    def _checked(self, arr, shape, what: str) -> np.ndarray:
        arr = np.ascontiguousarray(arr, dtype=GLOBAL_DTYPE)
        if arr.shape != tuple(shape):
            msg = f"{self.name}: {what} must have dims {tuple(shape)}, got {arr.shape}"
            root_error_logger(msg)
            raise PreconditionError(msg)
        return arr

    @property
    def layer_type(self):
        return "ConvolutionalLayer"

    @property
    def kernel_size(self) -> Size:
        return self._kernel_size

    @property
    def output_size(self) -> Size:
        # derived on every access so a resized input can never leave a stale output size behind
        return (self.input_size - self._kernel_size + 1).clamped()

    @property
    def trainable_parameter_count(self) -> int:
        return self._kernels.size + self._biases.size

    @property
    def kernels(self) -> np.ndarray:
        """Host copy of the kernels, dims (n_input_maps : n_output_maps : kh : kw)."""
        return self._kernels.copy_to_host()

    @kernels.setter
    def kernels(self, value):
        self._kernels.copy_to_device(self._checked(value, self._kernels.shape, "kernels"))

    @property
    def biases(self) -> np.ndarray:
        return self._biases.copy_to_host()

    @biases.setter
    def biases(self, value):
        self._biases.copy_to_device(self._checked(value, self._biases.shape, "biases"))

    def dump_to_host(self) -> dict:
        """A diagnostic snapshot of the layer's parameters as host arrays."""
        return {"kernels": self.kernels, "biases": self.biases, "input_size": tuple(self.input_size),
                "output_size": tuple(self.output_size)}

    def feed_forward(self, output, input_p):
        """output_j = bias_j + sum_i valid_corr(input_i, kernel_ij), for every sample.

        Output is seeded with the broadcast biases, then each input map adds its correlations against all of its
        kernels with one launch batched over (sample, output map).

        :param output: device feature matrix, dims (batch : n_output_maps*output_size.area())
        :param input_p: feature matrix, dims (batch : n_input_maps*input_size.area())
        """
        in_size, out_size, k_size = self.input_size, self.output_size, self._kernel_size
        input_p, batch = self._check_io(output, input_p, "output", "input", out_size, in_size,
                                        self.n_output_maps, self.n_input_maps)
        if batch == 0:
            return
        n_in, n_out = self.n_input_maps, self.n_output_maps
        in_area, out_area, k_area = in_size.area(), out_size.area(), k_size.area()
        bpg, tpb = flat_launch(output.size)
        with device_guard(f"{self.name} bias broadcast"):
            cuda_fill_bias[bpg, tpb](output, self._biases, out_area)
        out_flat, in_flat, k_flat = flat(output), flat(input_p), flat(self._kernels)
        for i in range(n_in):
            batched_convolve(out_flat, in_flat, k_flat, out_size, in_size, k_size, ConvType.VALID_SHM,
                             n_z=batch * n_out, z_inner=n_out,
                             offsets=(0, i * in_area, i * n_out * k_area),
                             output_step=(n_out * out_area, out_area),
                             data_step=(n_in * in_area, 0),
                             kernel_step=(0, k_area))
        self._synchronize("forward")

    def update_kernel(self, input_p, error, learning_rate: float = 1.):
        """kernel_ij -= learning_rate * sum_samples valid_corr(input_i, error_j)

        The gradient of every kernel pixel is accumulated on the device, one launch per input map batched over
        (sample, output map); the sample slices all land on the same gradient block and sum atomically.

        :param input_p: the feature matrix this layer was fed forward with
        :param error: dL/d(output), dims (batch : n_output_maps*output_size.area())
        :param learning_rate: step size; 1. subtracts the raw gradient
        """
        in_size, out_size, k_size = self.input_size, self.output_size, self._kernel_size
        input_p, error = to_device(input_p), to_device(error)
        batch = check_feature_matrix(input_p, self.n_input_maps, in_size, f"{self.name} input")
        check_feature_matrix(error, self.n_output_maps, out_size, f"{self.name} error", batch)
        if batch == 0:
            return
        n_in, n_out = self.n_input_maps, self.n_output_maps
        in_area, out_area, k_area = in_size.area(), out_size.area(), k_size.area()
        grad = self._kernel_grad
        bpg, tpb = flat_launch(grad.size)
        cuda_reset_to_zero_flat[bpg, tpb](grad)
        in_flat, err_flat = flat(input_p), flat(error)
        for i in range(n_in):
            # the error map plays the kernel here, so the output slice is kernel sized; error maps too big for a shared
            # memory tile run on the direct kernel
            batched_convolve(grad, in_flat, err_flat, k_size, in_size, out_size, ConvType.VALID_SHM,
                             n_z=batch * n_out, z_inner=n_out,
                             offsets=(i * n_out * k_area, i * in_area, 0),
                             output_step=(0, k_area),
                             data_step=(n_in * in_area, 0),
                             kernel_step=(n_out * out_area, out_area),
                             direct_fallback=True)
        with device_guard(f"{self.name} kernel step"):
            cuda_axpy_flat[bpg, tpb](flat(self._kernels), grad, GLOBAL_DTYPE(-learning_rate))
        self._synchronize("update_kernel")

    def update_bias(self, error, learning_rate: float = 1.):
        """bias_j -= learning_rate * (sum of error map j over every pixel of every sample)"""
        error = to_device(error)
        check_feature_matrix(error, self.n_output_maps, self.output_size, f"{self.name} error")
        if error.size == 0:
            return
        bpg, tpb = flat_launch(error.size)
        with device_guard(f"{self.name} bias step"):
            update_bias_conv_kernel[bpg, tpb](GLOBAL_DTYPE(learning_rate), error, self._biases,
                                              self.output_size.area())
        self._synchronize("update_bias")

    def feed_backward(self, upstream_error, error):
        """upstream_i = sum_j full_conv(error_j, kernel_ij), for every sample.

        The FULL correlation against the 180 degree rotated kernel is the transpose of the forward pass. One launch
        per output map, batched over (sample, input map).

        :param upstream_error: device feature matrix, dims (batch : n_input_maps*input_size.area()), overwritten
        :param error: dL/d(output), dims (batch : n_output_maps*output_size.area())
        """
        in_size, out_size, k_size = self.input_size, self.output_size, self._kernel_size
        error, batch = self._check_io(upstream_error, error, "upstream error", "error", in_size, out_size,
                                      self.n_input_maps, self.n_output_maps)
        if batch == 0:
            return
        n_in, n_out = self.n_input_maps, self.n_output_maps
        in_area, out_area, k_area = in_size.area(), out_size.area(), k_size.area()
        up_flat, err_flat, k_flat = flat(upstream_error), flat(error), flat(self._kernels)
        bpg, tpb = flat_launch(up_flat.size)
        cuda_reset_to_zero_flat[bpg, tpb](up_flat)
        for j in range(n_out):
            batched_convolve(up_flat, err_flat, k_flat, in_size, out_size, k_size, ConvType.FULL_SHM,
                             n_z=batch * n_in, z_inner=n_in,
                             offsets=(0, j * out_area, j * k_area),
                             output_step=(n_in * in_area, in_area),
                             data_step=(n_out * out_area, 0),
                             kernel_step=(0, n_out * k_area),
                             rot180kernel=True)
        self._synchronize("backward")


class SubSamplingLayer(BaseLayer):
    def __init__(self, n_input_maps: int, n_output_maps: int, scale: int, input_size, name: str = "pool") -> None:
        """Average pooling over non-overlapping scale x scale blocks, map by map.

        Pooling never mixes maps, so the two map counts must agree; they are both accepted to keep the construction
        signature uniform with :class:`ConvolutionalLayer`.
        """
        super().__init__(name, n_input_maps, n_output_maps, input_size)
        if n_input_maps != n_output_maps:
            msg = f"{name}: subsampling keeps the map count, got {n_input_maps} in / {n_output_maps} out"
            root_error_logger(msg)
            raise ConfigurationError(msg)
        if int(scale) != scale or scale < 1:
            msg = f"{name}: pooling scale must be a positive integer, got {scale!r}"
            root_error_logger(msg)
            raise ConfigurationError(msg)
        self._scale = int(scale)
        root_info_logger(f"built {self}")

    @property
    def layer_type(self):
        return "SubSamplingLayer"

    @property
    def scale(self) -> int:
        return self._scale

    @property
    def output_size(self) -> Size:
        return self.input_size // self._scale

    def feed_forward(self, output, input_p):
        """output = scale x scale block means of every input map; one launch for the whole batch."""
        input_p = to_device(input_p)
        downsample(output, input_p, self.input_size, self.n_input_maps, self._scale)
        self._synchronize("forward")

    def feed_backward(self, upstream_error, error):
        """Spreads each error value evenly (1/scale**2) over the block it was pooled from."""
        error = to_device(error)
        upsample(upstream_error, error, self.input_size, self.n_input_maps, self._scale)
        up_flat = flat(upstream_error)
        if up_flat.size:
            bpg, tpb = flat_launch(up_flat.size)
            with device_guard(f"{self.name} gradient scale"):
                cuda_scale_flat[bpg, tpb](up_flat, GLOBAL_DTYPE(1. / (self._scale * self._scale)))
        self._synchronize("backward")
