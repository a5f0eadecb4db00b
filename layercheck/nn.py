from layercheck.blob import Blob
from layercheck.device import array_module
from layercheck.filler import ConstantFiller, GaussianFiller
from layercheck.layer import Layer
from layercheck.rng import fill_like


class ElementwiseLayer(Layer):
    # one bottom, one top, same shape
    def reshape(self, bottom, top):
        top[0].reshape_like(bottom[0])

    def is_elementwise_only(self):
        return True


class Square(ElementwiseLayer):
    def forward(self, bottom, top, rng=None):
        x = bottom[0].data
        top[0].data = x * x
        return 0.0

    def backward(self, top, propagate_down, bottom):
        if propagate_down[0]:
            bottom[0].grad = 2.0 * bottom[0].data * top[0].grad

    def backward_reads_output(self, top_index):
        return False


class ReLU(ElementwiseLayer):
    """Non-smooth at 0: check it with kink=0 and a small kink_range."""

    def __init__(self, negative_slope=0.0, name=None):
        super().__init__(name)
        self.negative_slope = negative_slope

    def forward(self, bottom, top, rng=None):
        xp = array_module(bottom[0].data)
        x = bottom[0].data
        top[0].data = xp.where(x > 0, x, self.negative_slope * x)
        return 0.0

    def backward(self, top, propagate_down, bottom):
        if propagate_down[0]:
            xp = array_module(bottom[0].data)
            slope = xp.where(bottom[0].data > 0, 1.0, self.negative_slope)
            bottom[0].grad = top[0].grad * slope

    def backward_reads_output(self, top_index):
        return False


class Sigmoid(ElementwiseLayer):
    def forward(self, bottom, top, rng=None):
        xp = array_module(bottom[0].data)
        top[0].data = 1.0 / (1.0 + xp.exp(-bottom[0].data))
        return 0.0

    def backward(self, top, propagate_down, bottom):
        if propagate_down[0]:
            s = top[0].data
            bottom[0].grad = top[0].grad * s * (1.0 - s)

    def backward_reads_input(self, bottom_index):
        return False


class TanH(ElementwiseLayer):
    def forward(self, bottom, top, rng=None):
        xp = array_module(bottom[0].data)
        top[0].data = xp.tanh(bottom[0].data)
        return 0.0

    def backward(self, top, propagate_down, bottom):
        if propagate_down[0]:
            t = top[0].data
            bottom[0].grad = top[0].grad * (1.0 - t * t)

    def backward_reads_input(self, bottom_index):
        return False


class Dropout(ElementwiseLayer):
    def __init__(self, ratio=0.5, name=None):
        super().__init__(name)
        if not 0.0 <= ratio < 1.0:
            raise ValueError(f"Dropout: ratio must be in [0, 1), got {ratio}")
        self.ratio = ratio
        self.training = True
        self.mask = None

    def train(self):
        self.training = True

    def eval(self):
        self.training = False

    def forward(self, bottom, top, rng=None):
        x = bottom[0].data
        if not self.training:
            top[0].data = x
            return 0.0
        if rng is None:
            raise ValueError(f"{self.name}: train-mode forward needs a RandomSource")
        keep = rng.bernoulli(x.shape, 1.0 - self.ratio)
        self.mask = fill_like(x, keep.astype(x.dtype) / (1.0 - self.ratio))
        top[0].data = x * self.mask
        return 0.0

    def backward(self, top, propagate_down, bottom):
        if propagate_down[0]:
            if self.training:
                bottom[0].grad = top[0].grad * self.mask
            else:
                bottom[0].grad = top[0].grad

    def backward_reads_input(self, bottom_index):
        return False

    def backward_reads_output(self, top_index):
        return False


class Linear(Layer):
    """
    y = x @ W + b, with x flattened to (N, K).
    W: (K, num_output), b: (num_output,)
    """

    def __init__(self, num_output, weight_filler=None, bias_filler=None, bias_term=True, name=None):
        super().__init__(name)
        self.num_output = int(num_output)
        self.weight_filler = weight_filler or GaussianFiller(std=0.1)
        self.bias_filler = bias_filler or ConstantFiller(0.0)
        self.bias_term = bias_term

    def init_params(self, bottom, rng):
        if rng is None:
            raise ValueError(f"{self.name}: parameter initialization needs a RandomSource")
        x = bottom[0]
        K = x.count // x.shape[0]
        W = Blob((K, self.num_output), dtype=x.dtype, device=x.device)
        self.weight_filler.fill(W, rng)
        self.blobs = [W]
        if self.bias_term:
            b = Blob((self.num_output,), dtype=x.dtype, device=x.device)
            self.bias_filler.fill(b, rng)
            self.blobs.append(b)

    def reshape(self, bottom, top):
        N = bottom[0].shape[0]
        K = bottom[0].count // N
        if K != self.blobs[0].shape[0]:
            raise ValueError(f"{self.name}: input size {K} does not match weights {self.blobs[0].shape}")
        top[0].reshape((N, self.num_output))

    def forward(self, bottom, top, rng=None):
        N = bottom[0].shape[0]
        x = bottom[0].data.reshape(N, -1)
        y = x @ self.blobs[0].data
        if self.bias_term:
            y = y + self.blobs[1].data
        top[0].data = y
        return 0.0

    def backward(self, top, propagate_down, bottom):
        N = bottom[0].shape[0]
        dy = top[0].grad
        x = bottom[0].data.reshape(N, -1)
        self.blobs[0].grad = x.T @ dy
        if self.bias_term:
            self.blobs[1].grad = dy.sum(axis=0)
        if propagate_down[0]:
            bottom[0].grad = (dy @ self.blobs[0].data.T).reshape(bottom[0].shape)

    def forward_reuses_input(self, bottom_index):
        return True

    def backward_reuses_output_grad(self, bottom_index):
        return True

    def backward_reads_output(self, top_index):
        return False
