import logging

logger = logging.getLogger(__name__)


class Layer:
    """
    Base class for everything the gradient checker can verify.

    bottom / top are lists of Blob. Subclasses implement reshape, forward and
    backward, and answer the capability queries below. The queries default to
    the conservative answer: the layer reads all of its data in backward and
    tolerates in-place computation.
    """

    def __init__(self, name=None):
        self.name = name or type(self).__name__
        self.blobs = []

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"

    def setup(self, bottom, top, rng=None):
        if self.blobs:
            logger.debug("%s: skipping parameter initialization", self.name)
        else:
            self.init_params(bottom, rng)
        self.reshape(bottom, top)

    def init_params(self, bottom, rng):
        pass

    def reshape(self, bottom, top):
        raise NotImplementedError

    def forward(self, bottom, top, rng=None) -> float:
        # returns the layer's loss contribution (0 for non-loss layers)
        raise NotImplementedError

    def backward(self, top, propagate_down, bottom):
        # overwrites bottom[i].grad for every i with propagate_down[i]
        raise NotImplementedError

    def accumulate_backward(self, top, propagate_down, accumulate_down, bottom):
        saved = []
        for i, b in enumerate(bottom):
            keep = propagate_down[i] and accumulate_down[i]
            saved.append(b.grad.copy() if keep else None)
        self.backward(top, propagate_down, bottom)
        for b, g in zip(bottom, saved):
            if g is not None:
                b.grad += g

    def parameter_blobs(self):
        return list(self.blobs)

    def is_elementwise_only(self) -> bool:
        # top[j][k] depends only on bottom[i][k]
        return False

    def forward_reuses_input(self, bottom_index: int) -> bool:
        # True when forward needs top[i] distinct from bottom[i]
        return False

    def backward_reuses_output_grad(self, bottom_index: int) -> bool:
        # True when backward needs bottom[i].grad distinct from top[i].grad
        return False

    def backward_reads_input(self, bottom_index: int) -> bool:
        return True

    def backward_reads_output(self, top_index: int) -> bool:
        return True
