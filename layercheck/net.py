import logging

import numpy as np

from layercheck.blob import Blob
from layercheck.errors import NetWiringError

logger = logging.getLogger(__name__)


class Net:
    """
    Ordered layers wired through named blobs.

        net = Net({"data": (2, 3)})
        net.add(Linear(4, name="ip1"), ["data"], ["ip1"])
        net.add(Sigmoid(name="sig1"), ["ip1"], ["sig1"])
        net.forward([x_blob], rng)

    Layers run in the order they were added; every bottom must already be an
    input or the top of an earlier layer.
    """

    def __init__(self, inputs, dtype=np.float64, device="cpu"):
        self.dtype = dtype
        self.device = device
        self.blobs = {}
        self.input_names = []
        for name, shape in inputs.items():
            self.blobs[name] = Blob(shape, dtype=dtype, device=device)
            self.input_names.append(name)
        self.layers = []
        self.bottom_vecs = []
        self.top_vecs = []
        self._is_setup = False

    def add(self, layer, bottoms, tops):
        missing = [b for b in bottoms if b not in self.blobs]
        if missing:
            raise NetWiringError(f"{layer.name}: unknown bottom blob(s) {missing}")
        bottom_vec = [self.blobs[b] for b in bottoms]
        top_vec = []
        for t in tops:
            if t not in self.blobs:
                self.blobs[t] = Blob((), dtype=self.dtype, device=self.device)
            top_vec.append(self.blobs[t])
        self.layers.append(layer)
        self.bottom_vecs.append(bottom_vec)
        self.top_vecs.append(top_vec)
        self._is_setup = False
        return self

    def blob(self, name) -> Blob:
        return self.blobs[name]

    def setup(self, rng=None):
        for layer, bottom, top in zip(self.layers, self.bottom_vecs, self.top_vecs):
            logger.debug("setting up %s", layer.name)
            layer.setup(bottom, top, rng)
        self._is_setup = True

    def forward(self, inputs, rng=None) -> float:
        if len(inputs) != len(self.input_names):
            raise NetWiringError(f"expected {len(self.input_names)} input(s), got {len(inputs)}")
        for name, src in zip(self.input_names, inputs):
            self.blobs[name].copy_from(src, reshape=True)
        if not self._is_setup:
            self.setup(rng)
        loss = 0.0
        for layer, bottom, top in zip(self.layers, self.bottom_vecs, self.top_vecs):
            layer.reshape(bottom, top)
            loss += layer.forward(bottom, top, rng)
        return loss
