import numpy as np

from layercheck.device import get_xp, array_module, device_of


class _Storage:
    # flat buffer that one or more blobs view
    __slots__ = ("array",)

    def __init__(self, array):
        self.array = array


def _count(shape):
    n = 1
    for s in shape:
        n *= int(s)
    return n


class Blob:
    """
    Dense array with two parallel roles of identical shape:
      data - the values a layer reads and writes in forward
      grad - the gradient accumulator written in backward

    Both roles live in flat storage holders. share_data / share_grad point this
    blob at another blob's holder, so the two views see the same memory for as
    long as either blob is alive.
    """

    def __init__(self, shape=(), dtype=np.float64, device="cpu", data=None):
        if data is not None:
            data = array_module(data).asarray(data, dtype=dtype)
            shape = data.shape
            device = device_of(data)
        self._xp = get_xp(device)
        self.device = device
        self.dtype = np.dtype(dtype)
        self._shape = tuple(int(s) for s in shape)
        n = _count(self._shape)
        self._data = _Storage(self._xp.zeros(n, dtype=self.dtype))
        self._grad = _Storage(self._xp.zeros(n, dtype=self.dtype))
        if data is not None:
            self._data.array[:] = data.reshape(-1)

    def __repr__(self):
        return f"Blob(shape={self._shape}, dtype={self.dtype.name}, device={self.device})"

    @property
    def shape(self):
        return self._shape

    @property
    def count(self) -> int:
        return _count(self._shape)

    def _view(self, storage):
        return storage.array[:self.count].reshape(self._shape)

    @property
    def data(self):
        return self._view(self._data)

    @data.setter
    def data(self, value):
        self.data[...] = value

    @property
    def grad(self):
        return self._view(self._grad)

    @grad.setter
    def grad(self, value):
        self.grad[...] = value

    @property
    def flat_data(self):
        return self._data.array[:self.count]

    @property
    def flat_grad(self):
        return self._grad.array[:self.count]

    def reshape(self, shape):
        shape = tuple(int(s) for s in shape)
        n = _count(shape)
        # growing past capacity reallocates; shared views follow the holder
        if n > self._data.array.size:
            self._data.array = self._xp.zeros(n, dtype=self.dtype)
        if n > self._grad.array.size:
            self._grad.array = self._xp.zeros(n, dtype=self.dtype)
        self._shape = shape

    def reshape_like(self, other: "Blob"):
        self.reshape(other.shape)

    def copy_from(self, other: "Blob", copy_grad=False, reshape=False):
        if self.count != other.count or self._shape != other.shape:
            if not reshape:
                raise ValueError(f"copy_from: shape mismatch {self._shape} vs {other.shape}")
            self.reshape_like(other)
        if copy_grad:
            self.flat_grad[:] = other.flat_grad
        else:
            self.flat_data[:] = other.flat_data

    def share_data(self, other: "Blob"):
        if self.count != other.count:
            raise ValueError(f"share_data: count mismatch {self.count} vs {other.count}")
        self._data = other._data

    def share_grad(self, other: "Blob"):
        if self.count != other.count:
            raise ValueError(f"share_grad: count mismatch {self.count} vs {other.count}")
        self._grad = other._grad

    def zero_grad(self):
        self.flat_grad[:] = 0
