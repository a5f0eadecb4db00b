from layercheck.blob import Blob
from layercheck.rng import RandomSource, fill_like


class Filler:
    def fill(self, blob: Blob, rng: RandomSource):
        raise NotImplementedError


class ConstantFiller(Filler):
    def __init__(self, value=0.0):
        self.value = value

    def fill(self, blob, rng=None):
        blob.flat_data[:] = self.value


class GaussianFiller(Filler):
    def __init__(self, mean=0.0, std=1.0):
        if std < 0:
            raise ValueError(f"GaussianFiller: std must be non-negative, got {std}")
        self.mean = mean
        self.std = std

    def fill(self, blob, rng):
        v = rng.gaussian(blob.count, self.mean, self.std, dtype=blob.dtype)
        blob.flat_data[:] = fill_like(blob.flat_data, v)


class UniformFiller(Filler):
    def __init__(self, low=0.0, high=1.0):
        if high < low:
            raise ValueError(f"UniformFiller: high ({high}) < low ({low})")
        self.low = low
        self.high = high

    def fill(self, blob, rng):
        v = rng.uniform(blob.count, self.low, self.high, dtype=blob.dtype)
        blob.flat_data[:] = fill_like(blob.flat_data, v)
