import numpy as np

from layercheck.device import array_module, to_numpy


class RandomSource:
    """
    Seedable random handle passed explicitly to fillers and to layers that
    need internal randomness. reset() puts it back to the configured seed so
    repeated forward passes see identical draws.
    """

    def __init__(self, seed: int = 1701):
        self.seed = int(seed)
        self.rng = np.random.RandomState(self.seed)

    def reset(self, seed=None):
        if seed is not None:
            self.seed = int(seed)
        self.rng = np.random.RandomState(self.seed)
        return self

    def gaussian(self, shape, mean=0.0, std=1.0, dtype=np.float64):
        return self.rng.normal(mean, std, size=shape).astype(dtype)

    def uniform(self, shape, low=0.0, high=1.0, dtype=np.float64):
        return self.rng.uniform(low, high, size=shape).astype(dtype)

    def bernoulli(self, shape, p=0.5):
        return self.rng.uniform(0.0, 1.0, size=shape) < p


def fill_like(target, values):
    # move host draws to the target's backend
    xp = array_module(target)
    if xp is np:
        return values
    return xp.asarray(to_numpy(values))
