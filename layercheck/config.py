from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CheckConfig:
    """
    stepsize:   finite-difference step
    threshold:  relative tolerance, scaled by max(|computed|, |estimated|, 1)
    seed:       reset before every forward pass and noise draw
    kink, kink_range: elements with kink - kink_range <= |x| <= kink + kink_range
                are not compared. kink_range < 0 disables the band.
    fail_fast:  raise on the first mismatch instead of collecting them
    raise_on_failure: raise GradientCheckError at the end of a public check
                call if anything was recorded; otherwise just return the report
    """
    stepsize: float
    threshold: float
    seed: int = 1701
    kink: float = 0.0
    kink_range: float = -1.0
    dtype: type = np.float64
    fail_fast: bool = False
    raise_on_failure: bool = True

    def __post_init__(self):
        if not self.stepsize > 0:
            raise ValueError(f"stepsize must be positive, got {self.stepsize}")
        if not self.threshold > 0:
            raise ValueError(f"threshold must be positive, got {self.threshold}")
        if np.dtype(self.dtype) not in (np.dtype(np.float32), np.dtype(np.float64)):
            raise ValueError(f"dtype must be float32 or float64, got {self.dtype}")

    def in_kink(self, feature) -> bool:
        f = abs(float(feature))
        return self.kink - self.kink_range <= f <= self.kink + self.kink_range
