import numpy as np

try:
    import cupy as cp
except Exception:
    cp = None

# accepted device names per backend
CPU_NAMES = ("cpu", "numpy")
CUDA_NAMES = ("cuda", "gpu", "cupy")


def get_xp(device: str):
    if device in CPU_NAMES:
        return np
    if device in CUDA_NAMES:
        if cp is None:
            raise ImportError(f"device {device!r} needs cupy, which is not installed")
        return cp
    raise ValueError(f"unknown device: {device}")


def on_cuda(x) -> bool:
    return cp is not None and isinstance(x, cp.ndarray)


def array_module(x):
    return cp if on_cuda(x) else np


def device_of(x) -> str:
    return "cuda" if on_cuda(x) else "cpu"


def to_numpy(x):
    # host copy for comparisons and reporting
    return cp.asnumpy(x) if on_cuda(x) else np.asarray(x)
