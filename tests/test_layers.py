import numpy as np
import pytest

from layercheck.blob import Blob
from layercheck.filler import ConstantFiller
from layercheck.layer import Layer
from layercheck.nn import Dropout, Linear, ReLU, Sigmoid, Square, TanH
from layercheck.rng import RandomSource


def run_forward(layer, x, rng=None):
    bottom, top = [Blob(data=x)], [Blob()]
    layer.setup(bottom, top, rng)
    layer.forward(bottom, top, rng)
    return bottom, top


def test_default_accumulate_backward_adds():
    bottom, top = run_forward(Square(), np.array([1.0, -2.0]))
    top[0].grad = 1.0
    bottom[0].grad = np.array([10.0, 20.0])

    Square().accumulate_backward(top, [True], [True], bottom)
    assert np.allclose(bottom[0].grad, [12.0, 16.0])

    Square().accumulate_backward(top, [True], [False], bottom)
    assert np.allclose(bottom[0].grad, [2.0, -4.0])


def test_base_layer_defaults():
    layer = Layer()
    assert layer.name == "Layer"
    assert layer.parameter_blobs() == []
    assert not layer.is_elementwise_only()
    assert not layer.forward_reuses_input(0)
    assert not layer.backward_reuses_output_grad(0)
    assert layer.backward_reads_input(0)
    assert layer.backward_reads_output(0)
    with pytest.raises(NotImplementedError):
        layer.forward([], [])


def test_activation_forwards():
    x = np.array([-1.0, 0.0, 2.0])
    _, top = run_forward(ReLU(), x)
    assert np.array_equal(top[0].data, [0.0, 0.0, 2.0])

    _, top = run_forward(ReLU(negative_slope=0.1), x)
    assert np.allclose(top[0].data, [-0.1, 0.0, 2.0])

    _, top = run_forward(Sigmoid(), x)
    assert np.allclose(top[0].data, 1.0 / (1.0 + np.exp(-x)))

    _, top = run_forward(TanH(), x)
    assert np.allclose(top[0].data, np.tanh(x))


def test_linear_forward_backward():
    W = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
    x = np.array([[1.0, 0.0, -1.0]])
    layer = Linear(2, bias_filler=ConstantFiller(0.5))
    bottom, top = [Blob(data=x)], [Blob()]
    layer.setup(bottom, top, RandomSource(0))
    layer.blobs[0].data = W
    layer.forward(bottom, top)
    assert np.allclose(top[0].data, x @ W + 0.5)

    top[0].grad = np.array([[1.0, -1.0]])
    layer.backward(top, [True], bottom)
    assert np.allclose(layer.blobs[0].grad, x.T @ top[0].grad)
    assert np.allclose(layer.blobs[1].grad, [1.0, -1.0])
    assert np.allclose(bottom[0].grad, top[0].grad @ W.T)


def test_linear_setup_keeps_existing_params():
    layer = Linear(2)
    bottom, top = [Blob((1, 3))], [Blob()]
    layer.setup(bottom, top, RandomSource(0))
    W = layer.blobs[0].data.copy()
    layer.setup(bottom, top, RandomSource(1))
    assert np.array_equal(layer.blobs[0].data, W)

    with pytest.raises(ValueError):
        layer.reshape([Blob((1, 4))], top)


def test_dropout_train_eval():
    x = np.ones((2, 5))
    d = Dropout(ratio=0.5)

    # Train mode: randomness comes from the rng handle
    rng = RandomSource(0)
    _, t1 = run_forward(d, x, rng)
    _, t2 = run_forward(d, x, rng)
    assert not np.allclose(t1[0].data, t2[0].data), "Dropout should be random in train mode"

    rng.reset()
    _, t3 = run_forward(d, x, rng)
    assert np.array_equal(t1[0].data, t3[0].data), "same seed, same mask"
    assert set(np.unique(t1[0].data)) <= {0.0, 2.0}

    # Eval mode: identity
    d.eval()
    _, t4 = run_forward(d, x)
    assert np.allclose(t4[0].data, x)

    d.train()
    with pytest.raises(ValueError):
        run_forward(d, x)


def main():
    test_default_accumulate_backward_adds()
    test_activation_forwards()
    test_linear_forward_backward()
    test_dropout_train_eval()
    print("[OK] layer tests passed.")

if __name__ == "__main__":
    main()
