import numpy as np
import pytest

from layercheck.blob import Blob
from layercheck.checker import GradientChecker
from layercheck.errors import GradientCheckError, NetWiringError
from layercheck.filler import GaussianFiller
from layercheck.net import Net
from layercheck.nn import Linear, Sigmoid, Square, TanH
from layercheck.rng import RandomSource


def build_mlp():
    net = Net({"data": (2, 3)})
    net.add(Linear(4, weight_filler=GaussianFiller(std=0.5), bias_filler=GaussianFiller(), name="ip1"), ["data"], ["ip1"])
    net.add(Sigmoid(name="sig1"), ["ip1"], ["sig1"])
    net.add(Linear(2, weight_filler=GaussianFiller(std=0.5), name="ip2"), ["sig1"], ["ip2"])
    net.add(TanH(name="tanh2"), ["ip2"], ["out"])
    return net


def make_input(seed=0):
    x = Blob((2, 3))
    GaussianFiller().fill(x, RandomSource(seed))
    return x


def test_net_wiring():
    net = build_mlp()
    assert [l.name for l in net.layers] == ["ip1", "sig1", "ip2", "tanh2"]
    assert net.top_vecs[0][0] is net.bottom_vecs[1][0]
    assert net.blob("out") is net.top_vecs[3][0]

    with pytest.raises(NetWiringError):
        net.add(Square(), ["missing"], ["x"])


def test_net_forward_matches_manual():
    net = build_mlp()
    x = make_input()
    loss = net.forward([x], RandomSource(1701))
    assert loss == 0.0

    W1, b1 = (p.data for p in net.layers[0].blobs)
    W2, b2 = (p.data for p in net.layers[2].blobs)
    h = 1.0 / (1.0 + np.exp(-(x.data @ W1 + b1)))
    expected = np.tanh(h @ W2 + b2)
    assert np.allclose(net.blob("out").data, expected)

    with pytest.raises(NetWiringError):
        net.forward([x, x])


def test_check_gradient_net():
    net = build_mlp()
    x = make_input()
    checker = GradientChecker(1e-2, 1e-3, seed=1701)
    report = checker.check_gradient_net(net, [x])
    assert report.ok
    # one single-point check per output element of every layer
    assert report.checks_run == 8 + 8 + 4 + 4


def test_check_gradient_net_finds_broken_layer():
    class BrokenTanH(TanH):
        def backward(self, top, propagate_down, bottom):
            if propagate_down[0]:
                bottom[0].grad = top[0].grad

    net = Net({"data": (2, 3)})
    net.add(Linear(4, name="ip1"), ["data"], ["ip1"])
    net.add(BrokenTanH(name="bad"), ["ip1"], ["out"])

    checker = GradientChecker(1e-2, 1e-3)
    with pytest.raises(GradientCheckError) as excinfo:
        checker.check_gradient_net(net, [make_input()])
    assert {m.layer for m in excinfo.value.report.failures} == {"bad"}


def main():
    test_net_wiring()
    test_net_forward_matches_manual()
    test_check_gradient_net()
    print("[OK] net tests passed.")

if __name__ == "__main__":
    main()
