import logging

from layercheck.blob import Blob
from layercheck.checker import GradientChecker
from layercheck.filler import GaussianFiller
from layercheck.net import Net
from layercheck.nn import Linear, ReLU, Sigmoid
from layercheck.rng import RandomSource


def build_net(batch_size=2, in_dim=3, hidden_dim=4, out_dim=2):
    net = Net({"data": (batch_size, in_dim)})
    net.add(Linear(hidden_dim, weight_filler=GaussianFiller(std=0.5), name="ip1"), ["data"], ["ip1"])
    net.add(ReLU(name="relu1"), ["ip1"], ["relu1"])
    net.add(Linear(out_dim, weight_filler=GaussianFiller(std=0.5), name="ip2"), ["relu1"], ["ip2"])
    net.add(Sigmoid(name="sig2"), ["ip2"], ["out"])
    return net


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    x = Blob((2, 3))
    GaussianFiller().fill(x, RandomSource(0))

    # relu is not differentiable at 0, so skip features within 0.01 of it
    checker = GradientChecker(1e-2, 1e-3, seed=1701, kink=0.0, kink_range=0.01,
                              raise_on_failure=False)
    report = checker.check_gradient_net(build_net(), [x])

    print(report.summary())
    if not report.ok:
        raise SystemExit(1)
    print("[OK] all layer gradients match finite differences")

if __name__ == "__main__":
    main()
