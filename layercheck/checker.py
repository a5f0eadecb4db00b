import logging
from contextlib import contextmanager
from dataclasses import asdict

import numpy as np

from layercheck.blob import Blob
from layercheck.config import CheckConfig
from layercheck.device import to_numpy
from layercheck.errors import GradientCheckError, PreconditionError
from layercheck.filler import GaussianFiller, UniformFiller
from layercheck.report import (
    BACKWARD_IN_PLACE,
    FORWARD_IN_PLACE_OBJECTIVE,
    FORWARD_IN_PLACE_OUTPUT,
    GRADIENT,
    CheckReport,
    Mismatch,
)
from layercheck.rng import RandomSource

logger = logging.getLogger(__name__)

# bottom grads are pre-filled with this noise so that a backward pass which
# overwrites instead of accumulating shows up as a mismatch
NOISE_MEAN = 10.0
NOISE_STD = 1.0

# range used to corrupt data a layer claims not to read in backward
CORRUPT_LOW = -10.0
CORRUPT_HIGH = 10.0


def _scratch_copy(blob: Blob) -> Blob:
    backup = Blob(dtype=blob.dtype, device=blob.device)
    backup.copy_from(blob, reshape=True)
    return backup


@contextmanager
def corrupted(blobs, filler, rng):
    """Fill each blob's data with garbage; put the original data back on exit."""
    backups = []
    try:
        for b in blobs:
            backups.append((b, _scratch_copy(b)))
            filler.fill(b, rng)
        yield
    finally:
        for b, backup in backups:
            b.copy_from(backup)


@contextmanager
def aliased_tops(bottom, top, indices):
    """
    Point top[i] at bottom[i] for each i in indices. Yields the original top
    blobs; on exit restores the top list and the bottom data.
    """
    original_tops = {}
    backups = {}
    try:
        for i in indices:
            backups[i] = _scratch_copy(bottom[i])
            original_tops[i] = top[i]
            top[i] = bottom[i]
        yield original_tops
    finally:
        for i, t in original_tops.items():
            top[i] = t
            bottom[i].copy_from(backups[i])


class GradientChecker:
    """
    Checks a layer's backward pass against central finite differences.

    The checker puts an L2 objective (or a single selected output element) on
    top of the layer's outputs and compares d(objective)/d(x) for every input
    and parameter element. It also verifies that the layer accumulates into
    existing gradients, that forward/backward give the same results in place
    when the layer says that is allowed, and that the layer really does not
    read data it claims not to read in backward.

    After a check the contents of the layer's blobs and parameters are not
    guaranteed to be what they were before.

        checker = GradientChecker(1e-2, 1e-3, seed=1701, kink=0., kink_range=0.01)
        checker.check_gradient_exhaustive(ReLU(), [x], [y])
    """

    def __init__(self, stepsize, threshold=None, seed=1701, kink=0.0, kink_range=-1.0, **options):
        if isinstance(stepsize, CheckConfig):
            self.config = stepsize
        else:
            if threshold is None:
                raise TypeError("GradientChecker needs a threshold")
            self.config = CheckConfig(stepsize, threshold, seed, kink, kink_range, **options)
        self.dtype = np.dtype(self.config.dtype).type
        self.stepsize = self.dtype(self.config.stepsize)
        self.threshold = float(self.config.threshold)
        self.rng = RandomSource(self.config.seed)
        logger.debug("GradientChecker config: %s", asdict(self.config))

    def _record(self, report, mismatch):
        report.record(mismatch)
        if self.config.fail_fast:
            raise GradientCheckError(report)

    def _finish(self, report, owned):
        if owned and self.config.raise_on_failure:
            report.raise_for_failures()
        return report

    def check_gradient(self, layer, bottom, top, check_bottom=-1, report=None):
        self.rng.reset()
        layer.setup(bottom, top, self.rng)
        return self.check_gradient_single(layer, bottom, top, check_bottom, -1, -1, report=report)

    def check_gradient_exhaustive(self, layer, bottom, top, check_bottom=-1, report=None):
        owned = report is None
        if owned:
            report = CheckReport()
        if not top:
            raise PreconditionError("exhaustive mode requires at least one top blob")
        self.rng.reset()
        layer.setup(bottom, top, self.rng)
        for top_id in range(len(top)):
            for top_data_id in range(top[top_id].count):
                self.check_gradient_single(layer, bottom, top, check_bottom,
                                           top_id, top_data_id, report=report)
        return self._finish(report, owned)

    def check_gradient_net(self, net, inputs, report=None):
        """
        Check every layer of net in order, each against the live blobs the net
        wired for it. The net should contain no data or loss layers.
        """
        owned = report is None
        if owned:
            report = CheckReport()
        for layer, bottom, top in zip(net.layers, net.bottom_vecs, net.top_vecs):
            self.rng.reset()
            net.forward(inputs, self.rng)
            logger.info("Checking gradient for %s", layer.name)
            self.check_gradient_exhaustive(layer, bottom, top, report=report)
        return self._finish(report, owned)

    def _check_preconditions(self, layer, bottom, top, check_bottom, top_id, top_data_id):
        if check_bottom >= len(bottom):
            raise PreconditionError(f"check_bottom={check_bottom} but layer has {len(bottom)} bottom(s)")
        if top_id < 0 and top_data_id >= 0:
            raise PreconditionError(f"top_data_id={top_data_id} given without a top_id")
        if top_id >= 0:
            if top_id >= len(top):
                raise PreconditionError(f"top_id={top_id} but layer has {len(top)} top(s)")
            if not 0 <= top_data_id < top[top_id].count:
                raise PreconditionError(
                    f"top_data_id={top_data_id} out of range for top {top_id} "
                    f"with {top[top_id].count} element(s)")
        if layer.is_elementwise_only() and top_id >= 0 and top_data_id >= 0:
            if layer.parameter_blobs():
                raise PreconditionError(f"{layer.name}: elementwise-only layer has parameter blobs")
            top_count = top[top_id].count
            for blob_id, b in enumerate(bottom):
                if b.count != top_count:
                    raise PreconditionError(
                        f"{layer.name}: elementwise-only layer bottom {blob_id} has "
                        f"{b.count} element(s), top {top_id} has {top_count}")

    def check_gradient_single(self, layer, bottom, top, check_bottom=-1, top_id=-1,
                              top_data_id=-1, report=None):
        owned = report is None
        if owned:
            report = CheckReport()
        self._check_preconditions(layer, bottom, top, check_bottom, top_id, top_data_id)
        report.checks_run += 1
        elementwise = layer.is_elementwise_only()

        # Figure out which blobs to check: parameters first, then bottoms.
        blobs_to_check = []
        bottom_inds = []
        propagate_down = [False] * len(bottom)
        for p in layer.parameter_blobs():
            blobs_to_check.append(p)
            bottom_inds.append(-1)
        checked = range(len(bottom)) if check_bottom < 0 else [check_bottom]
        for i in checked:
            blobs_to_check.append(bottom[i])
            bottom_inds.append(i)
            propagate_down[i] = True
        logger.debug("%s: checking %d blob(s) for (top_id, top_data_id)=(%d, %d)",
                     layer.name, len(blobs_to_check), top_id, top_data_id)

        # Noise in the bottom grads, subtracted again after backward.
        self.rng.reset()
        noise_filler = GaussianFiller(NOISE_MEAN, NOISE_STD)
        noise = [None] * len(blobs_to_check)
        for k, b in enumerate(blobs_to_check):
            if bottom_inds[k] >= 0:
                n = Blob(dtype=b.dtype, device=b.device)
                n.reshape_like(b)
                noise_filler.fill(n, self.rng)
                b.flat_grad[:] = n.flat_data
                noise[k] = n

        self.rng.reset()
        computed_objective = layer.forward(bottom, top, self.rng)
        self.check_forward_in_place(layer, bottom, top, check_bottom, computed_objective,
                                    top_id, top_data_id, report=report)
        computed_objective += self.objective_and_gradient(top, top_id, top_data_id)

        corrupt_filler = UniformFiller(CORRUPT_LOW, CORRUPT_HIGH)
        unread_bottoms = [b for i, b in enumerate(bottom) if not layer.backward_reads_input(i)]
        computed_gradients = []
        bottom_gradients = [None] * len(bottom)
        with corrupted(unread_bottoms, corrupt_filler, self.rng):
            for i, t in enumerate(top):
                if not layer.backward_reads_output(i):
                    corrupt_filler.fill(t, self.rng)
            layer.accumulate_backward(top, propagate_down, [True] * len(bottom), bottom)
            for k, b in enumerate(blobs_to_check):
                g = b.flat_grad.copy()
                if noise[k] is not None:
                    g = g - noise[k].flat_data
                g = to_numpy(g)
                computed_gradients.append(g)
                if bottom_inds[k] >= 0:
                    bottom_gradients[bottom_inds[k]] = g

        self.check_backward_in_place(layer, bottom, top, bottom_gradients, propagate_down,
                                     check_bottom, top_id, top_data_id, report=report)

        for blob_id, b in enumerate(blobs_to_check):
            grads = computed_gradients[blob_id]
            for feat_id in range(b.count):
                # For an elementwise layer d top[top_data_id] / d bottom[feat_id]
                # is zero unless feat_id == top_data_id.
                estimated = 0.0
                if not elementwise or top_data_id == feat_id or top_data_id == -1:
                    estimated = self._finite_difference(layer, bottom, top, b, feat_id,
                                                        top_id, top_data_id)
                computed = float(grads[feat_id])
                feature = float(to_numpy(b.flat_data[feat_id]))
                if self.config.in_kink(feature):
                    continue
                # relative accuracy, with the scale floored at 1
                tolerance = self.threshold * max(abs(computed), abs(estimated), 1.0)
                if not abs(computed - estimated) <= tolerance:
                    self._record(report, Mismatch(GRADIENT, layer.name, top_id, top_data_id,
                                                  blob_id, feat_id, computed, estimated, tolerance))
        return self._finish(report, owned)

    def _finite_difference(self, layer, bottom, top, blob, feat_id, top_id, top_data_id) -> float:
        flat = blob.flat_data
        original = flat[feat_id].copy()
        try:
            flat[feat_id] = original + self.stepsize
            self.rng.reset()
            positive = layer.forward(bottom, top, self.rng)
            positive += self.objective_and_gradient(top, top_id, top_data_id)

            flat[feat_id] = original - self.stepsize
            self.rng.reset()
            negative = layer.forward(bottom, top, self.rng)
            negative += self.objective_and_gradient(top, top_id, top_data_id)
        finally:
            flat[feat_id] = original
        return float((positive - negative) / self.stepsize / 2.0)

    def check_forward_in_place(self, layer, bottom, top, check_bottom, computed_objective,
                               top_id=-1, top_data_id=-1, report=None):
        """
        Rerun forward with top[i] aliased to bottom[i] wherever the layer allows
        it and compare with the out-of-place result already in top. Both the
        objective and every output element must match exactly.
        """
        owned = report is None
        if owned:
            report = CheckReport()
        indices = [i for i in range(min(len(bottom), len(top)))
                   if (check_bottom < 0 or i == check_bottom)
                   and top[i].count == bottom[i].count
                   and not layer.forward_reuses_input(i)]
        if not indices:
            return self._finish(report, owned)

        with aliased_tops(bottom, top, indices) as original_tops:
            self.rng.reset()
            in_place_objective = layer.forward(bottom, top, self.rng)
            if not in_place_objective == computed_objective:
                self._record(report, Mismatch(FORWARD_IN_PLACE_OBJECTIVE, layer.name, top_id, top_data_id, -1, -1,
                                              float(in_place_objective), float(computed_objective)))
            for i in indices:
                expected = to_numpy(original_tops[i].flat_data)
                got = to_numpy(top[i].flat_data)
                for j in np.flatnonzero(~(expected == got)):
                    self._record(report, Mismatch(FORWARD_IN_PLACE_OUTPUT, layer.name, top_id, top_data_id, i, int(j),
                                                  float(got[j]), float(expected[j])))
        return self._finish(report, owned)

    def check_backward_in_place(self, layer, bottom, top, computed_gradients, propagate_down,
                                check_bottom=-1, top_id=-1, top_data_id=-1, report=None):
        """
        Rerun forward and backward on shadow copies whose bottom grads share
        storage with the top grads, and compare the resulting bottom grads with
        computed_gradients (absolute tolerance, no kink band).
        """
        owned = report is None
        if owned:
            report = CheckReport()
        in_place = [(check_bottom < 0 or i == check_bottom)
                    and top[i].count == bottom[i].count
                    and not layer.backward_reuses_output_grad(i)
                    for i in range(min(len(bottom), len(top)))]
        if not any(in_place):
            return self._finish(report, owned)

        temp_bottom = [_scratch_copy(b) for b in bottom]
        temp_top = [Blob(dtype=t.dtype, device=t.device) for t in top]
        self.rng.reset()
        layer.setup(temp_bottom, temp_top, self.rng)
        for i, shared in enumerate(in_place):
            if shared:
                temp_bottom[i].share_grad(temp_top[i])
        layer.forward(temp_bottom, temp_top, self.rng)
        self.objective_and_gradient(temp_top, top_id, top_data_id)
        layer.backward(temp_top, propagate_down, temp_bottom)

        for i in range(len(in_place)):
            reference = computed_gradients[i]
            if reference is None or not propagate_down[i]:
                continue
            got = to_numpy(temp_bottom[i].flat_grad)
            for j in range(bottom[i].count):
                if not abs(float(reference[j]) - float(got[j])) <= self.threshold:
                    self._record(report, Mismatch(BACKWARD_IN_PLACE, layer.name, top_id, top_data_id, i, j,
                                                  float(got[j]), float(reference[j]), self.threshold))
        return self._finish(report, owned)

    def objective_and_gradient(self, top, top_id=-1, top_data_id=-1):
        """
        top_id < 0: objective is half the sum of squares of all outputs and
        each top grad is set to its data.
        otherwise: objective is top[top_id][top_data_id]; that element's grad
        is 1 and every other top grad is 0.
        """
        loss = self.dtype(0)
        if top_id < 0:
            for t in top:
                d = t.flat_data
                loss += self.dtype(to_numpy((d * d).sum()))
                t.flat_grad[:] = d
            loss /= self.dtype(2)
        else:
            for t in top:
                t.zero_grad()
            loss = self.dtype(to_numpy(top[top_id].flat_data[top_data_id]))
            top[top_id].flat_grad[top_data_id] = 1
        return loss
