import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from layercheck.errors import GradientCheckError

logger = logging.getLogger(__name__)

GRADIENT = "gradient"
FORWARD_IN_PLACE_OBJECTIVE = "forward_in_place_objective"
FORWARD_IN_PLACE_OUTPUT = "forward_in_place_output"
BACKWARD_IN_PLACE = "backward_in_place"


@dataclass
class Mismatch:
    kind: str
    layer: str
    top_id: int
    top_data_id: int
    blob_id: int
    feat_id: int
    computed: float
    estimated: float
    tolerance: Optional[float] = None

    def __str__(self):
        tol = "exact" if self.tolerance is None else f"tol={self.tolerance:.3g}"
        return (f"[{self.kind}] {self.layer}: (top_id, top_data_id, blob_id, feat_id)="
                f"{self.top_id},{self.top_data_id},{self.blob_id},{self.feat_id} "
                f"computed={self.computed!r} estimated={self.estimated!r} {tol}")


@dataclass
class CheckReport:
    failures: List[Mismatch] = field(default_factory=list)
    checks_run: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def record(self, mismatch: Mismatch):
        logger.error("%s", mismatch)
        self.failures.append(mismatch)

    def summary(self, limit=10) -> str:
        if self.ok:
            return f"{self.checks_run} check(s), no mismatches"
        lines = [f"{len(self.failures)} mismatch(es) in {self.checks_run} check(s):"]
        lines += [f"  {m}" for m in self.failures[:limit]]
        if len(self.failures) > limit:
            lines.append(f"  ... and {len(self.failures) - limit} more")
        return "\n".join(lines)

    def to_dict(self):
        return asdict(self)

    def raise_for_failures(self):
        if not self.ok:
            raise GradientCheckError(self)
