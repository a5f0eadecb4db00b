class LayerCheckError(Exception):
    pass


class PreconditionError(LayerCheckError, ValueError):
    """Bad check setup (shapes, indices, missing tops). Not recoverable."""


class NetWiringError(LayerCheckError, ValueError):
    pass


class GradientCheckError(LayerCheckError, AssertionError):
    """Raised when a check recorded one or more mismatches."""

    def __init__(self, report):
        self.report = report
        super().__init__(report.summary())
