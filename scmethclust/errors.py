"""Exception types raised by scMethClust."""


class ScMethClustError(Exception):
    """Base class for all scMethClust errors."""
    pass


class ConfigurationError(ScMethClustError):
    """Raised when a parameter (worker count, k, measure, ...) is invalid."""
    pass


class MalformedTableError(ScMethClustError):
    """Raised when a CpG table is missing columns or holds invalid values."""
    pass


class IncompleteMatrixError(ScMethClustError):
    """Raised when clustering is requested on a matrix with missing entries."""
    pass


class PairComparisonError(ScMethClustError):
    """Raised when comparing one pair of cells fails.

    The cell names are kept as exception args so the error survives pickling
    across process boundaries.
    """

    def __init__(self, cell_a: str, cell_b: str, reason: str):
        super().__init__(cell_a, cell_b, reason)
        self.cell_a = cell_a
        self.cell_b = cell_b
        self.reason = reason

    def __str__(self):
        return f"Comparison of '{self.cell_a}' and '{self.cell_b}' failed: {self.reason}"
