"""Exceptions raised while loading grids, building models and solving them."""

from __future__ import annotations

from typing import Optional


class ScucError(Exception):
    pass


class InputFormatError(ScucError):
    """A field of the input document is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class DimensionMismatchError(InputFormatError):
    """A time series does not have one entry per hour of the horizon."""

    def __init__(self, field: str, expected: int, found: int) -> None:
        super().__init__(f"Time series `{field}` has {found} entries but the "
                         f"time horizon has {expected} hours!", field)

        self.expected = expected
        self.found = found


class TopologyError(ScucError):
    """The reduced network susceptance matrix cannot be inverted."""


class ContingencySingularityError(TopologyError):
    """The outage of a line cannot be represented by linear factors."""

    def __init__(self, message: str, line: Optional[str] = None) -> None:
        super().__init__(message)
        self.line = line


class ModelConstructionError(ScucError):
    pass


class SolverStatusError(ScucError):
    """The solver finished without producing a usable solution."""

    def __init__(self, message: str, status: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
