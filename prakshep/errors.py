# -*- coding: utf-8 -*-

"""

Exception types raised by prakshep.

Every error derives from PrakshepError and from the closest builtin, so callers
may catch either `PrakshepError` or e.g. `KeyError` for lookup failures.

"""

from __future__ import annotations

from typing import Iterable


class PrakshepError(Exception):
    """
    Base class for all errors raised by this package.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        # KeyError subclasses would otherwise quote the message
        return self.message


class ConfigurationError(PrakshepError, ValueError):
    """Over-specified or contradictory parameters (resolution modes, geometry, masks)."""


class UnknownField(PrakshepError, KeyError):
    """A field name that is neither a column of the table nor a known derived field."""

    def __init__(self, name: str, available: Iterable[str] = ()):
        available = sorted(available)
        message = f"Unknown field '{name}'"
        if available:
            message += f" (available columns: {', '.join(available)})"
        super().__init__(message)
        self.name = name


class MissingPrerequisite(PrakshepError, KeyError):
    """A derived field needs base columns the table does not carry."""

    def __init__(self, name: str, missing: Iterable[str]):
        self.name = name
        self.missing = tuple(missing)
        super().__init__(
            f"Derived field '{name}' requires missing column(s): {', '.join(self.missing)}"
        )


class UnknownUnitError(PrakshepError, KeyError):
    """A unit token that is not registered in the Scale table."""

    def __init__(self, unit: str):
        self.unit = unit
        super().__init__(f"Unknown unit '{unit}'")


class UnitResolutionError(PrakshepError, ValueError):
    """A center, range or pixel-size unit that cannot be resolved to a length."""


class DegenerateWeightError(PrakshepError, ValueError):
    """Weights summing to exactly zero for a requested statistic."""
