"""Error types raised by the amortisation form pipeline."""

from __future__ import annotations

from typing import Optional

from .data_models import Param


class AmortiseError(Exception):
    """Base class for every error this package raises on purpose."""


class ValidationError(AmortiseError, ValueError):
    """A control's raw value cannot be coerced to its parameter's type.

    ``param`` names the offending parameter; it is ``None`` only when the
    control id itself is unknown.
    """

    def __init__(self, param: Optional[Param], message: str) -> None:
        super().__init__(f"{param.value}: {message}" if param is not None else message)
        self.param = param
        self.message = message


class EngineError(AmortiseError):
    """The external engine rejected a request or failed to initialise.

    ``detail`` carries the formatted diagnostic (typically a traceback) shown
    under the message in the error banner.
    """

    def __init__(self, message: str, detail: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class PersistenceError(AmortiseError):
    """The key/value store backing the persisted snapshot is unavailable."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key
