from __future__ import annotations
from typing import Optional


class MirrorError(Exception):
    """Base class for every error raised by metamirror."""


class TranslationError(MirrorError):
    """A location could not be translated to the target namespace."""


class MappingRequiredError(TranslationError):
    """Storage migration within one namespace needs a global location map entry."""


class ConnectionUnavailableError(MirrorError):
    """A live connection was needed but none could be borrowed."""


class ConfigurationError(MirrorError):
    pass


class InvalidPhaseTransition(MirrorError):
    def __init__(self, table: str, current, target):
        self.table = table
        self.current = current
        self.target = target
        super().__init__(f"{table}: illegal phase transition {current} -> {target}")


class PhaseFailedError(MirrorError):
    """Raised when a run phase cannot complete; carries the phase and error code."""

    def __init__(self, phase, code, message: Optional[str] = None):
        self.phase = phase
        self.code = code
        detail = message or code.desc
        super().__init__(f"{phase.value} failed [{code.name}]: {detail}")
