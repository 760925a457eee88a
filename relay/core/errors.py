from __future__ import annotations
from typing import Iterable, Optional


class RelayError(Exception):
    """Base class for everything the execution pipeline raises on purpose."""


class ParameterError(RelayError):
    def __init__(self, message: str, missing: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.missing = sorted(missing or [])


class TargetNotFoundError(RelayError):
    def __init__(self, name: str):
        super().__init__(f"I couldn't find '{name}' in your contacts.")
        self.name = name


class EffectError(RelayError):
    """The side effect itself could not be performed."""


class AuthError(RelayError):
    pass


class AuditError(RelayError):
    pass


class StoreError(RelayError):
    pass
