"""
Domain errors raised by the stage engine.

Every error is deterministic for a given database state, so none of them are
retried. Each carries the HTTP status the API surfaces it with and any extra
fields the caller needs to act on it (the missing preconditions, the offending
field, or the conflicting stage for a confirm-overwrite flow).
"""

from typing import Any, Dict, List, Optional


class TournamentEngineError(Exception):
    """Base class for stage engine errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": type(self).__name__}


class NotFound(TournamentEngineError):
    status_code = 404

    def __init__(self, resource: str, identifier: Any = None):
        label = f"{resource} {identifier}" if identifier is not None else resource
        super().__init__(f"{label} not found")
        self.resource = resource

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["resource"] = self.resource
        return payload


class InvalidInput(TournamentEngineError):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["field"] = self.field
        return payload


class PrereqNotMet(TournamentEngineError):
    status_code = 409

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["missing"] = self.missing
        return payload


class AlreadyExists(TournamentEngineError):
    status_code = 409

    def __init__(self, message: str, existing: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.existing = dict(existing or {})

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["existing"] = self.existing
        return payload
