from __future__ import annotations

from typing import Any, Dict, Optional


class TrackerError(Exception):
    """Base class for every error the encounter core raises."""


class ValidationError(TrackerError):
    """A malformed or disallowed intent. The snapshot is left unchanged."""

    def __init__(
        self, code: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.meta = meta or {}


class PersistenceError(TrackerError):
    """The store rejected a write or could not be reached.

    The mutation that triggered the save has been rolled back. Retrying is up to
    the caller.
    """

    retryable = True

    def __init__(self, message: str, encounter_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.encounter_id = encounter_id


class RollCollaboratorError(TrackerError):
    """The dice collaborator failed. Only the roll-dependent step is abandoned."""

    def __init__(self, message: str, notation: Optional[str] = None) -> None:
        super().__init__(message)
        self.notation = notation


class EncounterNotFound(PersistenceError):
    retryable = False
