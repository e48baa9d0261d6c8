# blueprints/core/errors.py
from __future__ import annotations
from typing import Any


class EngineError(Exception):
    """Базовая ошибка движка расписания: код + HTTP-статус + детали."""

    code = "ENGINE_ERROR"
    status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details or None}


# ---------- Validation ----------
class ValidationFailed(EngineError):
    code = "VALIDATION_ERROR"
    status = 400


class InvalidRange(ValidationFailed):
    code = "INVALID_RANGE"


class RangeTooLarge(ValidationFailed):
    code = "RANGE_TOO_LARGE"


class EmptyPattern(ValidationFailed):
    code = "EMPTY_PATTERN"


# ---------- NotFound ----------
class EntityNotFound(EngineError):
    code = "NOT_FOUND"
    status = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} with ID {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


# ---------- Conflict ----------
class ConflictDetected(EngineError):
    code = "CONFLICT"
    status = 409

    def __init__(self, conflict):
        super().__init__(conflict.reason, **conflict.to_dict())
        self.conflict = conflict

    @property
    def kind(self) -> str:
        return self.conflict.kind


class StaleVersion(EngineError):
    code = "STALE_VERSION"
    status = 409

    def __init__(self, entity: str, entity_id: int, expected: int, current: int):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently (expected version {expected}, current {current})",
            entity=entity, entity_id=entity_id, expected_version=expected, current_version=current,
        )
        self.expected = expected
        self.current = current


# ---------- Infrastructure ----------
class TransactionAborted(EngineError):
    code = "TRANSACTION_ABORTED"
    status = 503


class InvariantViolation(EngineError):
    code = "INVARIANT_VIOLATION"
    status = 422


def failure_kind(err: EngineError) -> str:
    """Тег для поэлементных отчётов bulk-операций."""
    if isinstance(err, ConflictDetected):
        return err.kind
    if isinstance(err, TransactionAborted):
        return "infrastructure"
    return err.code.lower()
