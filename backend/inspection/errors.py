"""Error types for the inspection wizard."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Kinds of failure the wizard distinguishes."""

    # Transient I/O (always recoverable locally)
    OCR_FAILED = "OCR_FAILED"
    REMOTE_EXTRACTION_FAILED = "REMOTE_EXTRACTION_FAILED"
    CLASSIFICATION_FAILED = "CLASSIFICATION_FAILED"
    DAMAGE_ANALYSIS_FAILED = "DAMAGE_ANALYSIS_FAILED"
    GEOLOCATION_FAILED = "GEOLOCATION_FAILED"

    # Validation
    CAPTURE_MISMATCH = "CAPTURE_MISMATCH"
    STEP_BLOCKED = "STEP_BLOCKED"
    INVALID_INPUT = "INVALID_INPUT"
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"

    # Final submission
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    NOTHING_TO_RETRY = "NOTHING_TO_RETRY"

    # Draft snapshot
    SNAPSHOT_CORRUPT = "SNAPSHOT_CORRUPT"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass
class ErrorContext:
    """
    Context information for a wizard error.

    Attributes:
        error_type: Type of error from ErrorType enum
        message: Human-readable error message
        recoverable: Whether the user can recover (retry, manual entry)
        fallback_action: Optional description of the fallback offered to the user
        details: Optional additional error details
        original_exception: Optional exception that caused this error
    """

    error_type: ErrorType
    message: str
    recoverable: bool
    fallback_action: str | None = None
    details: dict[str, Any] | None = None
    original_exception: Exception | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "fallback_action": self.fallback_action,
            "details": self.details or {},
            "original_exception": str(self.original_exception) if self.original_exception else None,
        }


class InspectionError(Exception):
    """Base exception for errors surfaced to the wizard's caller."""

    def __init__(self, context: ErrorContext):
        self.context = context
        super().__init__(context.message)

    def __str__(self) -> str:
        base = f"{self.context.error_type.value}: {self.context.message}"
        if self.context.fallback_action:
            base += f" (Fallback: {self.context.fallback_action})"
        return base

    def to_dict(self) -> dict[str, Any]:
        return self.context.to_dict()


class SubmissionError(InspectionError):
    """The primary inspection record could not be written. The payload is kept for retry."""

    def __init__(self, message: str, reference_id: str | None = None, original_exception: Exception | None = None):
        super().__init__(ErrorContext(
            error_type=ErrorType.PERSISTENCE_FAILED,
            message=message,
            recoverable=True,
            fallback_action="Retry the submission; the assembled inspection is kept",
            details={"reference_id": reference_id} if reference_id else None,
            original_exception=original_exception,
        ))
        self.reference_id = reference_id


class StepBlockedError(InspectionError):
    """Forward navigation refused because the current step's gate does not hold."""

    def __init__(self, step: int, missing: list[str]):
        super().__init__(ErrorContext(
            error_type=ErrorType.STEP_BLOCKED,
            message=f"Step {step} is not complete: {'; '.join(missing) or 'requirements not met'}",
            recoverable=True,
            details={"step": step, "missing": list(missing)},
        ))
        self.step = step
        self.missing = list(missing)


class EntityNotFoundError(InspectionError):
    """An operation referenced a photo, person or vehicle that does not exist."""

    def __init__(self, entity: str, identifier: str | None = None):
        suffix = f" '{identifier}'" if identifier else ""
        super().__init__(ErrorContext(
            error_type=ErrorType.ENTITY_NOT_FOUND,
            message=f"{entity}{suffix} not found",
            recoverable=True,
        ))


def error_context_for(
    error_type: ErrorType,
    exc: Exception,
    fallback_action: str | None = None,
) -> ErrorContext:
    """Build a recoverable context for a failure that is converted into a neutral result."""
    return ErrorContext(
        error_type=error_type,
        message=str(exc) or exc.__class__.__name__,
        recoverable=True,
        fallback_action=fallback_action,
        original_exception=exc,
    )
