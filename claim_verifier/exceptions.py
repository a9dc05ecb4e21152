"""
Custom exception hierarchy for claim verification.

Each exception carries a stable machine-readable code and the HTTP status
the API maps it to. The last three are side-effect failures: they are
raised by collaborators, caught by the state machine and only logged, so
a verified claim never fails because an audit row or email did not land.
"""

from __future__ import annotations


class ClaimVerificationError(Exception):
    """Base exception for all claim verification failures."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class Unauthorized(ClaimVerificationError):
    """Caller is not authenticated, or does not own the claim."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__("UNAUTHORIZED", message, details)


class Forbidden(ClaimVerificationError):
    """Caller is authenticated but lacks a reviewer role."""

    status_code = 403

    def __init__(self, message: str = "Forbidden", details: dict | None = None):
        super().__init__("FORBIDDEN", message, details)


class NotFound(ClaimVerificationError):
    status_code = 404

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("NOT_FOUND", message, details)


class InvalidInput(ClaimVerificationError):
    """Malformed request payload (bad polygon, unknown action, ...)."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("INVALID_INPUT", message, details)


class AlreadyVerified(ClaimVerificationError):
    """The claim already reached AI_VERIFIED or APPROVED."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("ALREADY_VERIFIED", message, details)


class InvalidTransition(ClaimVerificationError):
    """The requested status change is not in the transition table."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("INVALID_TRANSITION", message, details)


class ConflictDetected(ClaimVerificationError):
    """A verified or approved claim sits inside the pre-flight box."""

    status_code = 409

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("POTENTIAL_CONFLICT", message, details)


class VerificationInProgress(ClaimVerificationError):
    """Another caller holds the verification guard for this claim."""

    status_code = 409

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("VERIFICATION_IN_PROGRESS", message, details)


class PipelineFailure(ClaimVerificationError):
    """The agent pipeline could not produce a report."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PIPELINE_FAILED", message, details)


class PersistenceFailure(ClaimVerificationError):
    """The final conditional status write failed; the claim was rolled back."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PERSISTENCE_FAILED", message, details)


# ─── Side-effect failures (logged, never surfaced) ──────────────────


class AuditWriteFailure(ClaimVerificationError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__("AUDIT_WRITE_FAILED", message, details)


class CreditChargeFailure(ClaimVerificationError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__("CREDIT_CHARGE_FAILED", message, details)


class NotificationFailure(ClaimVerificationError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__("NOTIFICATION_FAILED", message, details)
