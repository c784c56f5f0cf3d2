"""
Sequencer exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. The rollover pipeline uses
the same types to decide how a failed (org, role) tick or staff
reconciliation is recorded in the run ledger.

Usage:
    from sequencer.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Location", resource_id=42)
    raise ValidationError("Exactly three picks are required", details={"action_ids": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Staff", "Location").
        resource_id: The key that was looked up. Included in logs and messages.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique key.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Rollover taxonomy ────────────────────────────────────────────────────────


class ConfigurationError(Exception):
    """Operator-fixable setup problem (candidate pool, site calendar).

    Aborts the single (org, role) tick it occurs in and is recorded in the
    run ledger as a failure; never aborts the whole batch.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InsufficientCandidatesError(ConfigurationError):
    """Fewer eligible pro-moves than a week needs for a role."""

    def __init__(self, role_id: int, eligible: int, required: int = 3) -> None:
        self.role_id = role_id
        self.eligible = eligible
        self.required = required
        super().__init__(
            f"Role {role_id} has {eligible} eligible pro-moves, {required} required",
            details={"role_id": role_id, "eligible": eligible, "required": required},
        )


class InvalidSiteCalendarError(ConfigurationError):
    """Site time zone, program start date or cycle length is unusable."""


class TransientError(Exception):
    """Storage or ranking unavailability.

    Not retried in-process: the pipeline is idempotent, so the next
    scheduled tick picks the work up again.
    """


class TickTimeoutError(TransientError):
    """The ranking calls of one (org, role) tick exceeded their deadline."""

    def __init__(self, org_id: int, role_id: int, timeout_seconds: float) -> None:
        self.org_id = org_id
        self.role_id = role_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Ranking for org={org_id} role={role_id} exceeded {timeout_seconds}s deadline"
        )
