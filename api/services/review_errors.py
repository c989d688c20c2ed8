# api/services/review_errors.py
# ================================
# Review Engine - Error taxonomy
# ================================
# Every failure the review engine surfaces to a caller is one of these.
# Routers translate them to HTTPException via `to_http_detail()`.

from typing import Any, Dict, Optional


class ReviewError(Exception):
    """Base class for errors raised by the review engine."""

    status_code = 500
    code = "review_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_http_detail(self) -> Dict[str, Any]:
        detail = {"ok": False, "error": self.message, "code": self.code}
        detail.update(self.extra)
        return detail


class NotFound(ReviewError):
    """A referenced ingestion, invoice or line does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, identifier: Any):
        super().__init__(f"{entity} not found", entity=entity, id=identifier)
        self.entity = entity
        self.identifier = identifier


class ValidationError(ReviewError):
    """Malformed or cross-referencing input."""

    status_code = 400
    code = "validation_error"


class PreconditionFailed(ReviewError):
    """A business-rule gate is not satisfied.

    `reason` tells the caller which gate blocked: "unmatched_lines" carries
    the offending count in `counts`, "no_draft" means the draft payload is
    missing.
    """

    status_code = 409
    code = "precondition_failed"

    UNMATCHED_LINES = "unmatched_lines"
    NO_DRAFT = "no_draft"

    def __init__(self, message: str, reason: str, counts: Optional[Dict[str, int]] = None):
        extra: Dict[str, Any] = {"reason": reason}
        if counts is not None:
            extra["counts"] = counts
        super().__init__(message, **extra)
        self.reason = reason
        self.counts = counts or {}

    @classmethod
    def unmatched_lines(cls, unmatched: int) -> "PreconditionFailed":
        return cls("unmatched lines remain", cls.UNMATCHED_LINES, {"unmatched": unmatched})

    @classmethod
    def no_draft(cls) -> "PreconditionFailed":
        return cls("no draft payload", cls.NO_DRAFT)


class UpstreamFailure(ReviewError):
    """The data store or the external pipeline call failed."""

    status_code = 502
    code = "upstream_failure"


class ConfigurationError(ReviewError):
    """A required setting (e.g. the pipeline base URL) is missing."""

    status_code = 503
    code = "configuration_error"
