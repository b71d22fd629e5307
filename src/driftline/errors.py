"""Error taxonomy for the drift routing pipeline.

Every error carries a ``public_message`` that is safe to show to an end
user. Validation and not-found errors explain what was wrong; failures of
external collaborators only say the service is temporarily unavailable.
"""

from typing import Any

UNAVAILABLE_MESSAGE = "Routing service temporarily unavailable"


class DriftError(Exception):
    """Base class for all routing errors."""

    @property
    def public_message(self) -> str:
        """Message safe to show to the caller."""
        return UNAVAILABLE_MESSAGE


class InputValidationError(DriftError):
    """A required input field is missing or invalid."""

    @property
    def public_message(self) -> str:
        return str(self)


class NotFoundError(DriftError):
    """A referenced conversation or branch does not exist."""

    @property
    def public_message(self) -> str:
        return str(self)


class ExternalCallError(DriftError):
    """The classifier, embedder or store failed."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class MalformedResponseError(DriftError):
    """The classifier returned output that does not match the contract."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class PipelineTimeoutError(DriftError):
    """The pipeline exceeded its overall time budget."""


class StageError(DriftError):
    """A pipeline stage failed.

    Wraps the original exception together with the stage name and the
    reason codes recorded before the failure.
    """

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        reason_codes: tuple[str, ...] = (),
    ) -> None:
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause
        self.reason_codes = reason_codes

    @property
    def public_message(self) -> str:
        if isinstance(self.cause, DriftError):
            return self.cause.public_message
        return UNAVAILABLE_MESSAGE

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs."""
        return {
            "stage": self.stage,
            "error_type": type(self.cause).__name__,
            "error": str(self.cause),
            "reason_codes": list(self.reason_codes),
        }
