"""
Pipeline Errors
===============

Exception hierarchy shared by every stage.

- TransientError: network/timeout failures; retried with backoff, then dead-lettered
- ContentError: unparseable evidence; recorded as a failed run, not retried
- InvariantViolation: rejected at creation/transition time, never persisted
- TransitionConflict: a compare-and-swap status update lost the race

Version: 0.1.0
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    retryable = False

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class TransientError(PipelineError):
    """External failure that may succeed on a later attempt."""

    retryable = True


class FetchError(TransientError):
    """Fetching a source failed."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, url=url, status_code=status_code)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class CircuitOpenError(PipelineError):
    """The circuit for a source or domain is open; the check is skipped."""

    def __init__(self, message: str, domain: str | None = None, retry_after: float = 0.0) -> None:
        super().__init__(message, domain=domain, retry_after=retry_after)
        self.domain = domain
        self.retry_after = retry_after


class ContentError(PipelineError):
    """Evidence could not be turned into facts."""


class InvariantViolation(PipelineError):
    """A write would break a data invariant."""


class QuoteIntegrityError(InvariantViolation):
    """An extracted quote is not a literal substring of its evidence."""


class ImmutableRecordError(InvariantViolation):
    """Attempt to modify an append-only record."""


class AutoApprovalForbiddenError(InvariantViolation):
    """The automatic path tried to approve a rule whose tier requires a human."""


class TransitionConflict(PipelineError):
    """A conditional status update matched no row."""

    def __init__(self, entity: str, entity_id: str, expected: object, target: object) -> None:
        super().__init__(
            f"{entity} {entity_id} is no longer {expected}; cannot move to {target}",
            entity=entity,
            entity_id=entity_id,
            expected=str(expected),
            target=str(target),
        )
        self.entity_id = entity_id


class NotFoundError(PipelineError):
    """Referenced record does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


def retryable(exc: BaseException) -> bool:
    """
    Decide whether the queue should retry a failed job.

    Pipeline errors carry their own answer; anything unexpected
    (timeouts, driver errors, bugs) is retried and eventually dead-lettered.
    """
    if isinstance(exc, PipelineError):
        return exc.retryable
    return True
