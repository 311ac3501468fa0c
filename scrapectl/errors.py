class ScrapeCtlError(Exception):
    """Base class for errors raised by scrapectl."""


class ValidationError(ScrapeCtlError):
    """A job cannot be started (no enabled targets, or a job is already active)."""


class NotFoundError(ScrapeCtlError):
    pass


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidStateError(ScrapeCtlError):
    """The job's current status does not allow the requested transition."""


class StaleJobError(InvalidStateError):
    """A compare-and-swap update found a different status or run than expected."""

    def __init__(self, job_id: str, expected, actual: str, message: str = None):
        super().__init__(message or f"Job {job_id} is {actual}, expected {expected}")
        self.job_id = job_id
        self.expected = expected
        self.actual = actual


class TargetAutomationError(ScrapeCtlError):
    """Navigation, scroll or extraction failure for a single target."""


class TargetTimeoutError(TargetAutomationError):
    pass


class ExecutorFatalError(ScrapeCtlError):
    """An error escaped per-target handling; the whole job is failed."""
