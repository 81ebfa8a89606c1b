"""Error taxonomy for crawl job orchestration.

Only ``JobNotFoundError``, ``JobValidationError``, ``JobConflictError`` and
``ExecutionSubmitError`` ever reach a caller. The rest are raised and
handled inside the orchestrator.
"""


class OrchestratorError(Exception):
    """Base class for orchestration failures."""


class JobNotFoundError(OrchestratorError):
    def __init__(self, job_id):
        super().__init__(f"Crawl job not found: {job_id}")
        self.job_id = job_id


class JobValidationError(OrchestratorError):
    pass


class JobConflictError(OrchestratorError):
    pass


class ExecutionSubmitError(OrchestratorError):
    def __init__(self, message: str, returncode: int | None = None, output: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class ExecutionKillError(OrchestratorError):
    pass


class MetricsFetchError(OrchestratorError):
    pass


class MonitorAlreadyActiveError(OrchestratorError):
    pass
