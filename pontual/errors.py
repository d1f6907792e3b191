class PontualError(Exception):
    """Base class for domain errors raised by storage and services."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PontualError):
    status_code = 404


class ConflictError(PontualError):
    status_code = 400


class TimerAlreadyRunningError(ConflictError):
    def __init__(self, task_id: int, message: str = ""):
        super().__init__(message or f"Timer already active for task {task_id}")
        self.task_id = task_id


class ActiveEntryError(ConflictError):
    pass


class ValidationError(PontualError):
    status_code = 400


class AuthError(PontualError):
    status_code = 401


class PermissionDeniedError(PontualError):
    status_code = 403
