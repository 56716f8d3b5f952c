from typing import Optional


class PhiloError(Exception):
    """Base error carrying the HTTP status the API layer should answer with."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class InvalidInput(PhiloError):
    status_code = 400


class UnknownProvider(PhiloError):
    status_code = 400


class MisconfiguredProvider(PhiloError):
    status_code = 500


class RunFailed(PhiloError):
    status_code = 502

    def __init__(self, message: str, status: str = "failed", run_id: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.run_id = run_id


class RunTimeout(PhiloError):
    status_code = 504

    def __init__(self, message: str, run_id: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.run_id = run_id
        self.attempts = attempts


class BackendError(PhiloError):
    """Transport, auth or rate-limit failure from a remote call."""


class SynthesisError(PhiloError):
    status_code = 502
