import typing

from layerkit.exceptions import base as _base_exceptions


class LayerkitSystemException(_base_exceptions.LayerkitRecoverableException):
    _ERROR_CODE = "SYSTEM:Unknown"


class ExternalProcessError(LayerkitSystemException):
    """
    An external command (docker build, save, load, tag...) exited with a non-zero status. The output of the tool
    itself is the diagnostic, it is not parsed here.
    """

    _ERROR_CODE = "SYSTEM:ExternalProcessError"

    def __init__(self, step: str, command: typing.Sequence[str], returncode: int):
        self.step = step
        self.command = list(command)
        self.returncode = returncode
        super().__init__(
            f"Failed to {step} docker image (exit code {returncode}), see the docker {step} log in the task output"
        )


class NetworkError(LayerkitSystemException):
    _ERROR_CODE = "SYSTEM:NetworkError"


class RetriesExhaustedError(LayerkitSystemException):
    _ERROR_CODE = "SYSTEM:RetriesExhausted"

    def __init__(self, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Operation failed after {attempts} attempt(s): {last_error}")
