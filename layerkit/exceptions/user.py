from layerkit.exceptions.base import LayerkitException as _LayerkitException


class LayerkitUserException(_LayerkitException):
    _ERROR_CODE = "USER:Unknown"


class ConfigurationError(LayerkitUserException, ValueError):
    """
    The build is misconfigured: a missing working directory, a missing or empty staged layer directory, or an
    instruction list that the selected backend cannot compile. Never retried.
    """

    _ERROR_CODE = "USER:ConfigurationError"


class InvalidImageReferenceError(ConfigurationError):
    _ERROR_CODE = "USER:InvalidImageReference"

    def __init__(self, reference: str, reason: str = ""):
        self.reference = reference
        msg = f"'{reference}' is not a valid image reference"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ArchiveReadError(LayerkitUserException):
    """Raised when an image archive, its manifest or its config cannot be read."""

    _ERROR_CODE = "USER:ArchiveReadError"


class PermissionDetectionError(LayerkitUserException):
    _ERROR_CODE = "USER:PermissionDetectionError"

    def __init__(self, path):
        self.path = path
        super().__init__(f"Error while detecting permissions for {path}")
