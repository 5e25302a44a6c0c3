"""Custom exceptions for portprobe"""


class PortprobeError(Exception):
    """Base class for all portprobe errors"""

    pass


class ScanError(PortprobeError):
    """Exception raised for scan-related errors"""

    pass


class ValidationError(PortprobeError):
    """Exception raised for validation errors"""

    pass


class ConfigurationError(PortprobeError):
    """Exception raised for configuration errors"""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class InvalidTargetError(ScanError):
    """Exception raised when a target is invalid"""

    def __init__(self, target: str, message: str = None):
        if message is None:
            message = f"Invalid target: {target!r}"
        super().__init__(message)
        self.target = target
