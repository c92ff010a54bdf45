from enum import Enum


class ErrorCode(Enum):
    """Error kinds surfaced by the centerline tracer"""
    INVALID_INPUT = "Invalid input"
    INVALID_PARAMETERS = "Invalid parameters"
    NO_PATH_FOUND = "No path found"
    INTERNAL_ERROR = "Internal error"


class CenterlineError(Exception):
    """Base class for all tracing and mask generation failures

    Args:
        message: Human readable description of the failure
    """
    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{self.code.value}: {self.message}"


class InvalidInputError(CenterlineError):
    """Missing, empty or malformed input volume / centerline"""
    code = ErrorCode.INVALID_INPUT


class InvalidParametersError(CenterlineError, ValueError):
    """Seed points out of bounds or configuration values out of range"""
    code = ErrorCode.INVALID_PARAMETERS


class NoPathFoundError(CenterlineError):
    """End voxel unreachable from the start voxel under the cost metric"""
    code = ErrorCode.NO_PATH_FOUND


class SearchLimitExceededError(NoPathFoundError):
    """Path search settled more voxels than the configured cap allows"""

    def __init__(self, message: str, iterations: int):
        super().__init__(message)
        self.iterations = iterations


class InternalError(CenterlineError):
    """Unexpected numerical failure (e.g. NaN propagation)"""
    code = ErrorCode.INTERNAL_ERROR
