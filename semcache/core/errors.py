#!/usr/bin/env python3
"""
Error types for the pre-aggregation subsystem.

Every caller-visible failure carries a StandardErrorCode so front ends can
map it to a response (user errors vs internal errors).
"""

from enum import Enum


class ErrorType(Enum):
    USER_ERROR = 'USER_ERROR'
    INTERNAL_ERROR = 'INTERNAL_ERROR'


class StandardErrorCode(Enum):
    """(code, type) pairs for errors raised by the gateway."""

    GENERIC_USER_ERROR = (1, ErrorType.USER_ERROR)
    NOT_FOUND = (2, ErrorType.USER_ERROR)
    INVALID_CONFIGURATION = (3, ErrorType.USER_ERROR)
    GENERIC_INTERNAL_ERROR = (65536, ErrorType.INTERNAL_ERROR)

    def __init__(self, code: int, error_type: ErrorType):
        self.code = code
        self.error_type = error_type


class PreAggregationError(Exception):
    """Raised by the manager for caller-visible failures."""

    def __init__(self, error_code: StandardErrorCode, message: str):
        super().__init__(message)
        self.error_code = error_code

    @property
    def is_user_error(self) -> bool:
        return self.error_code.error_type is ErrorType.USER_ERROR

    def __str__(self):
        return f"{self.error_code.name}: {self.args[0]}"


class ManifestError(PreAggregationError):
    """Manifest document could not be parsed or is inconsistent."""

    def __init__(self, message: str):
        super().__init__(StandardErrorCode.GENERIC_USER_ERROR, message)


class ConfigurationError(PreAggregationError):
    def __init__(self, message: str):
        super().__init__(StandardErrorCode.INVALID_CONFIGURATION, message)


class UnsupportedValueError(ValueError):
    """A cache-engine value could not be coerced to its wire type."""

    def __init__(self, value, cause: Exception = None):
        super().__init__(f"Unsupported value: {value!r}")
        self.value = value
        self.__cause__ = cause
