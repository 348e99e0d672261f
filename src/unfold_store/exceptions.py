"""Custom exceptions for the Unfold note store.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    SPACE_NOT_FOUND = 1001
    NODE_NOT_FOUND = 1002
    ATTACHMENT_NOT_FOUND = 1003

    # Payload errors (2xxx)
    DECODE_FAILED = 2001

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_CONNECTION_FAILED = 4004

    # Schema errors (5xxx)
    MIGRATION_FAILED = 5001
    UNKNOWN_SCHEMA_VERSION = 5002
    SCHEMA_REPAIR_FAILED = 5003
    SCHEMA_UNEXPECTED = 5004

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    TREE_CYCLE = 7002
    CROSS_SPACE_PARENT = 7003
    PROTECTED_SPACE = 7004


class UnfoldError(Exception):
    """Base exception for all store errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(UnfoldError):
    """Raised when no row matches the requested identifier."""

    _CODES = {
        "space": ErrorCode.SPACE_NOT_FOUND,
        "node": ErrorCode.NODE_NOT_FOUND,
        "attachment": ErrorCode.ATTACHMENT_NOT_FOUND,
    }

    def __init__(self, entity: str, identifier: str, message: Optional[str] = None):
        super().__init__(
            message or f"{entity.capitalize()} with ID '{identifier}' not found",
            code=self._CODES.get(entity, ErrorCode.VALIDATION_FAILED),
            details={"entity": entity, "id": identifier}
        )
        self.entity = entity
        self.identifier = identifier


class DecodeError(UnfoldError):
    """Raised when the transport encoding of a binary payload is malformed."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=ErrorCode.DECODE_FAILED, details=details)
        self.original_error = original_error


class StorageError(UnfoldError):
    """Raised for file system and database persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages for security
            details["path_hint"] = path.replace("\\", "/").split("/")[-1]
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class SchemaError(UnfoldError):
    """Raised when a migration fails or the live schema is not what we expect.

    Attributes:
        table: Table involved, if any
        version: Ledger version involved, if any
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        version: Optional[int] = None,
        code: ErrorCode = ErrorCode.MIGRATION_FAILED,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if table:
            details["table"] = table
        if version is not None:
            details["version"] = version
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.table = table
        self.version = version
        self.original_error = original_error


class ConfigurationError(UnfoldError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class ValidationError(UnfoldError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
