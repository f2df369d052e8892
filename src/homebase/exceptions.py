"""Custom exceptions for Homebase.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Codec code never raises these for
malformed user content; they cover I/O failures at the vault boundary and
programming errors in arguments.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_ALREADY_EXISTS = 1002
    NOTE_ID_REQUIRED = 1003

    # Task errors (2xxx)
    TASK_ALREADY_CONVERTED = 2001
    TASK_NOT_A_CHECKBOX = 2002
    TASK_FIELD_INVALID = 2003

    # Folder and project errors (3xxx)
    FOLDER_NOT_FOUND = 3001
    FOLDER_ALREADY_EXISTS = 3002
    FOLDER_NOT_EMPTY = 3003
    PROJECT_NOT_FOUND = 3004

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_CREATE_FAILED = 4003
    STORAGE_MOVE_FAILED = 4004
    STORAGE_LIST_FAILED = 4005
    STORAGE_DELETE_FAILED = 4006

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    PATH_TRAVERSAL_DETECTED = 7002
    INVALID_TARGET_DIR = 7003


class HomebaseError(Exception):
    """Base exception for all Homebase errors.

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


class NoteNotFoundError(HomebaseError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class TaskConversionError(HomebaseError):
    """Raised when a line cannot be converted into a task."""

    def __init__(
        self,
        message: str,
        line: Optional[str] = None,
        code: ErrorCode = ErrorCode.TASK_NOT_A_CHECKBOX
    ):
        details = {}
        if line is not None:
            details["line"] = line[:100]

        super().__init__(message, code=code, details=details)
        self.line = line


class StorageError(HomebaseError):
    """Raised for vault read/write failures."""

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
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class ConfigurationError(HomebaseError):
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


class ValidationError(HomebaseError):
    """Raised for invalid arguments (bad field names, unsafe paths)."""

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
