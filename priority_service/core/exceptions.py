# priority_service/core/exceptions.py
from typing import Any, Dict, Optional


class PrioritizationException(Exception):
    """Base exception for the prioritization engine"""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InsufficientDataException(PrioritizationException):
    """Raised when there are too few interactions for a forced training"""

    status_code = 400

    def __init__(self, required: int, available: int, operation: str):
        super().__init__(
            f"Insufficient data for {operation}: required {required}, available {available}",
            {
                "required": required,
                "available": available,
                "operation": operation,
                "needs_more_data": True,
            }
        )


class TaskSourceException(PrioritizationException):
    """Raised when a task source cannot be read"""

    def __init__(self, source: str, reason: str):
        super().__init__(
            f"Task source '{source}' failed: {reason}",
            {"source": source, "reason": reason}
        )
        self.source = source


class PersistenceException(PrioritizationException):
    """Raised when a read or write against the engine's store fails"""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Persistence failure during {operation}: {reason}",
            {"operation": operation, "reason": reason}
        )


class ModelVersionConflict(PrioritizationException):
    """Raised when another training already produced the next model version"""

    status_code = 409

    def __init__(self, user_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Model version conflict for user '{user_id}': "
            f"expected v{expected_version}, found v{actual_version}",
            {
                "user_id": user_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            }
        )
