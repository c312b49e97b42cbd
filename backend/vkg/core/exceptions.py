"""
Custom Exception Hierarchy
Pipeline faults with error codes and consistent messaging

Generation, validation and execution faults are recoverable inside the retry
bound; answer faults and pipeline failures are terminal; graph build faults
are always swallowed by the caller.
"""

import uuid
from typing import Any, Dict, Optional


class BaseVKGException(Exception):
    """Base exception class for pipeline errors"""

    error_code = "VKG_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON responses and logs"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
                "correlation_id": self.correlation_id,
            }
        }


class GenerationFault(BaseVKGException):
    """Oracle unreachable, timed out, or produced no usable SQL"""

    error_code = "GENERATION_ERROR"


class ValidationFault(BaseVKGException):
    """Generated SQL references unmapped tables or forbidden operations"""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["errors"] = list(errors or [])
        super().__init__(message, details=details, **kwargs)
        self.errors = details["errors"]


class ExecutionFault(BaseVKGException):
    """Federated engine rejected or failed the SQL; message kept verbatim"""

    error_code = "EXECUTION_ERROR"


class GraphBuildFault(BaseVKGException):
    """Context graph could not be built (non-fatal)"""

    error_code = "GRAPH_BUILD_ERROR"


class AnswerFault(BaseVKGException):
    """Oracle failed during final answer synthesis (fatal, not retried)"""

    error_code = "ANSWER_ERROR"


class PipelineFailure(BaseVKGException):
    """Retry bound exhausted; carries the last underlying message"""

    error_code = "PIPELINE_FAILURE"

    def __init__(self, message: str, attempts: int = 0, last_error: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details.update({"attempts": attempts, "last_error": last_error})
        super().__init__(message, details=details, **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class ConfigurationException(BaseVKGException):
    """Exception for configuration errors"""

    error_code = "CONFIGURATION_ERROR"

