"""
Workflow Errors Module

Error taxonomy for the workflow engine. Every error is a ValueError so callers
that already guard domain calls with ``except ValueError`` keep working, and
each carries a stable error code the calling layer can map to a status code.
"""

from typing import Any, Dict, Optional


class WorkflowError(ValueError):
    """Base class for all workflow engine errors"""

    error_code: str = "WORKFLOW_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a response-friendly dictionary"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


class NotFoundError(WorkflowError):
    """Unknown workflow, instance, or transition id"""
    error_code = "NOT_FOUND"


class ValidationError(WorkflowError):
    """Malformed definition or missing required input"""
    error_code = "VALIDATION_ERROR"


class InvalidTransitionError(WorkflowError):
    """Requested transition is not legal from the current state"""
    error_code = "INVALID_TRANSITION"


class ActionDispatchError(WorkflowError):
    """
    A side-effect handler failed.

    Never raised out of a transition; it is logged and published on the
    event channel so the state change still stands.
    """
    error_code = "ACTION_DISPATCH_ERROR"

    def __init__(self, message: str, action_id: str = "", action_type: str = "",
                 instance_id: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.action_id = action_id
        self.action_type = action_type
        self.instance_id = instance_id
        self.details.setdefault("action_id", action_id)
        self.details.setdefault("action_type", action_type)
        self.details.setdefault("instance_id", instance_id)
