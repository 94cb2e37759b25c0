"""
Workflow engine exception definitions
"""
from typing import Optional


class WorkflowEngineError(Exception):
    """Base exception of the workflow engine"""
    pass


class ValidationError(WorkflowEngineError):
    """Malformed template graph, duplicate step order, foreign step reference"""

    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or []
        super().__init__(message)


class TemplateParseError(ValidationError):
    """Template definition file could not be parsed"""
    pass


class AuthorizationError(WorkflowEngineError):
    """Actor role does not match the role required by the current step"""

    def __init__(self, actor_id: str, actor_role: str, step_id: str, required_role: str):
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.step_id = step_id
        self.required_role = required_role
        super().__init__(
            f"Actor '{actor_id}' with role '{actor_role}' has no permission to act on "
            f"step '{step_id}' (requires '{required_role}')"
        )


class InvalidActionError(WorkflowEngineError):
    """Action is not allowed at the current step or cannot be routed"""

    def __init__(self, action: str, step_id: Optional[str] = None, message: str = None):
        self.action = action
        self.step_id = step_id
        msg = f"Action '{action}' is not allowed"
        if step_id:
            msg += f" at step '{step_id}'"
        if message:
            msg += f": {message}"
        super().__init__(msg)


class NotFoundError(WorkflowEngineError):
    """Unknown template, step or instance"""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ConcurrencyConflict(WorkflowEngineError):
    """Instance version changed between read and write"""

    def __init__(self, instance_id: str, expected_version: int, actual_version: Optional[int] = None):
        self.instance_id = instance_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"Instance '{instance_id}' was modified concurrently (expected version {expected_version}"
        if actual_version is not None:
            msg += f", found {actual_version}"
        super().__init__(msg + ")")
