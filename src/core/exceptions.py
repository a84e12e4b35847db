"""
Custom exception hierarchy for the research workflow.

All application exceptions inherit from ResearchWorkflowError.
"""


class ResearchWorkflowError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ResearchWorkflowError):
    """Invalid or missing configuration."""

    pass


# =============================================================================
# Form Errors
# =============================================================================


class SchemaIntegrityError(ResearchWorkflowError):
    """Form schema is structurally broken (dependency cycle, oversized tree)."""

    def __init__(self, message: str, field_ids: tuple = ()):
        self.field_ids = tuple(field_ids)
        super().__init__(message)


class FormPayloadError(ResearchWorkflowError):
    """A generate_form payload could not be turned into a form schema."""

    pass


# =============================================================================
# Research Errors
# =============================================================================


class ResearchResultParseError(ResearchWorkflowError):
    """Raw research output held no usable structured result."""

    pass


# =============================================================================
# Session / State Errors
# =============================================================================


class SessionError(ResearchWorkflowError):
    """Session-related error."""

    pass


class SessionNotFoundError(SessionError):
    """Session does not exist."""

    pass


class InvalidTransitionError(ResearchWorkflowError):
    """Requested (state, trigger) pair is not in the transition table."""

    def __init__(self, message: str, from_state: str = "", trigger: str = ""):
        self.from_state = from_state
        self.trigger = trigger
        super().__init__(message)


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(ResearchWorkflowError):
    """Persisted state could not be read or written."""

    pass
