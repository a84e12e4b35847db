"""Domain models package."""

from .form_schema import (
    ConditionGroup,
    ConditionOperator,
    FieldCondition,
    FieldOption,
    FieldType,
    FieldValue,
    FormData,
    FormField,
    FormGroup,
    FormSchema,
    LogicalOperator,
    PrefilledValue,
    ValidationRule,
    ValidationRuleType,
)
from .research import ResearchResult, ResearchSource
from .app_state import (
    AppState,
    ChatMessage,
    ChatRole,
    ChatSession,
    ErrorState,
    PersistedAppState,
    TransitionLog,
    TransitionTrigger,
)

__all__ = [
    "ConditionGroup",
    "ConditionOperator",
    "FieldCondition",
    "FieldOption",
    "FieldType",
    "FieldValue",
    "FormData",
    "FormField",
    "FormGroup",
    "FormSchema",
    "LogicalOperator",
    "PrefilledValue",
    "ValidationRule",
    "ValidationRuleType",
    "ResearchResult",
    "ResearchSource",
    "AppState",
    "ChatMessage",
    "ChatRole",
    "ChatSession",
    "ErrorState",
    "PersistedAppState",
    "TransitionLog",
    "TransitionTrigger",
]
