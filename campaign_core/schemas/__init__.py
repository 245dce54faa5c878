"""Pydantic schemas for compiled campaigns.

This package contains the immutable models a validated campaign document is
compiled into, plus the JSON Schema documents are checked against.
"""

from campaign_core.schemas.campaign import (
    PromptType,
    DisplayType,
    NoResponse,
    RunningState,
    PrivacyState,
    ConditionValuePair,
    Condition,
    PromptProperty,
    SurveyItem,
    Message,
    Prompt,
    RepeatableSet,
    Survey,
    Configuration,
)

__all__ = [
    "PromptType",
    "DisplayType",
    "NoResponse",
    "RunningState",
    "PrivacyState",
    "ConditionValuePair",
    "Condition",
    "PromptProperty",
    "SurveyItem",
    "Message",
    "Prompt",
    "RepeatableSet",
    "Survey",
    "Configuration",
]
