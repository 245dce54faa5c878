"""Response validation for submitted survey responses.

This module checks one batch of responses against a compiled survey: it walks
the survey's items in order, decides which ones should have been displayed,
checks each supplied value against its prompt's type and bounds, and returns
the normalized substantive responses. Any problem rejects the whole batch.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from campaign_core.errors import ResponseValidationError, UnexpectedResponseError
from campaign_core.schemas.campaign import (
    Configuration,
    Message,
    NoResponse,
    Prompt,
    PromptType,
    RepeatableSet,
    Survey,
    SurveyItem,
)
from campaign_core.logging_config import get_logger
from campaign_core.services.condition_evaluator import ConditionEvaluator
from campaign_core.services.prompt_type_validators import TIMESTAMP_FORMAT, parse_integer

logger = get_logger(__name__)


class LocationStatus(str, Enum):
    """Quality of the location attached to a survey response."""
    VALID = "valid"
    INACCURATE = "inaccurate"
    STALE = "stale"
    UNAVAILABLE = "unavailable"


class Location(BaseModel):
    """Where the respondent was when the survey was taken."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    provider: Optional[str] = None
    time: Optional[datetime] = None


class ResponseMetadata(BaseModel):
    """Context submitted alongside a batch of survey responses.

    Attributes:
        time: When the survey was completed
        timezone: Respondent's timezone name
        location_status: Quality of the attached location
        location: Required unless location_status is unavailable
        launch_context: Free-form details of how the survey was launched
    """
    model_config = ConfigDict(frozen=True)

    time: datetime
    timezone: str = Field(..., min_length=1)
    location_status: LocationStatus
    location: Optional[Location] = None
    launch_context: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_location(self):
        """A location is required unless it was unavailable."""
        if self.location_status != LocationStatus.UNAVAILABLE and self.location is None:
            raise ValueError(f"A location is required when location_status is '{self.location_status.value}'")
        if self.location_status == LocationStatus.UNAVAILABLE and self.location is not None:
            raise ValueError("A location must not be given when location_status is 'unavailable'")
        return self


@dataclass
class ValidationResult:
    """Result of checking one response value.

    Attributes:
        is_valid: Whether the value passed validation
        normalized_value: Cleaned/normalized value
        error_message: Error message if validation failed
    """
    is_valid: bool
    normalized_value: Any
    error_message: Optional[str]


def _valid(value: Any) -> ValidationResult:
    return ValidationResult(is_valid=True, normalized_value=value, error_message=None)


def _invalid(message: str) -> ValidationResult:
    return ValidationResult(is_valid=False, normalized_value=None, error_message=message)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return parse_integer(value.strip())
    return None


def _as_list(value: Any) -> Optional[List[Any]]:
    """Accept a list or a JSON array string."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        if isinstance(parsed, list):
            return parsed
    return None


class PromptResponseValidator:
    """Service for checking a single response value against its prompt."""

    @staticmethod
    def validate(
        prompt: Prompt,
        value: Any,
        media: Optional[Mapping[str, Any]] = None
    ) -> ValidationResult:
        """Validate a substantive response value for a prompt.

        Args:
            prompt: Compiled prompt
            value: Response value, never a NoResponse sentinel
            media: Uploaded media keyed by UUID, if any accompany the batch

        Returns:
            ValidationResult with the normalized value

        Example:
            >>> result = PromptResponseValidator.validate(number_prompt, "7")
            >>> result.normalized_value
            7
        """
        if prompt.prompt_type == PromptType.PHOTO:
            return PromptResponseValidator._validate_photo(prompt, value, media)

        handler = _HANDLERS.get(prompt.prompt_type)
        if handler is None:
            logger.error(f"No response validator for prompt type {prompt.prompt_type}")
            return _invalid(f"Unsupported prompt type: {prompt.prompt_type.value}")
        return handler(prompt, value)

    @staticmethod
    def _validate_number(prompt: Prompt, value: Any) -> ValidationResult:
        number = _as_int(value)
        if number is None:
            return _invalid(f"Expected a whole number, got {value!r}")

        minimum, maximum = prompt.bounds()
        if not minimum <= number <= maximum:
            return _invalid(f"{number} is outside [{minimum}, {maximum}]")
        return _valid(number)

    @staticmethod
    def _choice_key(prompt: Prompt, value: Any) -> Optional[int]:
        key = _as_int(value)
        if key is None or key not in prompt.choices():
            return None
        return key

    @staticmethod
    def _validate_single_choice(prompt: Prompt, value: Any) -> ValidationResult:
        key = PromptResponseValidator._choice_key(prompt, value)
        if key is None:
            return _invalid(f"{value!r} is not one of the choice keys")
        return _valid(key)

    @staticmethod
    def _validate_multi_choice(prompt: Prompt, value: Any) -> ValidationResult:
        values = _as_list(value)
        if values is None and isinstance(value, str):
            values = [part for part in value.split(",") if part.strip()]
        if not values:
            return _invalid(f"Expected a non-empty list of choice keys, got {value!r}")

        keys = set()
        for element in values:
            key = PromptResponseValidator._choice_key(prompt, element)
            if key is None:
                return _invalid(f"{element!r} is not one of the choice keys")
            keys.add(key)
        return _valid(sorted(keys))

    @staticmethod
    def _custom_choice(prompt: Prompt, value: Any) -> Union[int, str, None]:
        """Known key or label -> int key; any other label -> the label."""
        key = PromptResponseValidator._choice_key(prompt, value)
        if key is not None:
            return key
        if isinstance(value, str) and value.strip():
            label = value.strip()
            known = prompt.choice_key_for_label(label)
            return label if known is None else known
        return None

    @staticmethod
    def _validate_single_choice_custom(prompt: Prompt, value: Any) -> ValidationResult:
        choice = PromptResponseValidator._custom_choice(prompt, value)
        if choice is None:
            return _invalid(f"Expected a choice key or label, got {value!r}")
        return _valid(choice)

    @staticmethod
    def _validate_multi_choice_custom(prompt: Prompt, value: Any) -> ValidationResult:
        values = _as_list(value)
        if not values:
            return _invalid(f"Expected a non-empty list of choices, got {value!r}")

        choices: List[Union[int, str]] = []
        for element in values:
            choice = PromptResponseValidator._custom_choice(prompt, element)
            if choice is None:
                return _invalid(f"Expected a choice key or label, got {element!r}")
            if choice not in choices:
                choices.append(choice)
        return _valid(choices)

    @staticmethod
    def _validate_text(prompt: Prompt, value: Any) -> ValidationResult:
        if not isinstance(value, str):
            return _invalid(f"Expected text, got {value!r}")

        minimum, maximum = prompt.bounds()
        if len(value) < minimum:
            return _invalid(f"Text must be at least {minimum} characters")
        if len(value) > maximum:
            return _invalid(f"Text must be no more than {maximum} characters")
        return _valid(value)

    @staticmethod
    def _validate_photo(
        prompt: Prompt,
        value: Any,
        media: Optional[Mapping[str, Any]]
    ) -> ValidationResult:
        try:
            photo_id = str(uuid.UUID(str(value).strip()))
        except ValueError:
            return _invalid(f"Expected a photo UUID, got {value!r}")

        if media is not None:
            known = {str(key).lower() for key in media}
            if photo_id not in known:
                return _invalid(f"No media was uploaded for photo {photo_id}")
        return _valid(photo_id)

    @staticmethod
    def _validate_timestamp(prompt: Prompt, value: Any) -> ValidationResult:
        if isinstance(value, datetime):
            return _valid(value)
        if isinstance(value, str):
            try:
                return _valid(datetime.strptime(value.strip(), TIMESTAMP_FORMAT))
            except ValueError:
                pass
        return _invalid(f"Expected a yyyy-MM-ddTHH:mm:ss timestamp, got {value!r}")

    @staticmethod
    def _validate_remote_activity(prompt: Prompt, value: Any) -> ValidationResult:
        runs = _as_list(value)
        if runs is None:
            return _invalid(f"Expected a list of activity results, got {value!r}")

        for run in runs:
            if not isinstance(run, dict):
                return _invalid(f"Activity result {run!r} is not an object")
            score = run.get("score")
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                return _invalid(f"Activity result {run!r} has no numeric score")
        return _valid(runs)


_HANDLERS: Dict[PromptType, Callable[[Prompt, Any], ValidationResult]] = {
    PromptType.NUMBER: PromptResponseValidator._validate_number,
    PromptType.HOURS_BEFORE_NOW: PromptResponseValidator._validate_number,
    PromptType.SINGLE_CHOICE: PromptResponseValidator._validate_single_choice,
    PromptType.MULTI_CHOICE: PromptResponseValidator._validate_multi_choice,
    PromptType.SINGLE_CHOICE_CUSTOM: PromptResponseValidator._validate_single_choice_custom,
    PromptType.MULTI_CHOICE_CUSTOM: PromptResponseValidator._validate_multi_choice_custom,
    PromptType.TEXT: PromptResponseValidator._validate_text,
    PromptType.TIMESTAMP: PromptResponseValidator._validate_timestamp,
    PromptType.REMOTE_ACTIVITY: PromptResponseValidator._validate_remote_activity,
}


class ResponseValidationEngine:
    """Service for validating a batch of responses against a survey."""

    @staticmethod
    def validate(
        survey: Survey,
        metadata: Union[ResponseMetadata, Mapping[str, Any]],
        responses: Mapping[str, Any],
        media: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Validate survey responses.

        Items are checked in survey order. An item whose condition is false
        must have no response (or NOT_DISPLAYED); a displayed prompt with no
        response is SKIPPED if skippable and an error otherwise.

        Args:
            survey: Compiled survey the responses belong to
            metadata: Response metadata, as a model or a plain mapping
            responses: Item id -> response value
            media: Uploaded media keyed by UUID, if any

        Returns:
            Item id -> normalized value, without SKIPPED/NOT_DISPLAYED entries

        Raises:
            ResponseValidationError: If any response is invalid
            UnexpectedResponseError: If responses name items the survey lacks
        """
        ResponseValidationEngine._check_metadata(metadata)

        checked = ResponseValidationEngine._walk(survey.items.values(), responses, {}, media)

        logger.info(f"Validated {len(checked)} responses for survey {survey.id}")
        return {
            item_id: value for item_id, value in checked.items()
            if not isinstance(value, NoResponse)
        }

    @staticmethod
    def validate_for(
        configuration: Configuration,
        survey_id: str,
        metadata: Union[ResponseMetadata, Mapping[str, Any]],
        responses: Mapping[str, Any],
        media: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Look up a survey in a campaign and validate responses against it.

        Raises:
            ResponseValidationError: If the survey is unknown or a response is invalid
        """
        survey = configuration.get_survey(survey_id)
        if survey is None:
            raise ResponseValidationError(survey_id, f"Unknown survey in campaign {configuration.urn}")
        return ResponseValidationEngine.validate(survey, metadata, responses, media)

    @staticmethod
    def _check_metadata(metadata: Union[ResponseMetadata, Mapping[str, Any]]) -> ResponseMetadata:
        if isinstance(metadata, ResponseMetadata):
            return metadata
        try:
            return ResponseMetadata.model_validate(metadata)
        except ValidationError as e:
            logger.warning(f"Invalid response metadata: {e}")
            raise ResponseValidationError(None, f"Invalid response metadata: {e}") from e

    @staticmethod
    def _walk(
        items,
        responses: Mapping[str, Any],
        outer: Mapping[str, Any],
        media: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """Check responses for a sequence of items.

        ``outer`` holds responses checked at an enclosing level, visible to
        conditions but not part of the result.
        """
        checked: Dict[str, Any] = {}

        for item in items:
            present = responses.get(item.id) is not None
            if isinstance(item, Message):
                if item.id in responses:
                    ResponseValidationEngine._reject(item.id, "messages cannot have responses")
                continue

            scope = {**outer, **checked}
            if not ResponseValidationEngine._is_displayed(item, scope):
                if present and NoResponse.parse(responses[item.id]) is not NoResponse.NOT_DISPLAYED:
                    ResponseValidationEngine._reject(
                        item.id, "a response was given for an item that should not have been displayed"
                    )
                checked[item.id] = NoResponse.NOT_DISPLAYED
            elif isinstance(item, RepeatableSet):
                checked[item.id] = ResponseValidationEngine._check_repeatable_set(
                    item, responses.get(item.id), scope, media
                )
            else:
                checked[item.id] = ResponseValidationEngine._check_prompt(
                    item, responses.get(item.id), media
                )

        extra = sorted(set(responses) - set(checked))
        if extra:
            logger.warning(f"Unexpected responses: {extra}")
            raise UnexpectedResponseError(extra[0], f"unexpected responses for unknown items: {', '.join(extra)}")

        return checked

    @staticmethod
    def _is_displayed(item: SurveyItem, scope: Mapping[str, Any]) -> bool:
        if item.condition is None:
            return True
        return ConditionEvaluator.evaluate(item.condition, scope)

    @staticmethod
    def _check_prompt(prompt: Prompt, value: Any, media: Optional[Mapping[str, Any]]) -> Any:
        sentinel = None if value is None else NoResponse.parse(value)

        if value is None or sentinel is NoResponse.SKIPPED:
            if not prompt.skippable:
                ResponseValidationEngine._reject(prompt.id, "a response is required")
            return NoResponse.SKIPPED

        if sentinel is NoResponse.NOT_DISPLAYED:
            ResponseValidationEngine._reject(prompt.id, "prompt should have been displayed")

        result = PromptResponseValidator.validate(prompt, value, media)
        if not result.is_valid:
            ResponseValidationEngine._reject(prompt.id, result.error_message)
        return result.normalized_value

    @staticmethod
    def _check_repeatable_set(
        repeatable_set: RepeatableSet,
        value: Any,
        scope: Mapping[str, Any],
        media: Optional[Mapping[str, Any]]
    ) -> Any:
        if value is None or NoResponse.parse(value) is NoResponse.SKIPPED:
            if not repeatable_set.termination_skip_enabled:
                ResponseValidationEngine._reject(repeatable_set.id, "a response is required")
            return NoResponse.SKIPPED

        if NoResponse.parse(value) is NoResponse.NOT_DISPLAYED:
            ResponseValidationEngine._reject(repeatable_set.id, "repeatable set should have been displayed")

        if not isinstance(value, (list, tuple)):
            ResponseValidationEngine._reject(repeatable_set.id, "expected a list of iterations")

        iterations = []
        for iteration in value:
            if not isinstance(iteration, Mapping):
                ResponseValidationEngine._reject(repeatable_set.id, f"iteration {iteration!r} is not a mapping")
            checked = ResponseValidationEngine._walk(
                repeatable_set.prompts.values(), iteration, scope, media
            )
            iterations.append({
                prompt_id: response for prompt_id, response in checked.items()
                if not isinstance(response, NoResponse)
            })
        return iterations

    @staticmethod
    def _reject(item_id: str, message: str) -> None:
        logger.warning(f"Rejected response for {item_id}: {message}")
        raise ResponseValidationError(item_id, message)
