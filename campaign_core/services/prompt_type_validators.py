"""Per-prompt-type validators for campaign documents.

Each prompt type has its own legal property bundle, its own set of values a
condition may compare it against, and its own rule for default values. A
validator instance is created for one prompt of one document: it checks the
prompt's properties, remembers the bounds or choices it found, and then
answers condition-value and default-value checks for that prompt.

Instances hold document state and must never be shared between validation
runs.
"""

import json
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from campaign_core.errors import StructuralError, ValidationPass
from campaign_core.schemas.campaign import DisplayType, NoResponse, PromptType
from campaign_core.services import document_nodes as nodes
from campaign_core.logging_config import get_logger

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

_INTEGER = re.compile(r"^[+-]?\d+$")


def parse_integer(value: Optional[str]) -> Optional[int]:
    """Parse a whole decimal integer, returning None if ``value`` is not one."""
    if value is None or not _INTEGER.match(value):
        return None
    return int(value)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a ``yyyy-MM-ddTHH:mm:ss`` timestamp, returning None on failure."""
    if value is None:
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        return None


class PromptTypeValidator(ABC):
    """Base class for prompt type validators.

    Attributes:
        prompt_type: The prompt type this validator handles
        prompt_id: Id of the prompt being validated, set during configuration
        skippable: Whether that prompt may be skipped
    """

    prompt_type: PromptType

    def __init__(self):
        self.prompt_id: Optional[str] = None
        self.skippable = False

    def validate_and_set_configuration(self, prompt_node: Dict[str, Any]) -> None:
        """Validate a prompt's property bundle and retain what later checks need.

        Args:
            prompt_node: The prompt as it appears in the campaign document

        Raises:
            StructuralError: If the properties are illegal for this prompt type
        """
        self.prompt_id = nodes.item_id(prompt_node)
        self.skippable = nodes.flag(prompt_node, "skippable")
        self.configure(prompt_node, nodes.properties(prompt_node))

    @abstractmethod
    def configure(self, prompt_node: Dict[str, Any], properties: List[Dict[str, Optional[str]]]) -> None:
        """Type-specific property validation."""

    @abstractmethod
    def validate_condition_value(self, comparator: str, value: str) -> None:
        """Check one (comparator, value) pair a condition makes against this prompt.

        Raises:
            StructuralError: If the pair can never be legal for this prompt
        """

    @abstractmethod
    def check_default_value(self, value: str) -> None:
        """Check a configured default value.

        Raises:
            StructuralError: If the default is illegal for this prompt
        """

    def is_skipped(self, value: str) -> bool:
        """Return whether ``value`` is the SKIPPED sentinel.

        Raises:
            StructuralError: If SKIPPED is used for a prompt that is not skippable
        """
        if value == NoResponse.SKIPPED.value:
            if not self.skippable:
                self.fail(
                    ValidationPass.CONDITIONS,
                    "SKIPPED used in a condition but the prompt is not skippable"
                )
            return True
        return False

    def fail(self, pass_name: ValidationPass, message: str) -> None:
        """Raise a StructuralError naming this validator's prompt."""
        raise StructuralError(pass_name, f"Prompt '{self.prompt_id}' ({self.prompt_type.value}): {message}")

    def property_fail(self, message: str) -> None:
        self.fail(ValidationPass.PROMPT_PROPERTIES, message)

    def default_fail(self, message: str) -> None:
        self.fail(ValidationPass.DEFAULTS, message)

    def condition_fail(self, message: str) -> None:
        self.fail(ValidationPass.CONDITIONS, message)

    def require_keys(self, properties: List[Dict[str, Optional[str]]], expected: List[str]) -> Dict[str, str]:
        """Check the bundle holds exactly ``expected`` keys, each with a label.

        Returns:
            Mapping of key -> label
        """
        if len(properties) != len(expected):
            self.property_fail(
                f"exactly {len(expected)} properties ({', '.join(expected)}) are required, "
                f"found {len(properties)}"
            )

        labels: Dict[str, str] = {}
        for prop in properties:
            key = prop["key"]
            if key not in expected:
                self.property_fail(f"unexpected property key '{key}'")
            if key in labels:
                self.property_fail(f"duplicate property key '{key}'")
            if not prop["label"]:
                self.property_fail(f"property '{key}' has no label")
            labels[key] = prop["label"]
        return labels


class NumberPromptTypeValidator(PromptTypeValidator):
    """Integer prompts bounded by ``min`` and ``max`` properties."""

    prompt_type = PromptType.NUMBER
    allow_negative = True

    def __init__(self):
        super().__init__()
        self.min: Optional[int] = None
        self.max: Optional[int] = None

    def configure(self, prompt_node, properties):
        labels = self.require_keys(properties, ["min", "max"])

        bounds = {}
        for key in ("min", "max"):
            parsed = parse_integer(labels[key])
            if parsed is None:
                self.property_fail(f"'{key}' must be an integer, found '{labels[key]}'")
            if parsed < 0 and not self.allow_negative:
                self.property_fail(f"'{key}' must be non-negative, found {parsed}")
            bounds[key] = parsed

        if bounds["max"] < bounds["min"]:
            self.property_fail(f"'max' ({bounds['max']}) is less than 'min' ({bounds['min']})")

        self.min = bounds["min"]
        self.max = bounds["max"]

    def _in_range(self, value: str) -> bool:
        parsed = parse_integer(value)
        return parsed is not None and self.min <= parsed <= self.max

    def validate_condition_value(self, comparator, value):
        if self.is_skipped(value):
            return
        if not self._in_range(value):
            self.condition_fail(
                f"condition value '{value}' is not an integer within [{self.min}, {self.max}]"
            )

    def check_default_value(self, value):
        if not self._in_range(value):
            self.default_fail(
                f"default value '{value}' is not an integer within [{self.min}, {self.max}]"
            )


class HoursBeforeNowPromptTypeValidator(NumberPromptTypeValidator):
    """Number prompts whose bounds must be non-negative."""

    prompt_type = PromptType.HOURS_BEFORE_NOW
    allow_negative = False


class ChoicePromptTypeValidator(PromptTypeValidator):
    """Single and multi choice prompts with a fixed list of choices."""

    prompt_type = PromptType.SINGLE_CHOICE
    minimum_choices = 2
    values_required_together = True

    def __init__(self, prompt_type: PromptType = PromptType.SINGLE_CHOICE):
        super().__init__()
        self.prompt_type = prompt_type
        self.choices: Dict[int, str] = {}

    def configure(self, prompt_node, properties):
        if len(properties) < self.minimum_choices:
            self.property_fail(f"at least {self.minimum_choices} choices are required, found {len(properties)}")

        labels = set()
        for prop in properties:
            key = parse_integer(prop["key"])
            if key is None or key < 0:
                self.property_fail(f"choice key '{prop['key']}' is not a non-negative integer")
            if key in self.choices:
                self.property_fail(f"duplicate choice key: {key}")

            label = prop["label"]
            if not label:
                self.property_fail(f"choice {key} has no label")
            if label in labels:
                self.property_fail(f"duplicate choice label: '{label}'")

            labels.add(label)
            self.choices[key] = label

        if self.values_required_together:
            self.check_values(prompt_node, properties)

    def check_values(self, prompt_node, properties):
        with_value = [prop for prop in properties if prop["value"]]
        if with_value and len(with_value) != len(properties):
            self.property_fail("if any choice has a value, every choice must have one")

        display_type = nodes.text(prompt_node, "displayType")
        needs_values = display_type in (DisplayType.COUNT.value, DisplayType.MEASUREMENT.value)
        if self.prompt_type == PromptType.SINGLE_CHOICE and needs_values:
            if len(with_value) != len(properties):
                self.property_fail(
                    f"every choice needs a numeric value when displayType is '{display_type}'"
                )
            for prop in properties:
                try:
                    float(prop["value"])
                except ValueError:
                    self.property_fail(f"choice value '{prop['value']}' is not numeric")

    def validate_condition_value(self, comparator, value):
        if comparator not in ("==", "!="):
            self.condition_fail(f"only == and != may be used with choice prompts, found '{comparator}'")
        if self.is_skipped(value):
            return
        key = parse_integer(value)
        if key is None or key not in self.choices:
            self.condition_fail(f"condition value '{value}' is not one of the choice keys")

    def check_default_value(self, value):
        if value not in self.choices.values():
            self.default_fail(f"default value '{value}' is missing from choices")


class CustomChoicePromptTypeValidator(ChoicePromptTypeValidator):
    """Choice prompts where respondents may add their own choices.

    The configured list may be empty; choices present still need unique keys
    and labels.
    """

    prompt_type = PromptType.SINGLE_CHOICE_CUSTOM
    minimum_choices = 0
    values_required_together = False

    def __init__(self, prompt_type: PromptType = PromptType.SINGLE_CHOICE_CUSTOM):
        super().__init__(prompt_type)


class TextPromptTypeValidator(PromptTypeValidator):
    """Free text prompts bounded by a ``min`` and ``max`` length."""

    prompt_type = PromptType.TEXT

    def __init__(self):
        super().__init__()
        self.min: Optional[int] = None
        self.max: Optional[int] = None

    def configure(self, prompt_node, properties):
        labels = self.require_keys(properties, ["min", "max"])

        for key in ("min", "max"):
            parsed = parse_integer(labels[key])
            if parsed is None or parsed < 1:
                self.property_fail(f"'{key}' must be a positive integer, found '{labels[key]}'")
            setattr(self, key, parsed)

        if self.max < self.min:
            self.property_fail(f"'max' ({self.max}) is less than 'min' ({self.min})")

    def validate_condition_value(self, comparator, value):
        if not self.is_skipped(value):
            self.condition_fail("text prompts may only be compared against SKIPPED")

    def check_default_value(self, value):
        self.default_fail("default values are not allowed for text prompts")


class PhotoPromptTypeValidator(PromptTypeValidator):
    """Photo prompts with a single ``res`` (resolution) property."""

    prompt_type = PromptType.PHOTO

    def __init__(self):
        super().__init__()
        self.resolution: Optional[int] = None

    def configure(self, prompt_node, properties):
        labels = self.require_keys(properties, ["res"])
        parsed = parse_integer(labels["res"])
        if parsed is None or parsed < 1:
            self.property_fail(f"'res' must be a positive integer, found '{labels['res']}'")
        self.resolution = parsed

    def validate_condition_value(self, comparator, value):
        if not self.is_skipped(value):
            self.condition_fail("photo prompts may only be compared against SKIPPED")

    def check_default_value(self, value):
        self.default_fail("default values are not allowed for photo prompts")


class TimestampPromptTypeValidator(PromptTypeValidator):
    """Timestamp prompts. They take no properties."""

    prompt_type = PromptType.TIMESTAMP

    def configure(self, prompt_node, properties):
        if properties:
            self.property_fail(f"timestamp prompts take no properties, found {len(properties)}")

    def validate_condition_value(self, comparator, value):
        if parse_timestamp(value) is None:
            self.condition_fail(f"condition value '{value}' is not a yyyy-MM-ddTHH:mm:ss timestamp")

    def check_default_value(self, value):
        if parse_timestamp(value) is None:
            self.default_fail(f"default value '{value}' is not a yyyy-MM-ddTHH:mm:ss timestamp")


class RemoteActivityPromptTypeValidator(PromptTypeValidator):
    """Prompts that launch an external activity and collect its results."""

    prompt_type = PromptType.REMOTE_ACTIVITY

    MAX_INPUT_LENGTH = 65536
    REQUIRED_KEYS = ("package", "activity", "action", "autolaunch", "retries", "min_runs")
    OPTIONAL_KEYS = ("input",)

    def __init__(self):
        super().__init__()
        self.retries: Optional[int] = None
        self.min_runs: Optional[int] = None

    def configure(self, prompt_node, properties):
        labels: Dict[str, str] = {}
        for prop in properties:
            key = prop["key"]
            label = prop["label"]
            if not key:
                self.property_fail("empty property key")
            if key not in self.REQUIRED_KEYS and key not in self.OPTIONAL_KEYS:
                self.property_fail(f"invalid key in properties list: '{key}'")
            if key in labels:
                self.property_fail(f"duplicate property key '{key}'")
            if not label:
                self.property_fail(f"'{key}' label is invalid")
            self._validate_key_label(key, label)
            labels[key] = label

        for key in self.REQUIRED_KEYS:
            if key not in labels:
                self.property_fail(f"missing '{key}' key")

        if self.min_runs > self.retries + 1:
            self.property_fail(
                "'min_runs' requires more runs than 'retries' allows "
                f"(min_runs={self.min_runs}, retries={self.retries})"
            )

    def _validate_key_label(self, key: str, label: str) -> None:
        if key in ("package", "activity"):
            if "." not in label:
                self.property_fail(f"'{key}' must contain at least one '.'")
        elif key == "autolaunch":
            if label not in ("true", "false"):
                self.property_fail("'autolaunch' must be either 'true' or 'false'")
        elif key in ("retries", "min_runs"):
            parsed = parse_integer(label)
            if parsed is None:
                self.property_fail(f"'{key}' is not a valid integer")
            if parsed < 0:
                self.property_fail(f"'{key}' must be non-negative")
            setattr(self, key, parsed)
        elif key == "input":
            if len(label) > self.MAX_INPUT_LENGTH:
                self.property_fail(f"'input' can only be {self.MAX_INPUT_LENGTH} characters")

    def validate_condition_value(self, comparator, value):
        if self.is_skipped(value):
            return
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = None
        if not isinstance(parsed, list):
            self.condition_fail(f"condition value '{value}' is not SKIPPED or a JSON array")

    def check_default_value(self, value):
        self.default_fail("default values are not allowed for remote activity prompts")


class PromptTypeValidatorFactory:
    """Maps prompt type tags to fresh validator instances."""

    _VALIDATORS: Dict[PromptType, Type[PromptTypeValidator]] = {
        PromptType.NUMBER: NumberPromptTypeValidator,
        PromptType.HOURS_BEFORE_NOW: HoursBeforeNowPromptTypeValidator,
        PromptType.SINGLE_CHOICE: ChoicePromptTypeValidator,
        PromptType.MULTI_CHOICE: ChoicePromptTypeValidator,
        PromptType.SINGLE_CHOICE_CUSTOM: CustomChoicePromptTypeValidator,
        PromptType.MULTI_CHOICE_CUSTOM: CustomChoicePromptTypeValidator,
        PromptType.TEXT: TextPromptTypeValidator,
        PromptType.PHOTO: PhotoPromptTypeValidator,
        PromptType.TIMESTAMP: TimestampPromptTypeValidator,
        PromptType.REMOTE_ACTIVITY: RemoteActivityPromptTypeValidator,
    }

    @staticmethod
    def is_valid_prompt_type(tag: Optional[str]) -> bool:
        """Return whether ``tag`` names a supported prompt type."""
        try:
            PromptType(tag)
        except ValueError:
            return False
        return True

    @staticmethod
    def get_validator(tag: str) -> PromptTypeValidator:
        """Create a new validator for prompt type ``tag``.

        Raises:
            StructuralError: If the tag is not a supported prompt type
        """
        if not PromptTypeValidatorFactory.is_valid_prompt_type(tag):
            raise StructuralError(ValidationPass.PROMPT_TYPES, f"Unknown prompt type: {tag}")

        prompt_type = PromptType(tag)
        validator_class = PromptTypeValidatorFactory._VALIDATORS[prompt_type]
        logger.debug(f"Creating {validator_class.__name__} for prompt type {tag}")
        if issubclass(validator_class, ChoicePromptTypeValidator):
            return validator_class(prompt_type)
        return validator_class()
