"""Pydantic models for compiled campaign definitions.

A campaign document that has passed every validation pass is turned into
this object graph by the schema builder. All models are frozen: a revised
campaign document produces a brand new ``Configuration`` rather than an
edit of an existing one.
"""

from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Dict, List, Literal, Mapping, Optional, Tuple, TypeVar, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, WrapSerializer, model_validator

V = TypeVar("V")

# Keyed containers of the compiled graph are read-only views; frozen models
# only block attribute assignment.
ReadOnlyMap = Annotated[
    Mapping[str, V],
    AfterValidator(lambda value: MappingProxyType(dict(value))),
    WrapSerializer(lambda value, handler: handler(dict(value))),
]


class PromptType(str, Enum):
    """Supported prompt types."""
    NUMBER = "number"
    HOURS_BEFORE_NOW = "hours_before_now"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    SINGLE_CHOICE_CUSTOM = "single_choice_custom"
    MULTI_CHOICE_CUSTOM = "multi_choice_custom"
    TEXT = "text"
    PHOTO = "photo"
    TIMESTAMP = "timestamp"
    REMOTE_ACTIVITY = "remote_activity"

    @property
    def is_choice(self) -> bool:
        return self in CHOICE_PROMPT_TYPES


CHOICE_PROMPT_TYPES = frozenset({
    PromptType.SINGLE_CHOICE,
    PromptType.MULTI_CHOICE,
    PromptType.SINGLE_CHOICE_CUSTOM,
    PromptType.MULTI_CHOICE_CUSTOM,
})


class DisplayType(str, Enum):
    """How a prompt's responses are meant to be displayed."""
    MEASUREMENT = "measurement"
    EVENT = "event"
    COUNT = "count"
    CATEGORY = "category"
    METADATA = "metadata"


class NoResponse(str, Enum):
    """Sentinel responses for prompts that carry no substantive answer."""
    SKIPPED = "SKIPPED"
    NOT_DISPLAYED = "NOT_DISPLAYED"

    @classmethod
    def parse(cls, value: object) -> Optional["NoResponse"]:
        """Return the sentinel ``value`` names, or None if it names none."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip())
            except ValueError:
                return None
        return None


class RunningState(str, Enum):
    """Whether a campaign currently accepts responses."""
    RUNNING = "running"
    STOPPED = "stopped"


class PrivacyState(str, Enum):
    """Default privacy state of a campaign's responses."""
    PRIVATE = "private"
    SHARED = "shared"


class ConditionValuePair(BaseModel):
    """One comparison found in a condition, e.g. ``>`` and ``5``."""
    model_config = ConfigDict(frozen=True)

    comparator: str
    value: str


class Condition(BaseModel):
    """A display condition attached to a survey item.

    Attributes:
        text: The condition as written in the campaign document
        expression: Equivalent boolean expression evaluated at response time
        references: Referenced prompt id -> comparisons made against it
    """
    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1)
    expression: str = Field(..., min_length=1)
    references: ReadOnlyMap[Tuple[ConditionValuePair, ...]]


class PromptProperty(BaseModel):
    """A single key/label/value entry from a prompt's property bundle."""
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    value: Optional[str] = None


class SurveyItem(BaseModel):
    """Fields shared by every entry of a survey's content list.

    Attributes:
        id: Identifier, unique across the whole campaign
        condition: Optional display condition
        index: Position within the containing survey or repeatable set
        repeatable_set_id: Id of the enclosing repeatable set, if any
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    condition: Optional[Condition] = None
    index: int = Field(..., ge=0)
    repeatable_set_id: Optional[str] = None


class Message(SurveyItem):
    """A non-respondable item that only shows text."""
    kind: Literal["message"] = "message"
    text: str


class Prompt(SurveyItem):
    """A respondable survey item."""
    kind: Literal["prompt"] = "prompt"
    prompt_type: PromptType
    unit: Optional[str] = None
    text: str
    abbreviated_text: Optional[str] = None
    explanation_text: Optional[str] = None
    skippable: bool = False
    skip_label: Optional[str] = None
    display_type: DisplayType
    display_label: str
    default: Optional[str] = None
    properties: ReadOnlyMap[PromptProperty] = Field(default_factory=dict, validate_default=True)

    def int_property(self, key: str) -> int:
        """Return the integer stored in the label of property ``key``.

        Raises:
            KeyError: If the prompt has no such property
        """
        return int(self.properties[key].label)

    def bounds(self) -> Tuple[int, int]:
        """Return the (min, max) bounds of a bounded prompt."""
        return self.int_property("min"), self.int_property("max")

    def choices(self) -> Dict[int, PromptProperty]:
        """Return the configured choices keyed by their integer key."""
        return {int(key): prop for key, prop in self.properties.items()}

    def choice_key_for_label(self, label: str) -> Optional[int]:
        """Return the key of the choice labelled ``label``, if any."""
        for key, prop in self.choices().items():
            if prop.label == label:
                return key
        return None


class RepeatableSet(SurveyItem):
    """A group of prompts that may be answered over several iterations."""
    kind: Literal["repeatable_set"] = "repeatable_set"
    termination_question: str
    termination_true_label: str
    termination_false_label: str
    termination_skip_enabled: bool = False
    termination_skip_label: Optional[str] = None
    prompts: ReadOnlyMap[Prompt] = Field(default_factory=dict, validate_default=True)


ContentItem = Annotated[Union[Prompt, Message, RepeatableSet], Field(discriminator="kind")]


class Survey(BaseModel):
    """A compiled survey definition.

    Attributes:
        items: Content list in document order, keyed by item id
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str
    description: Optional[str] = None
    intro_text: Optional[str] = None
    submit_text: str
    show_summary: bool = False
    edit_summary: Optional[bool] = None
    summary_text: Optional[str] = None
    anytime: bool = True
    items: ReadOnlyMap[ContentItem]

    @model_validator(mode='after')
    def validate_has_items(self):
        """A survey must contain at least one item."""
        if not self.items:
            raise ValueError(f"Survey '{self.id}' has no items")
        return self

    def get_item(self, item_id: str) -> Optional[SurveyItem]:
        """Get a top-level item by id.

        Args:
            item_id: Item identifier

        Returns:
            The item if found, None otherwise
        """
        return self.items.get(item_id)

    def iter_prompts(self):
        """Yield every prompt, including those inside repeatable sets."""
        for item in self.items.values():
            if isinstance(item, Prompt):
                yield item
            elif isinstance(item, RepeatableSet):
                yield from item.prompts.values()


class Configuration(BaseModel):
    """The compiled, immutable representation of a campaign.

    Built only from documents that passed every validation pass. Safe to
    share between any number of concurrent readers.
    """
    model_config = ConfigDict(frozen=True)

    urn: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    server_url: Optional[str] = None
    running_state: RunningState = RunningState.RUNNING
    privacy_state: PrivacyState = PrivacyState.PRIVATE
    creation_timestamp: datetime
    surveys: ReadOnlyMap[Survey]
    source_text: str

    @model_validator(mode='after')
    def validate_has_surveys(self):
        """A campaign must contain at least one survey."""
        if not self.surveys:
            raise ValueError(f"Campaign '{self.urn}' has no surveys")
        return self

    def survey_exists(self, survey_id: str) -> bool:
        return survey_id in self.surveys

    def get_survey(self, survey_id: str) -> Optional[Survey]:
        return self.surveys.get(survey_id)

    def repeatable_set_exists(self, survey_id: str, repeatable_set_id: str) -> bool:
        survey = self.surveys.get(survey_id)
        if survey is None:
            return False
        return isinstance(survey.items.get(repeatable_set_id), RepeatableSet)

    def get_prompt(
        self,
        survey_id: str,
        prompt_id: str,
        repeatable_set_id: Optional[str] = None
    ) -> Optional[Prompt]:
        """Look up a prompt directly in a survey or inside one of its sets.

        Args:
            survey_id: Survey identifier
            prompt_id: Prompt identifier
            repeatable_set_id: Enclosing repeatable set, if the prompt is nested

        Returns:
            The prompt if found, None otherwise
        """
        survey = self.surveys.get(survey_id)
        if survey is None:
            return None

        if repeatable_set_id is None:
            item = survey.items.get(prompt_id)
            return item if isinstance(item, Prompt) else None

        repeatable_set = survey.items.get(repeatable_set_id)
        if not isinstance(repeatable_set, RepeatableSet):
            return None
        return repeatable_set.prompts.get(prompt_id)

    def prompt_exists(
        self,
        survey_id: str,
        prompt_id: str,
        repeatable_set_id: Optional[str] = None
    ) -> bool:
        return self.get_prompt(survey_id, prompt_id, repeatable_set_id) is not None

    def _require_prompt(
        self,
        survey_id: str,
        prompt_id: str,
        repeatable_set_id: Optional[str]
    ) -> Prompt:
        prompt = self.get_prompt(survey_id, prompt_id, repeatable_set_id)
        if prompt is None:
            raise KeyError(f"Unknown prompt '{prompt_id}' in survey '{survey_id}'")
        return prompt

    def is_prompt_skippable(
        self,
        survey_id: str,
        prompt_id: str,
        repeatable_set_id: Optional[str] = None
    ) -> bool:
        return self._require_prompt(survey_id, prompt_id, repeatable_set_id).skippable

    def get_prompt_type(
        self,
        survey_id: str,
        prompt_id: str,
        repeatable_set_id: Optional[str] = None
    ) -> PromptType:
        return self._require_prompt(survey_id, prompt_id, repeatable_set_id).prompt_type

    def get_display_type(
        self,
        survey_id: str,
        prompt_id: str,
        repeatable_set_id: Optional[str] = None
    ) -> DisplayType:
        return self._require_prompt(survey_id, prompt_id, repeatable_set_id).display_type

    def get_display_label(
        self,
        survey_id: str,
        prompt_id: str,
        repeatable_set_id: Optional[str] = None
    ) -> str:
        return self._require_prompt(survey_id, prompt_id, repeatable_set_id).display_label

    def get_unit(
        self,
        survey_id: str,
        prompt_id: str,
        repeatable_set_id: Optional[str] = None
    ) -> Optional[str]:
        return self._require_prompt(survey_id, prompt_id, repeatable_set_id).unit

    def get_label_for_choice_key(
        self,
        survey_id: str,
        prompt_id: str,
        key: str,
        repeatable_set_id: Optional[str] = None
    ) -> Optional[str]:
        prompt = self._require_prompt(survey_id, prompt_id, repeatable_set_id)
        prop = prompt.properties.get(str(key))
        return prop.label if prop is not None else None

    def get_value_for_choice_key(
        self,
        survey_id: str,
        prompt_id: str,
        key: str,
        repeatable_set_id: Optional[str] = None
    ) -> Optional[str]:
        prompt = self._require_prompt(survey_id, prompt_id, repeatable_set_id)
        prop = prompt.properties.get(str(key))
        return prop.value if prop is not None else None

    def number_of_prompts_in_repeatable_set(self, survey_id: str, repeatable_set_id: str) -> int:
        survey = self.surveys[survey_id]
        repeatable_set = survey.items[repeatable_set_id]
        if not isinstance(repeatable_set, RepeatableSet):
            raise KeyError(f"'{repeatable_set_id}' is not a repeatable set")
        return len(repeatable_set.prompts)

    def find_repeatable_set_id(self, survey_id: str, prompt_id: str) -> Optional[str]:
        """Resolve where a prompt lives within a survey.

        Returns:
            The id of the repeatable set containing the prompt, or None when
            the prompt sits directly in the survey's content list

        Raises:
            KeyError: If the survey does not contain the prompt at all
        """
        survey = self.surveys[survey_id]
        if isinstance(survey.items.get(prompt_id), Prompt):
            return None
        for item in survey.items.values():
            if isinstance(item, RepeatableSet) and prompt_id in item.prompts:
                return item.id
        raise KeyError(f"Unknown prompt '{prompt_id}' in survey '{survey_id}'")

    def get_survey_id_for_prompt_id(self, prompt_id: str) -> Optional[str]:
        for survey in self.surveys.values():
            for prompt in survey.iter_prompts():
                if prompt.id == prompt_id:
                    return survey.id
        return None

    def get_metadata_prompt_ids(self, prompt_id: str) -> List[str]:
        """List the metadata prompts of the survey that contains ``prompt_id``."""
        survey_id = self.get_survey_id_for_prompt_id(prompt_id)
        if survey_id is None:
            return []
        return [
            prompt.id for prompt in self.surveys[survey_id].iter_prompts()
            if prompt.display_type == DisplayType.METADATA
        ]
