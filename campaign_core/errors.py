"""Exception types raised by the campaign engine.

Three families of failure exist:

- ``StructuralError``: a campaign document failed one of the authoring-time
  validation passes. Always fatal to that compile attempt.
- ``ConfigurationError``: something assumed to hold after validation did not.
  This is an internal consistency fault, not a user error.
- ``ResponseValidationError``: one submitted response violates its prompt's
  contract. The whole response batch is rejected.
"""

from enum import Enum
from typing import Optional


class ValidationPass(str, Enum):
    """Identifiers for the ordered document validation passes."""
    DOCUMENT = "document"
    SCHEMA = "schema"
    CAMPAIGN_URN = "campaign_urn"
    ID_UNIQUENESS = "id_uniqueness"
    PROMPT_TYPES = "prompt_types"
    PROMPT_PROPERTIES = "prompt_properties"
    CONDITIONS = "conditions"
    DEFAULTS = "defaults"
    SURVEY_RULES = "survey_rules"
    REPEATABLE_SET_RULES = "repeatable_set_rules"
    PROMPT_RULES = "prompt_rules"
    DISPLAY_TYPES = "display_types"


class CampaignError(Exception):
    """Base class for all campaign engine errors."""
    pass


class StructuralError(CampaignError):
    """Raised when a campaign document fails a validation pass.

    Attributes:
        pass_name: The validation pass that rejected the document
        message: Human-readable reason
    """

    def __init__(self, pass_name: ValidationPass, message: str):
        super().__init__(f"[{pass_name.value}] {message}")
        self.pass_name = pass_name
        self.message = message


class ConditionParseError(StructuralError):
    """Raised when a condition string does not conform to the grammar."""

    def __init__(self, message: str, condition: str, position: Optional[int] = None):
        detail = message if position is None else f"{message} at position {position}"
        super().__init__(ValidationPass.CONDITIONS, f"{detail}: {condition!r}")
        self.condition = condition
        self.position = position


class ConfigurationError(CampaignError):
    """Raised when a compiled campaign is internally inconsistent."""
    pass


class ResponseValidationError(CampaignError):
    """Raised when a submitted survey response batch is rejected.

    Attributes:
        item_id: The survey item whose response was invalid
        message: Human-readable reason
    """

    def __init__(self, item_id: Optional[str], message: str):
        prefix = f"{item_id}: " if item_id else ""
        super().__init__(f"{prefix}{message}")
        self.item_id = item_id
        self.message = message


class UnexpectedResponseError(ResponseValidationError):
    """Raised when responses reference items the survey does not contain."""
    pass
