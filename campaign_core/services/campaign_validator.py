"""Structural validator for campaign documents.

This module runs the ordered, fail-fast validation passes over one loaded
campaign document:

1. Schema conformance (JSON Schema, Draft 7)
2. Campaign URN format
3. Global id uniqueness
4. Known prompt types
5. Per-type prompt properties
6. Display conditions and their ordering
7. Default values
8. Survey authoring rules
9. Repeatable set authoring rules
10. Prompt authoring rules
11. Display types

The first failing pass aborts the run with a StructuralError naming it.
"""

import json
import re
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError, best_match

from campaign_core.config import DEFAULT_SCHEMA_PATH
from campaign_core.errors import ConfigurationError, StructuralError, ValidationPass
from campaign_core.schemas.campaign import DisplayType, PromptType
from campaign_core.logging_config import get_logger
from campaign_core.services import document_nodes as nodes
from campaign_core.services.condition_grammar import parse_condition
from campaign_core.services.prompt_type_validators import (
    PromptTypeValidator,
    PromptTypeValidatorFactory,
)

logger = get_logger(__name__)

URN_SEGMENT = re.compile(r"^[a-z0-9_]+$")
MIN_URN_SEGMENTS = 3

PromptValidators = Dict[str, PromptTypeValidator]


def load_schema(schema_path: Optional[Path] = None) -> Dict[str, Any]:
    """Read and check a JSON Schema document.

    Args:
        schema_path: Schema location, defaults to the packaged schema

    Returns:
        Parsed schema

    Raises:
        ConfigurationError: If the schema cannot be read or is not a valid
            Draft 7 schema
    """
    path = Path(schema_path or DEFAULT_SCHEMA_PATH)
    try:
        schema = json.loads(path.read_text(encoding="utf-8"))
        Draft7Validator.check_schema(schema)
    except (OSError, ValueError, SchemaError) as e:
        logger.error(f"Unable to load campaign schema {path}: {e}")
        raise ConfigurationError(f"Unable to load campaign schema {path}: {e}") from e
    return schema


def is_valid_urn(value: Optional[str]) -> bool:
    """Check a campaign URN, e.g. ``urn:campaign:ca:ucla:example``."""
    if value is None or not value.strip():
        return False

    lowered = value.lower()
    if not lowered.startswith("urn:"):
        return False

    segments = lowered.split(":")
    if len(segments) < MIN_URN_SEGMENTS:
        return False
    return all(URN_SEGMENT.match(segment) for segment in segments[1:])


class StructuralValidator:
    """Service for running the document validation passes."""

    @staticmethod
    def validate(document: Any, schema_path: Optional[Path] = None) -> PromptValidators:
        """Validate a campaign document.

        Args:
            document: Campaign document as loaded from YAML
            schema_path: Schema to validate against, defaults to the packaged one

        Returns:
            Prompt id -> configured PromptTypeValidator, scoped to this run

        Raises:
            StructuralError: If any pass rejects the document
            ConfigurationError: If the schema itself cannot be loaded

        Example:
            >>> document = yaml.safe_load(Path("campaign.yaml").read_text())
            >>> StructuralValidator.validate(document)  # Raises if invalid
        """
        StructuralValidator._check_schema(document, load_schema(schema_path))
        logger.info("Schema validation passed")

        StructuralValidator._check_urn(document)
        logger.info(f"Campaign URN {document['campaignUrn']} is valid")

        StructuralValidator._check_unique_ids(document)
        logger.info("All ids are unique")

        StructuralValidator._check_prompt_types(document)
        logger.info("All prompt types are known")

        validators = StructuralValidator._configure_prompts(document)
        logger.info(f"Validated properties of {len(validators)} prompts")

        StructuralValidator._check_conditions(document, validators)
        logger.info("Conditions are valid")

        StructuralValidator._check_defaults(document, validators)
        logger.info("Default values are valid")

        StructuralValidator._check_survey_rules(document)
        logger.info("Survey rules passed")

        StructuralValidator._check_repeatable_set_rules(document)
        logger.info("Repeatable set rules passed")

        StructuralValidator._check_prompt_rules(document)
        logger.info("Prompt rules passed")

        StructuralValidator._check_display_types(document)
        logger.info(f"Campaign {document['campaignUrn']} validated successfully")

        return validators

    @staticmethod
    def _check_schema(document: Any, schema: Dict[str, Any]) -> None:
        error = best_match(Draft7Validator(schema).iter_errors(document))
        if error is None:
            return

        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        logger.error(f"Schema validation failed at {location}: {error.message}")
        raise StructuralError(ValidationPass.SCHEMA, f"{location}: {error.message}")

    @staticmethod
    def _check_urn(document: Dict[str, Any]) -> None:
        urn = nodes.text(document, "campaignUrn")
        if not is_valid_urn(urn):
            raise StructuralError(ValidationPass.CAMPAIGN_URN, f"Invalid campaign URN: {urn}")

    @staticmethod
    def _check_unique_ids(document: Dict[str, Any]) -> None:
        counts = Counter(nodes.iter_ids(document))
        duplicates = sorted(item_id for item_id, count in counts.items() if count > 1)
        if duplicates:
            raise StructuralError(
                ValidationPass.ID_UNIQUENESS,
                f"Duplicate ids found: {', '.join(duplicates)}"
            )

    @staticmethod
    def _check_prompt_types(document: Dict[str, Any]) -> None:
        for _, _, prompt in nodes.iter_prompts(document):
            prompt_type = nodes.text(prompt, "promptType")
            if not PromptTypeValidatorFactory.is_valid_prompt_type(prompt_type):
                raise StructuralError(
                    ValidationPass.PROMPT_TYPES,
                    f"Prompt '{nodes.item_id(prompt)}' has unknown prompt type '{prompt_type}'"
                )

    @staticmethod
    def _configure_prompts(document: Dict[str, Any]) -> PromptValidators:
        validators: PromptValidators = {}
        for _, _, prompt in nodes.iter_prompts(document):
            validator = PromptTypeValidatorFactory.get_validator(nodes.text(prompt, "promptType"))
            validator.validate_and_set_configuration(prompt)
            validators[nodes.item_id(prompt)] = validator
        return validators

    @staticmethod
    def _check_conditions(document: Dict[str, Any], validators: PromptValidators) -> None:
        """Check every condition against the survey's flattened item order.

        Prompts inside a repeatable set see everything before the set, the set
        itself and the set's earlier prompts. Items after the set do not see
        the set's prompts.
        """
        for survey in nodes.surveys(document):
            earlier_ids: List[str] = []
            position = 0

            for kind, node in nodes.content_items(survey):
                StructuralValidator._check_condition(node, position, earlier_ids, validators)
                earlier_ids.append(nodes.item_id(node))
                position += 1

                if kind == nodes.REPEATABLE_SET:
                    set_ids = list(earlier_ids)
                    for prompt in nodes.repeatable_set_prompts(node):
                        StructuralValidator._check_condition(prompt, position, set_ids, validators)
                        set_ids.append(nodes.item_id(prompt))
                        position += 1

    @staticmethod
    def _check_condition(
        node: Dict[str, Any],
        position: int,
        earlier_ids: List[str],
        validators: PromptValidators
    ) -> None:
        condition = nodes.text(node, "condition")
        if not condition:
            return

        node_id = nodes.item_id(node)
        if position == 0:
            raise StructuralError(
                ValidationPass.CONDITIONS,
                f"'{node_id}' is the first item in its survey and cannot have a condition"
            )

        references = parse_condition(condition)
        for referenced_id, pairs in references.items():
            if referenced_id not in earlier_ids:
                raise StructuralError(
                    ValidationPass.CONDITIONS,
                    f"Condition on '{node_id}' references '{referenced_id}', "
                    "which is not an earlier item in the same survey"
                )

            validator = validators.get(referenced_id)
            if validator is None:
                raise StructuralError(
                    ValidationPass.CONDITIONS,
                    f"Condition on '{node_id}' references '{referenced_id}', which is not a prompt"
                )

            for pair in pairs:
                validator.validate_condition_value(pair.comparator, pair.value)

    @staticmethod
    def _check_defaults(document: Dict[str, Any], validators: PromptValidators) -> None:
        for _, _, prompt in nodes.iter_prompts(document):
            default = nodes.text(prompt, "default")
            if default is None:
                continue

            validator = validators.get(nodes.item_id(prompt))
            if validator is None:
                raise ConfigurationError(f"Missing validator for prompt '{nodes.item_id(prompt)}'")
            validator.check_default_value(default)

    @staticmethod
    def _check_survey_rules(document: Dict[str, Any]) -> None:
        for survey in nodes.surveys(document):
            if not nodes.flag(survey, "showSummary"):
                continue
            for field in ("summaryText", "editSummary"):
                if nodes.text(survey, field) is None:
                    raise StructuralError(
                        ValidationPass.SURVEY_RULES,
                        f"Survey '{nodes.item_id(survey)}' shows a summary but has no {field}"
                    )

    @staticmethod
    def _check_repeatable_set_rules(document: Dict[str, Any]) -> None:
        for _, repeatable_set in nodes.iter_repeatable_sets(document):
            if nodes.flag(repeatable_set, "terminationSkipEnabled") and \
                    not nodes.text(repeatable_set, "terminationSkipLabel"):
                raise StructuralError(
                    ValidationPass.REPEATABLE_SET_RULES,
                    f"Repeatable set '{nodes.item_id(repeatable_set)}' enables termination skip "
                    "but has no terminationSkipLabel"
                )

    @staticmethod
    def _check_prompt_rules(document: Dict[str, Any]) -> None:
        for survey, _, prompt in nodes.iter_prompts(document):
            prompt_id = nodes.item_id(prompt)
            if nodes.flag(prompt, "skippable") and not nodes.text(prompt, "skipLabel"):
                raise StructuralError(
                    ValidationPass.PROMPT_RULES,
                    f"Prompt '{prompt_id}' is skippable but has no skipLabel"
                )
            if nodes.flag(survey, "showSummary") and not nodes.text(prompt, "abbreviatedText"):
                raise StructuralError(
                    ValidationPass.PROMPT_RULES,
                    f"Prompt '{prompt_id}' needs abbreviatedText because survey "
                    f"'{nodes.item_id(survey)}' shows a summary"
                )

    @staticmethod
    def _check_display_types(document: Dict[str, Any]) -> None:
        allowed = {display_type.value for display_type in DisplayType}
        metadata_timestamps: Counter = Counter()

        for survey, _, prompt in nodes.iter_prompts(document):
            display_type = nodes.text(prompt, "displayType")
            if display_type not in allowed:
                raise StructuralError(
                    ValidationPass.DISPLAY_TYPES,
                    f"Prompt '{nodes.item_id(prompt)}' has invalid displayType '{display_type}'"
                )
            if display_type == DisplayType.METADATA.value and \
                    nodes.text(prompt, "promptType") == PromptType.TIMESTAMP.value:
                metadata_timestamps[nodes.item_id(survey)] += 1

        for survey_id, count in metadata_timestamps.items():
            if count > 1:
                logger.warning(
                    f"Survey {survey_id} has {count} timestamp prompts with the metadata displayType"
                )
