"""Builds the compiled campaign object graph from a validated document.

Nothing here re-validates: the document must already have passed the
StructuralValidator. Model construction errors at this point mean the two
disagree and are reported as ConfigurationError.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from campaign_core.errors import ConfigurationError
from campaign_core.schemas.campaign import (
    Condition,
    Configuration,
    DisplayType,
    Message,
    PrivacyState,
    Prompt,
    PromptProperty,
    PromptType,
    RepeatableSet,
    RunningState,
    Survey,
)
from campaign_core.logging_config import get_logger
from campaign_core.services import document_nodes as nodes
from campaign_core.services.condition_grammar import compile_condition

logger = get_logger(__name__)


class SchemaBuilder:
    """Service for turning validated documents into Configuration objects."""

    @staticmethod
    def build(
        document: Dict[str, Any],
        source_text: str,
        running_state: RunningState = RunningState.RUNNING,
        privacy_state: PrivacyState = PrivacyState.PRIVATE,
        creation_timestamp: Optional[datetime] = None
    ) -> Configuration:
        """Build a Configuration from a validated campaign document.

        Args:
            document: Campaign document that passed StructuralValidator
            source_text: Document text as supplied by the caller
            running_state: Initial running state of the campaign
            privacy_state: Initial privacy state of the campaign
            creation_timestamp: Creation time, defaults to now

        Returns:
            Immutable compiled campaign

        Raises:
            ConfigurationError: If the document does not fit the compiled model
        """
        try:
            surveys = {}
            for survey_node in nodes.surveys(document):
                survey = SchemaBuilder._build_survey(survey_node)
                surveys[survey.id] = survey

            configuration = Configuration(
                urn=nodes.text(document, "campaignUrn"),
                name=nodes.text(document, "campaignName"),
                description=nodes.text(document, "description"),
                server_url=nodes.text(document, "serverUrl"),
                running_state=running_state,
                privacy_state=privacy_state,
                creation_timestamp=creation_timestamp or datetime.now(),
                surveys=surveys,
                source_text=source_text,
            )
        except ValidationError as e:
            logger.error(f"Validated campaign document could not be compiled: {e}")
            raise ConfigurationError(f"Validated campaign document could not be compiled: {e}") from e

        logger.info(f"Built configuration for {configuration.urn} with {len(surveys)} surveys")
        return configuration

    @staticmethod
    def _build_survey(node: Dict[str, Any]) -> Survey:
        items = {}
        for index, (kind, item_node) in enumerate(nodes.content_items(node)):
            if kind == nodes.PROMPT:
                item = SchemaBuilder._build_prompt(item_node, index)
            elif kind == nodes.MESSAGE:
                item = Message(
                    id=nodes.item_id(item_node),
                    condition=SchemaBuilder._build_condition(item_node),
                    index=index,
                    text=nodes.text(item_node, "messageText"),
                )
            else:
                item = SchemaBuilder._build_repeatable_set(item_node, index)
            items[item.id] = item

        edit_summary = node.get("editSummary")
        return Survey(
            id=nodes.item_id(node),
            title=nodes.text(node, "title"),
            description=nodes.text(node, "description"),
            intro_text=nodes.text(node, "introText"),
            submit_text=nodes.text(node, "submitText"),
            show_summary=nodes.flag(node, "showSummary"),
            edit_summary=None if edit_summary is None else nodes.flag(node, "editSummary"),
            summary_text=nodes.text(node, "summaryText"),
            anytime=nodes.flag(node, "anytime"),
            items=items,
        )

    @staticmethod
    def _build_repeatable_set(node: Dict[str, Any], index: int) -> RepeatableSet:
        set_id = nodes.item_id(node)
        prompts = {}
        for prompt_index, prompt_node in enumerate(nodes.repeatable_set_prompts(node)):
            prompt = SchemaBuilder._build_prompt(prompt_node, prompt_index, set_id)
            prompts[prompt.id] = prompt

        return RepeatableSet(
            id=set_id,
            condition=SchemaBuilder._build_condition(node),
            index=index,
            termination_question=nodes.text(node, "terminationQuestion"),
            termination_true_label=nodes.text(node, "terminationTrueLabel"),
            termination_false_label=nodes.text(node, "terminationFalseLabel"),
            termination_skip_enabled=nodes.flag(node, "terminationSkipEnabled"),
            termination_skip_label=nodes.text(node, "terminationSkipLabel"),
            prompts=prompts,
        )

    @staticmethod
    def _build_prompt(node: Dict[str, Any], index: int, repeatable_set_id: Optional[str] = None) -> Prompt:
        properties = {
            prop["key"]: PromptProperty(key=prop["key"], label=prop["label"], value=prop["value"])
            for prop in nodes.properties(node)
        }
        return Prompt(
            id=nodes.item_id(node),
            condition=SchemaBuilder._build_condition(node),
            index=index,
            repeatable_set_id=repeatable_set_id,
            prompt_type=PromptType(nodes.text(node, "promptType")),
            unit=nodes.text(node, "unit"),
            text=nodes.text(node, "promptText"),
            abbreviated_text=nodes.text(node, "abbreviatedText"),
            explanation_text=nodes.text(node, "explanationText"),
            skippable=nodes.flag(node, "skippable"),
            skip_label=nodes.text(node, "skipLabel"),
            display_type=DisplayType(nodes.text(node, "displayType")),
            display_label=nodes.text(node, "displayLabel"),
            default=nodes.text(node, "default"),
            properties=properties,
        )

    @staticmethod
    def _build_condition(node: Dict[str, Any]) -> Optional[Condition]:
        text = nodes.text(node, "condition")
        if not text:
            return None
        return compile_condition(text)
