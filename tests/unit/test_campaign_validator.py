"""Unit tests for the structural validator.

Tests each validation pass and the order in which they run.
"""

import json
import logging

import pytest

from campaign_core.errors import ConfigurationError, StructuralError, ValidationPass
from campaign_core.services.campaign_validator import (
    StructuralValidator,
    is_valid_urn,
    load_schema,
)
from campaign_core.services.prompt_type_validators import NumberPromptTypeValidator


def assert_fails(document, pass_name):
    with pytest.raises(StructuralError) as exc_info:
        StructuralValidator.validate(document)
    assert exc_info.value.pass_name == pass_name
    return exc_info.value


class TestStructuralValidator:
    """Tests for StructuralValidator.validate."""

    def test_valid_campaign(self, campaign_document):
        """Test the shared campaign passes and yields a validator per prompt."""
        validators = StructuralValidator.validate(campaign_document)

        assert set(validators) == {
            "sleep", "rested", "activities", "notes", "taken",
            "meal_size", "meal_photo", "game", "snack", "weight",
        }
        assert isinstance(validators["sleep"], NumberPromptTypeValidator)

    def test_each_run_gets_fresh_validators(self, campaign_document):
        """Test validator maps are never shared between runs."""
        first = StructuralValidator.validate(campaign_document)
        second = StructuralValidator.validate(campaign_document)
        assert first["sleep"] is not second["sleep"]

    def test_info_logged_per_pass(self, campaign_document, caplog):
        """Test successful passes are logged."""
        with caplog.at_level(logging.INFO, logger="campaign_core.services.campaign_validator"):
            StructuralValidator.validate(campaign_document)

        assert "Schema validation passed" in caplog.text
        assert "validated successfully" in caplog.text


class TestSchemaPass:
    """Tests for JSON Schema conformance."""

    def test_missing_required_field(self, make_document, make_prompt):
        document = make_document(make_prompt("p1"))
        del document["campaignName"]

        error = assert_fails(document, ValidationPass.SCHEMA)
        assert "campaignName" in error.message

    def test_unknown_field_reports_path(self, make_document, make_prompt):
        document = make_document(make_prompt("p1", colour="red"))

        error = assert_fails(document, ValidationPass.SCHEMA)
        assert error.message.startswith("surveys/0/contentList/0")

    def test_empty_content_list(self, make_document):
        assert_fails(make_document(), ValidationPass.SCHEMA)

    def test_not_a_mapping(self):
        assert_fails(["not", "a", "campaign"], ValidationPass.SCHEMA)

    def test_custom_schema_path(self, make_document, make_prompt, tmp_path):
        """Test an alternative schema can be supplied."""
        schema_file = tmp_path / "schema.json"
        schema_file.write_text(json.dumps({"type": "object", "required": ["owner"]}))

        with pytest.raises(StructuralError) as exc_info:
            StructuralValidator.validate(make_document(make_prompt("p1")), schema_file)
        assert exc_info.value.pass_name == ValidationPass.SCHEMA

    def test_unreadable_schema(self, tmp_path):
        """Test a broken schema is an internal fault."""
        with pytest.raises(ConfigurationError):
            load_schema(tmp_path / "missing.json")

        broken = tmp_path / "broken.json"
        broken.write_text('{"type": 12}')
        with pytest.raises(ConfigurationError):
            load_schema(broken)


class TestCampaignUrnPass:
    """Tests for campaign URN validation."""

    @pytest.mark.parametrize("urn", [
        "urn:campaign:example",
        "URN:Campaign:CA:UCLA:Example_1",
    ])
    def test_valid_urns(self, urn):
        assert is_valid_urn(urn)

    @pytest.mark.parametrize("urn", [
        "campaign:example",
        "urn:example",
        "urn:campaign:",
        "urn:campaign:bad value",
        "urn:campaign:dash-ed",
        "   ",
    ])
    def test_invalid_urns(self, urn):
        assert not is_valid_urn(urn)

    def test_invalid_urn_fails_document(self, make_document, make_prompt):
        document = make_document(make_prompt("p1"))
        document["campaignUrn"] = "campaign:example"
        assert_fails(document, ValidationPass.CAMPAIGN_URN)


class TestIdUniquenessPass:
    """Tests for global id uniqueness."""

    def test_duplicate_prompt_ids(self, make_document, make_prompt):
        """Test two prompts sharing an id fail."""
        document = make_document(make_prompt("p1"), make_prompt("p1"))

        error = assert_fails(document, ValidationPass.ID_UNIQUENESS)
        assert "p1" in error.message

    def test_duplicate_fails_before_type_validation(self, make_document, make_prompt):
        """Test uniqueness runs before prompt types are checked."""
        document = make_document(make_prompt("p1", "audio"), make_prompt("p1"))
        assert_fails(document, ValidationPass.ID_UNIQUENESS)

    def test_survey_and_prompt_share_namespace(self, make_document, make_prompt):
        assert_fails(make_document(make_prompt("s1")), ValidationPass.ID_UNIQUENESS)

    def test_duplicate_inside_repeatable_set(self, make_document, make_prompt):
        repeatable_set = {
            "repeatableSet": {
                "id": "set1",
                "terminationQuestion": "Again?",
                "terminationTrueLabel": "Yes",
                "terminationFalseLabel": "No",
                "terminationSkipEnabled": False,
                "prompts": [make_prompt("p1")],
            }
        }
        document = make_document(make_prompt("p1"), repeatable_set)
        assert_fails(document, ValidationPass.ID_UNIQUENESS)

    def test_duplicate_across_surveys(self, make_document, make_prompt):
        document = make_document(make_prompt("p1"))
        second = dict(document["surveys"][0], id="s2")
        document["surveys"].append(second)
        assert_fails(document, ValidationPass.ID_UNIQUENESS)


class TestPromptTypesAndProperties:
    """Tests for prompt type and property passes."""

    def test_unknown_prompt_type(self, make_document, make_prompt):
        assert_fails(make_document(make_prompt("p1", "audio")), ValidationPass.PROMPT_TYPES)

    def test_invalid_properties(self, make_document, make_prompt):
        document = make_document(make_prompt("p1", properties=[{"key": "min", "label": 5}]))
        assert_fails(document, ValidationPass.PROMPT_PROPERTIES)

    def test_single_choice_measurement_without_values(self, make_document, make_prompt):
        """Test measurement single choices need values."""
        prompt = make_prompt(
            "p1", "single_choice",
            properties=[{"key": 0, "label": "a"}, {"key": 1, "label": "b"}],
        )
        assert_fails(make_document(prompt), ValidationPass.PROMPT_PROPERTIES)


class TestConditionsPass:
    """Tests for condition validation and ordering."""

    def test_condition_within_bounds(self, make_document, make_prompt):
        """Test 'p1 > 5' passes for a [0, 10] number prompt."""
        document = make_document(make_prompt("p1"), make_prompt("p2", condition="p1 > 5"))
        StructuralValidator.validate(document)

    def test_condition_outside_bounds(self, make_document, make_prompt):
        """Test 'p1 > 11' fails for a [0, 10] number prompt."""
        document = make_document(make_prompt("p1"), make_prompt("p2", condition="p1 > 11"))
        assert_fails(document, ValidationPass.CONDITIONS)

    def test_first_item_cannot_have_condition(self, make_document, make_prompt):
        document = make_document(make_prompt("p1", condition="p2 == 1"), make_prompt("p2"))

        error = assert_fails(document, ValidationPass.CONDITIONS)
        assert "first item" in error.message

    def test_first_item_message_cannot_have_condition(self, make_document, make_prompt):
        message = {"message": {"id": "m1", "messageText": "Hi", "condition": "p1 == 1"}}
        assert_fails(make_document(message, make_prompt("p1")), ValidationPass.CONDITIONS)

    def test_forward_reference(self, make_document, make_prompt):
        document = make_document(
            make_prompt("p1"),
            make_prompt("p2", condition="p3 == 1"),
            make_prompt("p3"),
        )
        assert_fails(document, ValidationPass.CONDITIONS)

    def test_self_reference(self, make_document, make_prompt):
        document = make_document(make_prompt("p1"), make_prompt("p2", condition="p2 == 1"))
        assert_fails(document, ValidationPass.CONDITIONS)

    def test_reference_to_unknown_id(self, make_document, make_prompt):
        document = make_document(make_prompt("p1"), make_prompt("p2", condition="nope == 1"))
        assert_fails(document, ValidationPass.CONDITIONS)

    def test_reference_to_message(self, make_document, make_prompt):
        message = {"message": {"id": "m1", "messageText": "Hi"}}
        document = make_document(message, make_prompt("p2", condition="m1 == 1"))

        error = assert_fails(document, ValidationPass.CONDITIONS)
        assert "not a prompt" in error.message

    def test_reference_to_other_survey(self, make_document, make_prompt):
        document = make_document(make_prompt("p1"))
        document["surveys"].append({
            "id": "s2",
            "title": "Second",
            "submitText": "Done",
            "showSummary": False,
            "anytime": True,
            "contentList": [make_prompt("p2"), make_prompt("p3", condition="p1 == 1")],
        })
        assert_fails(document, ValidationPass.CONDITIONS)

    def test_malformed_condition(self, make_document, make_prompt):
        document = make_document(make_prompt("p1"), make_prompt("p2", condition="p1 >"))
        assert_fails(document, ValidationPass.CONDITIONS)

    def test_skipped_requires_skippable_reference(self, make_document, make_prompt):
        document = make_document(make_prompt("p1"), make_prompt("p2", condition="p1 == SKIPPED"))
        assert_fails(document, ValidationPass.CONDITIONS)

        document = make_document(
            make_prompt("p1", skippable=True, skipLabel="Skip"),
            make_prompt("p2", condition="p1 == SKIPPED"),
        )
        StructuralValidator.validate(document)

    def test_repeatable_set_ordering(self, make_document, make_prompt):
        """Test set prompts see earlier items; later items do not see set prompts."""
        repeatable_set = {
            "repeatableSet": {
                "id": "set1",
                "terminationQuestion": "Again?",
                "terminationTrueLabel": "Yes",
                "terminationFalseLabel": "No",
                "terminationSkipEnabled": False,
                "condition": "p1 > 2",
                "prompts": [
                    make_prompt("inner1", condition="p1 < 9"),
                    make_prompt("inner2", condition="inner1 == 3 and p1 == 4"),
                ],
            }
        }
        StructuralValidator.validate(make_document(make_prompt("p1"), repeatable_set))

        document = make_document(
            make_prompt("p1"),
            repeatable_set,
            make_prompt("p2", condition="inner1 == 3"),
        )
        assert_fails(document, ValidationPass.CONDITIONS)

    def test_repeatable_set_forward_reference(self, make_document, make_prompt):
        repeatable_set = {
            "repeatableSet": {
                "id": "set1",
                "terminationQuestion": "Again?",
                "terminationTrueLabel": "Yes",
                "terminationFalseLabel": "No",
                "terminationSkipEnabled": False,
                "prompts": [
                    make_prompt("inner1", condition="inner2 == 3"),
                    make_prompt("inner2"),
                ],
            }
        }
        assert_fails(make_document(make_prompt("p1"), repeatable_set), ValidationPass.CONDITIONS)


class TestDefaultsPass:
    """Tests for default value validation."""

    def test_valid_default(self, make_document, make_prompt):
        StructuralValidator.validate(make_document(make_prompt("p1", default=4)))

    def test_out_of_range_default(self, make_document, make_prompt):
        assert_fails(make_document(make_prompt("p1", default=40)), ValidationPass.DEFAULTS)

    def test_text_default_illegal(self, make_document, make_prompt):
        prompt = make_prompt(
            "p1", "text",
            default="hello",
            properties=[{"key": "min", "label": 1}, {"key": "max", "label": 10}],
        )
        assert_fails(make_document(prompt), ValidationPass.DEFAULTS)


class TestAuthoringRules:
    """Tests for survey, repeatable set and prompt rules."""

    def test_summary_requires_text_and_edit_flag(self, make_document, make_prompt):
        prompt = make_prompt("p1", abbreviatedText="P1")

        assert_fails(
            make_document(prompt, showSummary=True, editSummary=True),
            ValidationPass.SURVEY_RULES,
        )
        assert_fails(
            make_document(prompt, showSummary=True, summaryText="Summary"),
            ValidationPass.SURVEY_RULES,
        )
        StructuralValidator.validate(
            make_document(prompt, showSummary=True, summaryText="Summary", editSummary=False)
        )

    def test_termination_skip_requires_label(self, make_document, make_prompt):
        """Test terminationSkipEnabled without a label fails."""
        repeatable_set = {
            "repeatableSet": {
                "id": "set1",
                "terminationQuestion": "Again?",
                "terminationTrueLabel": "Yes",
                "terminationFalseLabel": "No",
                "terminationSkipEnabled": True,
                "prompts": [make_prompt("inner1")],
            }
        }
        assert_fails(make_document(make_prompt("p1"), repeatable_set), ValidationPass.REPEATABLE_SET_RULES)

    def test_skippable_requires_skip_label(self, make_document, make_prompt):
        assert_fails(make_document(make_prompt("p1", skippable=True)), ValidationPass.PROMPT_RULES)

    def test_summary_requires_abbreviated_text(self, make_document, make_prompt):
        document = make_document(
            make_prompt("p1"), showSummary=True, summaryText="Summary", editSummary=False
        )
        assert_fails(document, ValidationPass.PROMPT_RULES)

    def test_summary_requires_abbreviated_text_inside_sets(self, make_document, make_prompt):
        repeatable_set = {
            "repeatableSet": {
                "id": "set1",
                "terminationQuestion": "Again?",
                "terminationTrueLabel": "Yes",
                "terminationFalseLabel": "No",
                "terminationSkipEnabled": False,
                "prompts": [make_prompt("inner1")],
            }
        }
        document = make_document(
            make_prompt("p1", abbreviatedText="P1"),
            repeatable_set,
            showSummary=True, summaryText="Summary", editSummary=False,
        )
        assert_fails(document, ValidationPass.PROMPT_RULES)


class TestDisplayTypesPass:
    """Tests for display type validation."""

    def test_invalid_display_type(self, make_document, make_prompt):
        assert_fails(make_document(make_prompt("p1", displayType="chart")), ValidationPass.DISPLAY_TYPES)

    def test_multiple_metadata_timestamps_warn(self, make_document, make_prompt, caplog):
        """Test several metadata timestamps only produce a warning."""
        document = make_document(
            make_prompt("t1", "timestamp", displayType="metadata"),
            make_prompt("t2", "timestamp", displayType="metadata"),
        )

        with caplog.at_level(logging.WARNING, logger="campaign_core.services.campaign_validator"):
            StructuralValidator.validate(document)

        assert "2 timestamp prompts" in caplog.text
