"""Pytest configuration and shared fixtures.

This module provides campaign documents and factories used across all tests.
"""

import copy
import os
from datetime import datetime
from typing import Any, Callable, Dict

import pytest

# Set environment variables for tests BEFORE importing engine modules
os.environ.setdefault("CAMPAIGN_ENVIRONMENT", "development")

from campaign_core.schemas.campaign import Configuration
from campaign_core.services.campaign_loader import compile_campaign, parse_document


CAMPAIGN_YAML = """
campaignUrn: urn:campaign:ca:ucla:test
campaignName: Test Campaign
description: A campaign used in tests
surveys:
  - id: daily
    title: Daily Survey
    submitText: Thanks for responding!
    showSummary: false
    anytime: true
    contentList:
      - message:
          id: welcome
          messageText: Welcome to the daily survey
      - prompt:
          id: sleep
          promptType: number
          displayType: measurement
          displayLabel: Hours of sleep
          promptText: How many hours did you sleep?
          unit: hours
          skippable: true
          skipLabel: Skip
          default: 8
          properties:
            - {key: min, label: 0}
            - {key: max, label: 24}
      - prompt:
          id: rested
          promptType: single_choice
          displayType: category
          displayLabel: Rested
          promptText: Do you feel rested?
          skippable: false
          condition: sleep > 4
          default: "Yes"
          properties:
            - {key: 0, label: "No"}
            - {key: 1, label: "Yes"}
      - prompt:
          id: activities
          promptType: multi_choice
          displayType: category
          displayLabel: Activities
          promptText: What did you do today?
          skippable: true
          skipLabel: Skip
          properties:
            - {key: 0, label: Walk}
            - {key: 1, label: Run}
            - {key: 2, label: Swim}
      - prompt:
          id: notes
          promptType: text
          displayType: event
          displayLabel: Notes
          promptText: Anything else?
          skippable: true
          skipLabel: Skip
          condition: rested == 1 or sleep == SKIPPED
          properties:
            - {key: min, label: 1}
            - {key: max, label: 200}
      - prompt:
          id: taken
          promptType: timestamp
          displayType: metadata
          displayLabel: Taken at
          promptText: When did you take this survey?
          skippable: false
      - repeatableSet:
          id: meals
          terminationQuestion: Did you have another meal?
          terminationTrueLabel: "Yes"
          terminationFalseLabel: "No"
          terminationSkipEnabled: true
          terminationSkipLabel: No meals today
          condition: sleep != SKIPPED
          prompts:
            - prompt:
                id: meal_size
                promptType: number
                displayType: count
                displayLabel: Meal size
                promptText: How large was the meal?
                skippable: false
                properties:
                  - {key: min, label: 1}
                  - {key: max, label: 5}
            - prompt:
                id: meal_photo
                promptType: photo
                displayType: event
                displayLabel: Meal photo
                promptText: Take a photo of the meal
                skippable: true
                skipLabel: No photo
                condition: meal_size >= 3
                properties:
                  - {key: res, label: 720}
      - prompt:
          id: game
          promptType: remote_activity
          displayType: event
          displayLabel: Memory game
          promptText: Play the memory game
          skippable: true
          skipLabel: Not now
          properties:
            - {key: package, label: org.ohmage.game}
            - {key: activity, label: org.ohmage.game.MemoryGame}
            - {key: action, label: org.ohmage.PLAY}
            - {key: autolaunch, label: "true"}
            - {key: retries, label: 1}
            - {key: min_runs, label: 1}
      - prompt:
          id: snack
          promptType: single_choice_custom
          displayType: category
          displayLabel: Snack
          promptText: What was your favourite snack?
          skippable: true
          skipLabel: Skip
  - id: weekly
    title: Weekly Survey
    submitText: See you next week
    showSummary: true
    editSummary: false
    summaryText: Here is what you told us
    anytime: false
    contentList:
      - prompt:
          id: weight
          promptType: number
          displayType: measurement
          displayLabel: Weight
          promptText: What is your weight?
          abbreviatedText: Weight
          unit: kg
          skippable: false
          properties:
            - {key: min, label: 0}
            - {key: max, label: 500}
"""


@pytest.fixture
def campaign_yaml() -> str:
    """Provide a valid campaign document exercising every item kind.

    Returns:
        str: Campaign document YAML
    """
    return CAMPAIGN_YAML


@pytest.fixture
def campaign_document() -> Dict[str, Any]:
    """Provide the valid campaign document as loaded YAML data."""
    return parse_document(CAMPAIGN_YAML)


@pytest.fixture
def configuration() -> Configuration:
    """Provide the valid campaign compiled into a Configuration."""
    return compile_campaign(CAMPAIGN_YAML, creation_timestamp=datetime(2024, 1, 1, 12, 0, 0))


@pytest.fixture
def metadata() -> Dict[str, Any]:
    """Provide response metadata without a location."""
    return {
        "time": "2024-05-01T10:00:00",
        "timezone": "America/Los_Angeles",
        "location_status": "unavailable",
    }


@pytest.fixture
def make_prompt() -> Callable[..., Dict[str, Any]]:
    """Provide a factory for prompt content entries.

    Defaults to a non-skippable number prompt bounded by [0, 10]; keyword
    arguments override or add prompt fields. Passing a field as None removes it.
    """
    def factory(prompt_id: str, prompt_type: str = "number", **fields) -> Dict[str, Any]:
        prompt = {
            "id": prompt_id,
            "promptType": prompt_type,
            "displayType": "measurement",
            "displayLabel": prompt_id,
            "promptText": f"Question {prompt_id}",
            "skippable": False,
        }
        if prompt_type in ("number", "hours_before_now"):
            prompt["properties"] = [{"key": "min", "label": 0}, {"key": "max", "label": 10}]

        for field, value in fields.items():
            if value is None:
                prompt.pop(field, None)
            else:
                prompt[field] = value
        return {"prompt": prompt}

    return factory


@pytest.fixture
def make_document() -> Callable[..., Dict[str, Any]]:
    """Provide a factory for single-survey campaign documents.

    Keyword arguments override survey fields.
    """
    def factory(*content: Dict[str, Any], **survey_fields) -> Dict[str, Any]:
        survey = {
            "id": "s1",
            "title": "Survey",
            "submitText": "Submit",
            "showSummary": False,
            "anytime": True,
            "contentList": [copy.deepcopy(entry) for entry in content],
        }
        survey.update(survey_fields)
        return {
            "campaignUrn": "urn:campaign:test:example",
            "campaignName": "Example",
            "surveys": [survey],
        }

    return factory
