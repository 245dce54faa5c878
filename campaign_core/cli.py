"""Command line entry point for validating campaign documents."""

import json
import sys
from pathlib import Path
from typing import Optional

import click

from campaign_core.errors import CampaignError, StructuralError
from campaign_core.logging_config import setup_logging
from campaign_core.schemas.campaign import Configuration, RepeatableSet
from campaign_core.services.campaign_loader import CampaignLoader


def summarize(configuration: Configuration) -> dict:
    """Describe a compiled campaign's surveys and prompt counts."""
    surveys = {}
    for survey in configuration.surveys.values():
        surveys[survey.id] = {
            "title": survey.title,
            "items": len(survey.items),
            "prompts": sum(1 for _ in survey.iter_prompts()),
            "repeatable_sets": sum(1 for item in survey.items.values() if isinstance(item, RepeatableSet)),
        }
    return {"urn": configuration.urn, "name": configuration.name, "surveys": surveys}


@click.command(name="campaign-validate")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--schema", "schema_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="JSON Schema to validate against instead of the packaged one")
@click.option("--json", "output_json", is_flag=True, help="Print the campaign summary as JSON")
def main(file: Path, schema_path: Optional[Path], output_json: bool):
    """Validate a campaign document and report the first failing pass

    Examples:
        campaign-validate campaign.yaml
        campaign-validate campaign.yaml --schema custom.schema.json
    """
    setup_logging()
    loader = CampaignLoader()

    options = {}
    if schema_path is not None:
        options["schema_path"] = schema_path

    try:
        configuration = loader.load_file(file, **options)
    except StructuralError as e:
        click.echo(f"Invalid campaign ({e.pass_name.value}): {e.message}", err=True)
        sys.exit(1)
    except CampaignError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    summary = summarize(configuration)
    if output_json:
        click.echo(json.dumps(summary, indent=2))
        return

    click.echo(f"Campaign {summary['urn']} is valid")
    for survey_id, details in summary["surveys"].items():
        click.echo(
            f"  {survey_id}: {details['items']} items, {details['prompts']} prompts, "
            f"{details['repeatable_sets']} repeatable sets"
        )


if __name__ == "__main__":
    main()
