"""Campaign loader service.

This module turns campaign document text into compiled Configuration
objects (parse, validate, build) and provides a registry holding the current
Configuration of each campaign, replaced atomically when a campaign is
revised.
"""

import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from campaign_core.config import Settings, get_settings
from campaign_core.errors import CampaignError, StructuralError, ValidationPass
from campaign_core.schemas.campaign import Configuration, PrivacyState, RunningState
from campaign_core.logging_config import get_logger
from campaign_core.services.campaign_validator import StructuralValidator
from campaign_core.services.schema_builder import SchemaBuilder

logger = get_logger(__name__)

_TEXT_TAGS = frozenset({
    "tag:yaml.org,2002:bool",
    "tag:yaml.org,2002:int",
    "tag:yaml.org,2002:float",
    "tag:yaml.org,2002:timestamp",
})


class CampaignNotFoundError(CampaignError):
    """Raised when a campaign document file does not exist."""
    pass


class CampaignDocumentLoader(yaml.SafeLoader):
    """YAML loader that keeps scalars as the text the author wrote.

    Only ``true``/``false`` and null resolve implicitly. YAML 1.1 spellings
    such as ``No``, ``on``, ``010`` or ``2020-01-01T10:00:00`` stay strings.
    """


CampaignDocumentLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp) for tag, regexp in resolvers
        if tag not in _TEXT_TAGS
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
CampaignDocumentLoader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


def parse_document(text: str) -> Dict[str, Any]:
    """Parse campaign document text as YAML.

    Raises:
        StructuralError: If the text is not YAML or not a mapping
    """
    try:
        document = yaml.load(text, Loader=CampaignDocumentLoader)
    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in campaign document: {e}")
        raise StructuralError(ValidationPass.DOCUMENT, f"Invalid YAML: {e}") from e

    if not isinstance(document, dict):
        raise StructuralError(ValidationPass.DOCUMENT, "Campaign document must be a mapping")
    return document


def compile_campaign(
    text: str,
    *,
    running_state: RunningState = RunningState.RUNNING,
    privacy_state: PrivacyState = PrivacyState.PRIVATE,
    creation_timestamp: Optional[datetime] = None,
    schema_path: Optional[Path] = None
) -> Configuration:
    """Validate campaign document text and compile it.

    Args:
        text: Campaign document (YAML or JSON)
        running_state: Initial running state
        privacy_state: Initial privacy state
        creation_timestamp: Creation time, defaults to now
        schema_path: Schema to validate against, defaults to the packaged one

    Returns:
        Compiled Configuration

    Raises:
        StructuralError: If the document fails any validation pass
        ConfigurationError: If the schema cannot be loaded

    Example:
        >>> configuration = compile_campaign(Path("campaign.yaml").read_text())
        >>> configuration.get_prompt_type("s1", "q1")
        <PromptType.NUMBER: 'number'>
    """
    document = parse_document(text)
    StructuralValidator.validate(document, schema_path)
    return SchemaBuilder.build(
        document,
        source_text=text,
        running_state=running_state,
        privacy_state=privacy_state,
        creation_timestamp=creation_timestamp,
    )


class CampaignLoader:
    """Service for loading campaign documents with size limits applied."""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize campaign loader.

        Args:
            settings: Engine settings (defaults to get_settings())
        """
        self.settings = settings or get_settings()

    def load_text(self, text: str, **options) -> Configuration:
        """Compile campaign document text.

        Args:
            text: Campaign document
            **options: Passed through to compile_campaign

        Raises:
            StructuralError: If the document is too large or invalid
        """
        size = len(text.encode("utf-8"))
        self._check_size(size)
        options.setdefault("schema_path", self.settings.schema_path)
        return compile_campaign(text, **options)

    def load_file(self, path: Union[str, Path], **options) -> Configuration:
        """Read and compile a campaign document from disk.

        Args:
            path: Location of the document
            **options: Passed through to compile_campaign

        Raises:
            CampaignNotFoundError: If the file does not exist
            StructuralError: If the document is too large, not UTF-8 or invalid
        """
        path = Path(path)
        if not path.is_file():
            logger.error(f"Campaign file not found: {path}")
            raise CampaignNotFoundError(f"Campaign document not found at {path}")

        self._check_size(path.stat().st_size)
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            logger.error(f"Campaign file {path} is not UTF-8: {e}")
            raise StructuralError(ValidationPass.DOCUMENT, f"Campaign document is not UTF-8: {e}") from e

        configuration = self.load_text(text, **options)
        logger.info(f"Loaded campaign {configuration.urn} from {path}")
        return configuration

    def _check_size(self, size: int) -> None:
        limit = self.settings.max_document_bytes
        if size > limit:
            raise StructuralError(
                ValidationPass.DOCUMENT,
                f"Campaign document is {size} bytes, more than the {limit} byte limit"
            )


class ConfigurationRegistry:
    """Holds the current Configuration of each campaign, keyed by URN.

    Writers build a new mapping and swap it in under a lock; readers take the
    current mapping without locking and never see a partial update.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._configurations: Dict[str, Configuration] = {}

    def install(self, configuration: Configuration) -> Optional[Configuration]:
        """Make ``configuration`` the current version of its campaign.

        Returns:
            The Configuration it replaced, if any
        """
        with self._lock:
            previous = self._configurations.get(configuration.urn)
            updated = dict(self._configurations)
            updated[configuration.urn] = configuration
            self._configurations = updated

        if previous is None:
            logger.info(f"Installed campaign {configuration.urn}")
        else:
            logger.info(f"Replaced campaign {configuration.urn}")
        return previous

    def remove(self, urn: str) -> Optional[Configuration]:
        with self._lock:
            if urn not in self._configurations:
                return None
            updated = dict(self._configurations)
            removed = updated.pop(urn)
            self._configurations = updated

        logger.info(f"Removed campaign {urn}")
        return removed

    def get(self, urn: str) -> Optional[Configuration]:
        return self._configurations.get(urn)

    def urns(self) -> List[str]:
        return sorted(self._configurations)

    def __contains__(self, urn: str) -> bool:
        return urn in self._configurations

    def __len__(self) -> int:
        return len(self._configurations)
