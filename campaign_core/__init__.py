"""Campaign definition validator and survey response validation engine."""

__version__ = "0.1.0"
