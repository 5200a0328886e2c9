"""STAC search to OpenSearch DSL translation, and STAC API compatibility, benchmark-report and seeding tools."""

__version__ = "0.1.0"