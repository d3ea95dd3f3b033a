"""
Pipeline Errors
===============

Exception hierarchy for the bookings pipeline.

Data-content problems (bad dates, bad prices, invalid records) never raise;
they degrade to nulls and flags. Only the failures below reach the caller.
"""


class PipelineError(Exception):
    """Base exception for all bookings pipeline failures."""


class ConfigError(PipelineError):
    """Raised for missing or malformed job and stage configuration."""


class SourceUnavailableError(PipelineError):
    """Raised when the landing zone or an upstream table cannot be read."""


class SinkUnavailableError(PipelineError):
    """Raised when an output table cannot be written. Prior output is kept."""


class SchemaContractError(PipelineError):
    """Raised when landing data lacks columns the staging model needs."""


class DataQualityError(PipelineError):
    """Raised when a built table fails a blocking quality check."""
