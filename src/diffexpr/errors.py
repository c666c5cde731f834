"""Exceptions raised by the differential expression pipeline."""


class FormatError(ValueError):
    """The expression table is malformed or inconsistent."""


class ConfigurationError(ValueError):
    """The configuration or the sample group assignment is invalid."""
