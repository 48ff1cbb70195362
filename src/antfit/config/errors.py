"""Typed exceptions for antfit setup-time errors."""


class ConfigurationError(ValueError):
    """
    Raised when the analysis is configured inconsistently, e.g. overlapping
    prompt/random ranges or a malformed decay topology. Fatal at startup.
    """
