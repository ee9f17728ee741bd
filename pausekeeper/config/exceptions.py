"""
Configuration-related exceptions for pausekeeper.
"""


class ConfigurationError(Exception):
    """
    Raised when configuration loading or validation fails.
    
    Covers unreadable or syntactically invalid YAML files and watched
    resource entries that fail pydantic validation.
    """
    pass
