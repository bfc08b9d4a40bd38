"""Version of the mitokens library."""

__version__ = "0.3.0"
