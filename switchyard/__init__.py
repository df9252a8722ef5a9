"""Switchyard - a multi-provider terminal coding assistant."""

__version__ = "0.1.0"

from switchyard.config import Config

__all__ = ["Config", "__version__"]
