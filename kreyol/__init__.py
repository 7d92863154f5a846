"""Top-level package for kreyol."""

__version__ = "0.1.0"

from . import config, history, models, pipeline, providers

__all__ = ["config", "history", "models", "pipeline", "providers", "__version__"]
