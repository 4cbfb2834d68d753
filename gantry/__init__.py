"""gantry: conditional CI trigger and ephemeral-runner lifecycle controller."""

__version__ = "0.1.0"
__all__ = ["__version__"]
