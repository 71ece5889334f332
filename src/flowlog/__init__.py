"""flowlog: memory-aware logging and cross-system tracing for CLI orchestration."""

__version__ = "0.1.0"

__all__ = ["__version__"]
