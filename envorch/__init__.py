"""envorch — environment lifecycle orchestrator for preview environments."""

__version__ = "0.1.0"
