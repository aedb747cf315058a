"""Symphony - parallel coding-agent orchestration with human approval gates."""

__version__ = "0.1.0"
