"""Media workflow engine: agent-driven image and video generation pipelines."""

__version__ = "1.0.0"
