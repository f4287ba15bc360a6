"""Water scheduler: switches GPIO water pumps on a daily schedule."""

__version__ = "0.1.0"
