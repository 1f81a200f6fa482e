"""State model for an async task console: tasks, resources, async operations and histograms."""

__version__ = "0.1.0"