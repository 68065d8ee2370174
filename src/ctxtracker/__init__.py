"""ctxtracker: turns coding-assistant conversation logs into project facts."""

__version__ = "0.1.0"
