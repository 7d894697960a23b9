"""Fan-out/fan-in subtask coordinator."""

__version__ = "0.1.0"
