"""cc-sessions: parse, summarize and search AI coding-agent session logs."""

__version__ = "0.1.0"
