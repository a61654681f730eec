"""flowdesk: resumable agent chat streaming service."""

__version__ = "0.1.0"
