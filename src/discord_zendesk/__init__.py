"""Discord forum <-> Zendesk Channel Framework bridge."""

__version__ = "0.1.0"
