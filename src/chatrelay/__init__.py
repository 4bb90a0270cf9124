"""Streaming chat relay: provider tokens in, event-stream frames out."""

__version__ = "0.1.0"
