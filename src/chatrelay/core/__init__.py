"""Relay core: conversation assembly, streaming adapter, error translation."""
