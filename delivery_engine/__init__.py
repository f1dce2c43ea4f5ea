"""Delivery task lifecycle engine with a local mirror and a remote task gateway."""

__version__ = "0.1.0"
