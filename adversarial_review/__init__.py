"""Adversarial multi-agent code review loop."""

__version__ = "0.1.0"
