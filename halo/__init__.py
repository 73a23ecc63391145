"""Halo Guardian - ambient scam and threat detection on a local language model."""

__version__ = "0.3.0"
