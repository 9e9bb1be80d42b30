"""Mideeye: Somali-language community Q&A platform."""

__version__ = "0.1.0"
