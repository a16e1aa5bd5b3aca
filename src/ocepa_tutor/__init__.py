"""Ocepa AI tutor: multi-conversation chat client and Gemini proxy."""

__version__ = "0.1.0"
