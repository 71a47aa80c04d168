"""
AgentCommons command-line tools.
"""

from .main import app, main

__all__ = ["app", "main"]
