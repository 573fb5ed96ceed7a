# chatstream/ui/__init__.py
"""
ChatStream UI Module
Terminal colors for the chat REPL.
"""

from . import colors
from .colors import colorize, color_enabled

__all__ = [
    "colors",
    "colorize",
    "color_enabled",
]
