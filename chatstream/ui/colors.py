# chatstream/ui/colors.py
"""
ChatStream terminal colors.
ANSI codes for the chat REPL; disabled when output is not a terminal.
"""

import os
import sys

# ═══════════════════════════════════════════════════════════════
# PALETTE
# ═══════════════════════════════════════════════════════════════

NEON_PURPLE = "\033[38;5;165m"     # Brand / borders
BRIGHT_MAGENTA = "\033[38;5;201m"  # Assistant text
ELECTRIC_CYAN = "\033[38;5;51m"    # User prompt / headings
MID_GRAY = "\033[38;5;250m"        # Muted labels
GLITCH_RED = "\033[38;5;196m"      # Errors
GLITCH_GREEN = "\033[38;5;46m"     # Success
NEON_YELLOW = "\033[38;5;226m"     # Warnings

BOLD = "\033[1m"
DIM = "\033[2m"
RESET = "\033[0m"

# ═══════════════════════════════════════════════════════════════
# SEMANTIC ROLES
# ═══════════════════════════════════════════════════════════════

PROMPT_FG = f"{BOLD}{ELECTRIC_CYAN}"
AI_FG = BRIGHT_MAGENTA
MUTED_FG = MID_GRAY
ERROR_FG = GLITCH_RED
SUCCESS_FG = GLITCH_GREEN
WARNING_FG = NEON_YELLOW


def color_enabled(stream=None) -> bool:
    """Colors only for real terminals, and never when NO_COLOR is set."""
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def colorize(text: str, color: str, style: str = "", enabled: bool = True) -> str:
    """Apply color and optional style to text"""
    if not enabled:
        return text
    return f"{style}{color}{text}{RESET}"
