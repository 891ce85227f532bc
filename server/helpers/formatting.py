import math

import colorama
from colorama import Fore, Style

colorama.init(autoreset=True)


def format_duration(seconds: float) -> str:
    """Return ``seconds`` as ``m:ss`` (fractions are rounded down)."""
    total = max(0, int(math.floor(seconds)))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"


__all__ = ["Fore", "Style", "format_duration"]
