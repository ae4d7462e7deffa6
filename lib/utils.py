# =============================================================================
# lib/utils.py - Shared Utilities
# =============================================================================
# Common helpers used across the application.
# =============================================================================

import os
import re


# =============================================================================
# File Names
# =============================================================================

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def split_extension(filename: str) -> tuple[str, str]:
    """Split "photo.final.JPG" into ("photo.final", ".jpg")."""
    stem, ext = os.path.splitext(os.path.basename(filename))
    return stem, ext.lower()


def sanitize_filename(filename: str, max_length: int = 100) -> str:
    """
    Make a file name safe for use inside a storage key.

    Drops any directory part, replaces runs of unsafe characters with "-",
    and trims the stem so the result stays under max_length.

    Example:
        sanitize_filename("../My Photo (1).JPG")  # "My-Photo-1.jpg"
    """
    stem, ext = split_extension(filename)
    stem = _UNSAFE_CHARS.sub("-", stem).strip("-.") or "image"
    return stem[: max_length - len(ext)] + ext


# =============================================================================
# Units
# =============================================================================

def fahrenheit_to_celsius(value: float) -> float:
    """Convert °F to °C, rounded to 2 decimals."""
    return round((value - 32) * 5 / 9, 2)


def to_celsius(value: float, unit: str) -> float:
    """Return the temperature in °C for a value given in `unit` ("C" or "F")."""
    return fahrenheit_to_celsius(value) if unit.upper() == "F" else round(value, 2)

