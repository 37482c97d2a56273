"""
String normalization utilities for event matching.

Provides consistent string normalization for comparing titles and
locations between the local database and Spond.
"""

from __future__ import annotations

import re
import unicodedata


def normalize_string(value: str | None, remove_spaces: bool = True) -> str:
    """
    Normalize a string for comparison.

    Args:
        value: String to normalize
        remove_spaces: If True, remove all spaces from the result.
                      If False, multiple spaces are collapsed to single space.

    Returns:
        Normalized lowercase string with accents and punctuation removed
    """
    if not value:
        return ""

    # Normalize unicode (decompose accents, etc.)
    normalized = unicodedata.normalize("NFKD", value)

    # Remove combining characters (accents)
    normalized = "".join(c for c in normalized if not unicodedata.combining(c))

    normalized = re.sub(r"[^a-z0-9\s]", " ", normalized.lower())

    # Normalize whitespace
    normalized = re.sub(r"\s+", " ", normalized).strip()

    if remove_spaces:
        normalized = normalized.replace(" ", "")

    return normalized
