"""
Text cleanup for scraped service fields.

Rows extracted from the provider portal come from HTML table cells and carry
non-breaking spaces, stray control characters, smart quotes pasted by call
center agents, and line breaks inside addresses. These helpers turn them into
single-line plain text before anything is compared or stored.
"""

import unicodedata
from typing import Any, Optional
import logging


# Typographic punctuation folded to ASCII so that the same text typed two
# different ways compares equal between runs
PUNCTUATION_MAP = str.maketrans({
    '“': '"',
    '”': '"',
    '‘': "'",
    '’': "'",
    '´': "'",  # Acute accent used as apostrophe
    '–': '-',
    '—': '-',
    '…': '...',
    ' ': ' ',  # No-break space from &nbsp; cells
})


def sanitize_text(
    text: Any,
    max_length: int = 500,
    logger: Optional[logging.Logger] = None
) -> str:
    """
    Clean a scraped text value.

    1. None, empty and non-string values become '' (numbers are stringified)
    2. Unicode is normalized to NFC
    3. Control (Cc) and format (Cf) characters are removed
    4. Typographic punctuation and no-break spaces are folded to ASCII
    5. Runs of whitespace collapse to single spaces, ends are trimmed
    6. Values over max_length are cut, at a word boundary when one is near

    Args:
        text: The raw value
        max_length: Maximum length (0 = no limit). Default 500.
        logger: Optional logger for debug output

    Returns:
        Cleaned single-line string
    """
    if text is None or text == '':
        return ''
    if isinstance(text, bool):
        return ''
    if isinstance(text, (int, float)):
        text = str(text)
    if not isinstance(text, str):
        return ''

    original = text

    text = unicodedata.normalize('NFC', text)
    # Line breaks are whitespace, not content: turn them into spaces before
    # control characters are stripped so words don't glue together
    text = ''.join(
        ' ' if char in '\r\n\t' else char
        for char in text
        if char in '\r\n\t' or unicodedata.category(char) not in ('Cc', 'Cf')
    )
    text = text.translate(PUNCTUATION_MAP)
    text = ' '.join(text.split())

    if max_length > 0 and len(text) > max_length:
        truncated = text[:max_length]
        last_space = truncated.rfind(' ')
        if last_space > max_length * 0.8:
            text = truncated[:last_space]
        else:
            text = truncated

    if logger and text != original:
        logger.debug(f"Sanitized text: {len(original)} -> {len(text)} chars")

    return text


def join_address(street: Any, locality: Any) -> str:
    """Join street and locality parts with a single space, trimmed."""
    parts = [sanitize_text(street), sanitize_text(locality)]
    return ' '.join(part for part in parts if part).strip()
