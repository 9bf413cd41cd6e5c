"""
Sanitization helpers for user-provided text: uploaded filenames, values that
end up in log lines, spreadsheet headers and anything placed in an AI prompt.
"""
import re
from typing import Any

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f-\x9f]')
_PROMPT_INSTRUCTION_PATTERNS = ['SYSTEM:', 'USER:', 'ASSISTANT:', 'IGNORE', 'FORGET', 'NEW INSTRUCTION']


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """
    Sanitize filename to prevent path traversal and log injection.

    Args:
        filename: Original filename
        max_length: Maximum length of sanitized filename

    Returns:
        Sanitized filename safe for logging and responses
    """
    if not filename:
        return "unknown"

    # Remove path components
    filename = filename.split('/')[-1].split('\\')[-1]
    filename = _CONTROL_CHARS.sub('', filename)
    filename = filename.strip('. ')

    if len(filename) > max_length:
        filename = filename[:max_length]

    return filename or "unknown"


def sanitize_for_logging(value: Any, max_length: int = 500) -> str:
    """Flatten a value onto one line and cap its length (prevents log injection)."""
    if value is None or value == "":
        return ""
    value = str(value)
    value = re.sub(r'[\r\n]', ' ', value)
    value = _CONTROL_CHARS.sub('', value)

    if len(value) > max_length:
        value = value[:max_length] + "..."

    return value


def sanitize_for_prompt(value: Any, max_length: int = 100) -> str:
    """
    Sanitize spreadsheet text (headers, sample cells) before it enters an AI prompt.

    Drops non-printable characters and newlines, caps the length and
    brackets phrases that read like chat-role or override instructions.
    """
    if value is None:
        return ""
    text = str(value)
    sanitized = ''.join(char for char in text if char.isprintable() and char not in '\n\r\t')

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    for pattern in _PROMPT_INSTRUCTION_PATTERNS:
        sanitized = sanitized.replace(pattern, f'[{pattern}]')

    return sanitized


def clean_column_name(name: Any, position: int) -> str:
    """Header text as a usable column name; blank headers become 'Column_<n>'."""
    text = "" if name is None else str(name)
    text = ' '.join(text.split())
    return text or f"Column_{position + 1}"


def validate_column_name(name: str) -> bool:
    """
    Validate that a column name is safe.

    Args:
        name: Column name to validate

    Returns:
        True if safe, False otherwise
    """
    if not name or len(name) > 1000:
        return False

    dangerous_patterns = [
        r'\.\.',  # Path traversal
        # Tabs and newlines are common in headers; other control characters are not
        r'[\x00-\x08\x0b\x0c\x0e-\x1f]',
        r'^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])$',  # Reserved names (Windows)
    ]

    for pattern in dangerous_patterns:
        if re.search(pattern, name, re.IGNORECASE):
            return False

    return True
