"""Terminal-safe plain output and debug tracing.

Detects the terminal encoding and swaps the icons and arrows used in
diagnostics for ASCII on terminals that cannot print them (legacy Windows
consoles, CI logs piped through cp1252).
"""
import os
import sys
import locale
from typing import Callable


# Unicode to ASCII replacements for non-UTF-8 terminals
ICON_MAP = {
    # Status icons
    '✓': '[OK]',
    '✔': '[OK]',
    '✅': '[OK]',
    '✗': '[FAIL]',
    '✘': '[FAIL]',
    '❌': '[FAIL]',
    '⚠️': '[WARN]',
    '⚠': '[WARN]',
    '⚡': '[!]',

    # Arrows
    '→': '->',
    '←': '<-',
    '⇒': '=>',

    # Punctuation found in diagnostic messages
    '—': '-',
    '…': '...',
    '•': '*',
    '🔍': '[check]',
    '🔧': '[fix]',
    '💾': '[save]',
}


def detect_terminal_encoding() -> str:
    """Detect the terminal's encoding capability.

    Returns:
        str: Terminal encoding ('utf-8', 'cp1252', 'ascii', etc.)
    """
    if hasattr(sys.stdout, 'encoding') and sys.stdout.encoding:
        return sys.stdout.encoding.lower()

    try:
        return locale.getpreferredencoding().lower()
    except Exception:
        pass

    return 'ascii'


def is_utf8_capable() -> bool:
    """Check if the terminal can handle UTF-8 Unicode characters."""
    return detect_terminal_encoding() in ('utf-8', 'utf8', 'utf_8')


def sanitize_for_terminal(text: str) -> str:
    """Replace Unicode icons with ASCII equivalents if terminal doesn't support UTF-8.

    Args:
        text: Text potentially containing Unicode icons

    Returns:
        str: Sanitized text safe for current terminal
    """
    if is_utf8_capable():
        return text

    sanitized = text
    for unicode_char, ascii_replacement in ICON_MAP.items():
        sanitized = sanitized.replace(unicode_char, ascii_replacement)
    return sanitized


def create_safe_print() -> Callable:
    """Create a print function that automatically sanitizes output."""
    def safe_print(*args, **kwargs):
        sanitized_args = [
            sanitize_for_terminal(arg) if isinstance(arg, str) else arg
            for arg in args
        ]
        print(*sanitized_args, **kwargs)

    return safe_print


safe_print = create_safe_print()


def debug_enabled() -> bool:
    """True when CONSUMELINT_DEBUG is set to a truthy value."""
    return os.getenv("CONSUMELINT_DEBUG", "").strip().lower() in ('1', 'true', 'yes', 'on')


def debug(message: str):
    """Trace line on stderr, only printed in debug mode."""
    if debug_enabled():
        safe_print(f"[consumelint] {message}", file=sys.stderr)
