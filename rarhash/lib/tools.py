"""
Miscellaneous helper functions.
"""
from __future__ import annotations

import inspect
import os
import re
import sys


def get_terminal_size(default=0):
    """
    Returns the size of the currently attached terminal. If the width of the terminal cannot be
    determined or if the width is less than 2 characters, the function returns the default.
    """
    width = default
    for stream in (sys.stderr, sys.stdout):
        if stream.isatty():
            try:
                width = os.get_terminal_size(stream.fileno()).columns
            except Exception:
                width = default
            else:
                break
    return default if width < 2 else width - 1


def documentation(unit):
    """
    Return the documentation string of a given unit as it should be displayed on the command line.
    Reference markup for the generated documentation is removed.
    """
    docs = inspect.getdoc(unit) or ''
    docs = re.sub(R'`rarhash\.(?:\w+\.)*(\w+)`', R'\1', docs)
    return docs.replace('`', '')


def skipfirst(iterable):
    """
    Skip the first element of an iterable.
    """
    it = iter(iterable)
    next(it, None)
    yield from it


def normalize_word_separators(words: str, unified_separator: str, strip: bool = True):
    normalized = re.sub('[-\\s_.]+', unified_separator, words)
    if strip:
        normalized = normalized.strip(unified_separator)
    return normalized


def normalize_to_display(words: str, strip: bool = True):
    """
    Normalizes all separators to dashes.
    """
    return normalize_word_separators(words, '-', strip)


def normalize_to_identifier(words: str, strip: bool = True):
    """
    Normalizes all separators to underscores.
    """
    return normalize_word_separators(words, '_', strip)


def exception_to_string(exception: BaseException, default=None) -> str:
    """
    Attempts to convert a given exception to a good description that can be exposed to the user.
    """
    if not exception.args:
        return exception.__class__.__name__
    it = (a for a in exception.args if isinstance(a, str))
    if default is None:
        default = str(exception)
    return max(it, key=len, default=default).strip()
