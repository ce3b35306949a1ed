"""Replacement engine for the edit_file tool.

Provides a single public function `replace()` that substitutes every
occurrence of a search string in file content and reports how many were
replaced. The search is literal by default; pattern mode uses Python
regular expressions.
"""

from __future__ import annotations

import re


def _compile(search: str, regex: bool) -> re.Pattern:
    if not regex:
        return re.compile(re.escape(search))
    try:
        return re.compile(search)
    except re.error as e:
        raise ValueError(f"invalid pattern: {e}") from e


def replace(
    content: str,
    search: str,
    replacement: str,
    regex: bool = False,
) -> tuple[str, int]:
    """Replace all occurrences of search with replacement in content.

    Returns (new_content, count). When count is 0, new_content is content
    unchanged.

    In literal mode the replacement is inserted verbatim. In regex mode
    the replacement may use group references (\\1, \\g<name>).

    Raises ValueError:
      - "search pattern must not be empty" for an empty search
      - "invalid pattern: ..." if regex is True and search does not compile
    """
    if not search:
        raise ValueError("search pattern must not be empty")

    pattern = _compile(search, regex)
    if regex:
        try:
            new_content, count = pattern.subn(replacement, content)
        except re.error as e:
            raise ValueError(f"invalid replacement: {e}") from e
    else:
        new_content, count = pattern.subn(lambda _m: replacement, content)

    if count == 0:
        return content, 0
    return new_content, count
