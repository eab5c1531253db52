"""Pattern-based extraction of utility class tokens from source text.

Two independent passes run over the same text:

- attribute pass: ``class=`` / ``className=`` followed by a quoted literal or a
  brace expression (two levels of nested braces tolerated)
- function-call pass: calls to class-builder helpers (``tw``, ``cls``, ``clsx``,
  ``classnames``, ``cva``)

Every quoted string inside a brace expression or a helper call is treated as a
class list, so non-class strings in dynamic bindings are counted too.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterable, Iterator, Mapping

from classtally.analysis.filters import is_eligible_path
from classtally.schemas import ClassCount


# A brace block nesting at most two more levels of braces
_BRACES = r"\{(?:[^{}]|\{(?:[^{}]|\{[^{}]*\})*\})*\}"

_CLASS_ATTRIBUTE = re.compile(
    r"""class(?:Name)?=(?:["']\s*([^"']*)\s*["']|""" + _BRACES + r")"
)

_CLASS_FUNCTION_START = re.compile(r"(?:tw|cls|clsx|classnames|cva)\(")

# Whole-argument forms, tried in order before free-form arguments
_CALL_ARGUMENTS = (
    re.compile(r"""["'][^"']*["']\)"""),
    re.compile(_BRACES + r"\)"),
)

_BRACE_BLOCK = re.compile(_BRACES)
_TO_PAREN = re.compile(r"[^()]*")

_QUOTED = re.compile(r"""["']([^"']*)["']""")


def split_class_string(class_string: str) -> list[str]:
    """Whitespace-tokenize a class list, dropping empty tokens."""
    return [token.strip() for token in class_string.split() if token.strip()]


def _quoted_tokens(text: str) -> list[str]:
    tokens: list[str] = []
    for quoted in _QUOTED.findall(text):
        tokens.extend(split_class_string(quoted))
    return tokens


def _free_arguments_end(content: str, start: int, failed: set[int]) -> int | None:
    """End of a free-form argument list: non-paren characters, or brace
    blocks that may hold parens, up to and including the closing ``)``.

    Brace blocks are tried from the latest one backwards. Start positions
    that cannot reach a ``)`` are remembered in ``failed``.
    """
    if start in failed:
        return None
    paren = _TO_PAREN.match(content, start).end()
    if paren < len(content) and content[paren] == ")":
        return paren + 1
    brace = content.rfind("{", start, paren)
    while brace != -1:
        block = _BRACE_BLOCK.match(content, brace)
        if block is not None and block.end() > paren:
            end = _free_arguments_end(content, block.end(), failed)
            if end is not None:
                return end
        brace = content.rfind("{", start, brace)
    failed.add(start)
    return None


def _class_function_calls(content: str) -> Iterator[str]:
    """Yield the text of each class-builder call such as ``clsx(...)``."""
    failed: set[int] = set()
    pos = 0
    while True:
        call = _CLASS_FUNCTION_START.search(content, pos)
        if call is None:
            return
        for pattern in _CALL_ARGUMENTS:
            match = pattern.match(content, call.end())
            if match is not None:
                end = match.end()
                break
        else:
            end = _free_arguments_end(content, call.end(), failed)
        if end is None:
            pos = call.start() + 1
            continue
        yield content[call.start():end]
        pos = end


def extract_classes(content: str) -> list[str]:
    """Extract class tokens from file content, in match order, not deduplicated."""
    classes: list[str] = []

    for match in _CLASS_ATTRIBUTE.finditer(content):
        literal = match.group(1)
        if literal:
            classes.extend(split_class_string(literal))
        else:
            # Dynamic binding: take every quoted string inside the expression
            classes.extend(_quoted_tokens(match.group(0)))

    for call in _class_function_calls(content):
        classes.extend(_quoted_tokens(call))

    return classes


def count_occurrences(files: Iterable[Mapping[str, str]]) -> dict[str, int]:
    """Count class tokens across files given as ``{"path": ..., "content": ...}``.

    Files whose path fails the eligibility filter are skipped. Keys keep the
    order in which each class was first encountered.
    """
    counts: Counter[str] = Counter()
    for file in files:
        if not is_eligible_path(file["path"]):
            continue
        counts.update(extract_classes(file["content"]))
    return dict(counts)


def rank_classes(counts: Mapping[str, int], limit: int) -> list[ClassCount]:
    """Top ``limit`` classes by descending count.

    The sort is stable, so equal counts keep first-encountered order.
    """
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [ClassCount(class_name=name, count=count) for name, count in ranked[:limit]]
