"""Safety checks for validation patterns.

Field ``pattern`` rules are authored by study builders and matched against
participant input, so a pattern with catastrophic backtracking would let a
single submission pin a worker. Patterns are scanned before they are
stored and rejected when they contain:

- nested quantifiers (star height greater than one), e.g. ``(a+)+``
- a quantified alternation whose branches can start with the same
  character, e.g. ``(a|ab)*`` or ``(\\w|\\d)+``
- repetition counts above ``MAX_REPETITION``, e.g. ``a{1000}``

The scanner is a heuristic over the pattern text. Validation additionally
refuses to run patterns against inputs longer than
``pattern_max_input_length``.
"""

import re
import string
from dataclasses import dataclass, field
from typing import Optional

from edc_engine.config import get_settings
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)

MAX_REPETITION = 25

_DIGITS = frozenset(string.digits)
_WORD = frozenset(string.ascii_letters + string.digits + "_")
_SPACE = frozenset(" \t\n\r\f\v")

_ESCAPE_CATEGORIES = {"d": "digit", "w": "word", "s": "space"}
_ZERO_WIDTH_ESCAPES = frozenset("bBAZz")
_CATEGORY_CHARS = {"digit": _DIGITS, "word": _WORD, "space": _SPACE}
_OVERLAPPING_CATEGORIES = {
    frozenset({"digit", "word"}),
}


class PatternScanError(Exception):
    """Raised when the scanner cannot follow the pattern text."""
    pass


@dataclass
class _CharSet:
    """Approximation of the characters a pattern element can start with."""
    chars: set = field(default_factory=set)
    categories: set = field(default_factory=set)
    anything: bool = False

    def add(self, other: "_CharSet") -> None:
        self.chars |= other.chars
        self.categories |= other.categories
        self.anything = self.anything or other.anything

    def _matches_char(self, char: str) -> bool:
        if char in self.chars:
            return True
        return any(char in _CATEGORY_CHARS[c] for c in self.categories)

    def overlaps(self, other: "_CharSet") -> bool:
        if self.is_empty() or other.is_empty():
            return False
        if self.anything or other.anything:
            return True
        if self.chars & other.chars:
            return True
        if any(other._matches_char(c) for c in self.chars):
            return True
        if any(self._matches_char(c) for c in other.chars):
            return True
        for mine in self.categories:
            for theirs in other.categories:
                if mine == theirs or frozenset({mine, theirs}) in _OVERLAPPING_CATEGORIES:
                    return True
        return False

    def is_empty(self) -> bool:
        return not (self.chars or self.categories or self.anything)


@dataclass
class _Node:
    """One quantifiable element: a character, a class, or a group."""
    first: _CharSet
    nullable: bool = False
    branches: Optional[list] = None
    min_repeat: int = 1
    max_repeat: Optional[int] = 1

    @property
    def repeats(self) -> bool:
        return self.max_repeat is None or self.max_repeat > 1


class _Scanner:
    """Recursive-descent reader producing a tree of ``_Node`` sequences."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.pos = 0

    def _peek(self) -> Optional[str]:
        return self.pattern[self.pos] if self.pos < len(self.pattern) else None

    def _next(self) -> str:
        if self.pos >= len(self.pattern):
            raise PatternScanError("Unexpected end of pattern")
        char = self.pattern[self.pos]
        self.pos += 1
        return char

    def parse(self) -> list:
        branches = self._alternation()
        if self.pos != len(self.pattern):
            raise PatternScanError(f"Unexpected ')' at position {self.pos}")
        return branches

    def _alternation(self) -> list:
        branches = [self._sequence()]
        while self._peek() == "|":
            self.pos += 1
            branches.append(self._sequence())
        return branches

    def _sequence(self) -> list:
        nodes = []
        while self._peek() not in (None, "|", ")"):
            node = self._atom()
            if node is None:
                continue
            self._quantifier(node)
            nodes.append(node)
        return nodes

    def _atom(self) -> Optional[_Node]:
        char = self._next()
        if char in "^$":
            return _Node(first=_CharSet(), nullable=True)
        if char == ".":
            return _Node(first=_CharSet(anything=True))
        if char == "[":
            return _Node(first=self._char_class())
        if char == "(":
            return self._group()
        if char == "\\":
            return self._escape()
        if char in "*+?":
            raise PatternScanError(f"Nothing to repeat at position {self.pos - 1}")
        return _Node(first=_CharSet(chars={char}))

    def _escape(self) -> _Node:
        char = self._next()
        if char in _ZERO_WIDTH_ESCAPES:
            return _Node(first=_CharSet(), nullable=True)
        if char in _ESCAPE_CATEGORIES:
            return _Node(first=_CharSet(categories={_ESCAPE_CATEGORIES[char]}))
        if char in "DWS" or char.isdigit():
            # Negated classes and backreferences can start with almost anything
            return _Node(first=_CharSet(anything=True))
        return _Node(first=_CharSet(chars={char}))

    def _char_class(self) -> _CharSet:
        result = _CharSet()
        if self._peek() == "^":
            self.pos += 1
            result.anything = True
        if self._peek() == "]":
            result.chars.add(self._next())

        previous = None
        while True:
            char = self._next()
            if char == "]":
                return result
            if char == "\\":
                escaped = self._next()
                if escaped in _ESCAPE_CATEGORIES:
                    result.categories.add(_ESCAPE_CATEGORIES[escaped])
                elif escaped in "DWS":
                    result.anything = True
                else:
                    result.chars.add(escaped)
                    previous = escaped
                continue
            if char == "-" and previous is not None and self._peek() not in (None, "]"):
                end = self._next()
                if end == "\\":
                    end = self._next()
                if ord(end) - ord(previous) > 256:
                    result.anything = True
                else:
                    result.chars |= {chr(c) for c in range(ord(previous), ord(end) + 1)}
                previous = None
                continue
            result.chars.add(char)
            previous = char

    def _group(self) -> Optional[_Node]:
        lookaround = False
        if self._peek() == "?":
            self.pos += 1
            kind = self._next()
            if kind in "=!":
                lookaround = True
            elif kind == "<" and self._peek() in ("=", "!"):
                self.pos += 1
                lookaround = True
            elif kind == "P" and self._peek() == "<":
                while self._next() != ">":
                    pass
            elif kind == "<":
                while self._next() != ">":
                    pass
            elif kind != ":":
                # Inline flags such as (?i) or scoped (?i:...)
                while self._peek() not in (None, ")", ":"):
                    self.pos += 1
                if self._next() == ")":
                    return None

        branches = self._alternation()
        if self._next() != ")":
            raise PatternScanError("Missing ')'")

        if lookaround:
            return _Node(first=_CharSet(), nullable=True)

        first = _CharSet()
        for branch in branches:
            first.add(_sequence_first(branch))
        nullable = any(_sequence_nullable(branch) for branch in branches)
        return _Node(first=first, nullable=nullable, branches=branches)

    def _quantifier(self, node: _Node) -> None:
        char = self._peek()
        if char is None:
            return
        if char in "*+?":
            self.pos += 1
            node.min_repeat, node.max_repeat = {
                "*": (0, None),
                "+": (1, None),
                "?": (0, 1),
            }[char]
        elif char == "{":
            match = re.match(r"\{(\d*)(,(\d*))?\}", self.pattern[self.pos:])
            if not match or (not match.group(1) and not match.group(3)):
                # A literal brace, as Python's re treats it
                return
            self.pos += match.end()
            low = int(match.group(1) or 0)
            if match.group(2) is None:
                high: Optional[int] = low
            else:
                high = int(match.group(3)) if match.group(3) else None
            node.min_repeat, node.max_repeat = low, high
        else:
            return

        # Lazy or possessive suffix
        if self._peek() in ("?", "+"):
            self.pos += 1
        if node.min_repeat == 0:
            node.nullable = True


def _sequence_first(nodes: list) -> _CharSet:
    first = _CharSet()
    for node in nodes:
        first.add(node.first)
        if not node.nullable:
            break
    return first


def _sequence_nullable(nodes: list) -> bool:
    return all(node.nullable for node in nodes)


def _star_height(branches: list) -> int:
    height = 0
    for branch in branches:
        for node in branch:
            inner = _star_height(node.branches) if node.branches else 0
            height = max(height, inner + (1 if node.repeats else 0))
    return height


def _find_problem(branches: list) -> Optional[str]:
    for branch in branches:
        for node in branch:
            for bound in (node.min_repeat, node.max_repeat):
                if bound is not None and bound > MAX_REPETITION:
                    return f"repetition count above {MAX_REPETITION}"
            if not node.branches:
                continue
            if node.repeats and len(node.branches) > 1:
                firsts = [_sequence_first(b) for b in node.branches]
                for i, left in enumerate(firsts):
                    for right in firsts[i + 1:]:
                        if left.overlaps(right):
                            return "repeated alternation with overlapping branches"
            problem = _find_problem(node.branches)
            if problem:
                return problem
    return None


def is_redos_vulnerable(pattern: str) -> bool:
    """Check whether a pattern risks catastrophic backtracking.

    Patterns that are too long, or that the scanner cannot follow, are
    treated as vulnerable.

    Args:
        pattern: Regular expression source

    Returns:
        True if the pattern should be rejected

    Example:
        >>> is_redos_vulnerable("(a+)+")
        True
        >>> is_redos_vulnerable(r"^\\d{3}-\\d{4}$")
        False
    """
    if len(pattern) > get_settings().max_pattern_length:
        return True

    try:
        tree = _Scanner(pattern).parse()
    except PatternScanError as e:
        logger.debug(f"Pattern '{pattern}' could not be scanned: {e}")
        return True

    if _star_height(tree) > 1:
        logger.debug(f"Pattern '{pattern}' has nested quantifiers")
        return True

    problem = _find_problem(tree)
    if problem:
        logger.debug(f"Pattern '{pattern}' rejected: {problem}")
        return True

    return False


def validate_regex_pattern(pattern: str) -> Optional[str]:
    """Check a pattern before it is saved on a form schema.

    Args:
        pattern: Regular expression source

    Returns:
        Error message, or None if the pattern is acceptable
    """
    max_length = get_settings().max_pattern_length
    if len(pattern) > max_length:
        return f"Pattern too long (max {max_length} characters)"

    try:
        re.compile(pattern)
    except re.error as e:
        return f"Invalid regex: {e}"

    if is_redos_vulnerable(pattern):
        return "Pattern is vulnerable to ReDoS attacks"

    return None
