from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union


DEFAULT_FUZZY_THRESHOLD = 2

MATCH = "match"
CONTEXT = "context"
SEPARATOR = "--"

RESET = "\x1b[0m"
MATCH_STYLE = "\x1b[1;31m"
CONTEXT_STYLE = "\x1b[2m"
PALETTE = (
    "\x1b[1;31m",
    "\x1b[1;32m",
    "\x1b[1;33m",
    "\x1b[1;34m",
    "\x1b[1;35m",
    "\x1b[1;36m",
)

# Letters with no canonical decomposition that still have a plain spelling.
ASCII_FOLDS = {
    "ß": "ss",
    "ẞ": "SS",
    "æ": "ae",
    "Æ": "AE",
    "œ": "oe",
    "Œ": "OE",
    "ø": "o",
    "Ø": "O",
    "đ": "d",
    "Đ": "D",
    "ł": "l",
    "Ł": "L",
    "þ": "th",
    "Þ": "TH",
    "ı": "i",
}

_TOKEN_RE = re.compile(r"\S+")


class SearchError(Exception):
    """Base class for errors that abort a search before anything is printed."""


class UsageError(SearchError):
    pass


class FileError(SearchError):
    def __init__(self, path: Union[str, Path], cause: OSError) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"{path}: {cause.strerror or cause}")


class InvalidPatternError(SearchError):
    def __init__(self, keyword: str, cause: re.error) -> None:
        self.keyword = keyword
        self.cause = cause
        super().__init__(f"invalid pattern {keyword!r}: {cause}")


class HighlightMode(Enum):
    OFF = "off"
    SINGLE = "single"
    MULTI = "multi"


@dataclass(frozen=True)
class SearchConfig:
    keywords: Tuple[str, ...]
    case_sensitive: bool = False
    regex: bool = False
    fuzzy: bool = False
    fuzzy_threshold: int = DEFAULT_FUZZY_THRESHOLD
    match_any: bool = False
    context: int = 0
    highlight: HighlightMode = HighlightMode.OFF

    def __post_init__(self) -> None:
        object.__setattr__(self, "keywords", tuple(self.keywords))
        if not self.keywords:
            raise UsageError("at least one keyword is required")
        if any(not k for k in self.keywords):
            raise UsageError("keywords must not be empty")
        if self.regex and self.fuzzy:
            raise UsageError("fuzzy and regex modes are mutually exclusive")
        if self.fuzzy_threshold < 0:
            raise UsageError("fuzzy threshold must be non-negative")
        if self.context < 0:
            raise UsageError("context radius must be non-negative")


# --- normalization ---------------------------------------------------------


@lru_cache(maxsize=4096)
def _strip_char(c: str) -> str:
    if c.isascii():
        return c
    if c in ASCII_FOLDS:
        return ASCII_FOLDS[c]
    decomposed = unicodedata.normalize("NFD", c)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


@lru_cache(maxsize=4096)
def _fold_char(c: str) -> str:
    if c.isascii():
        return c.lower()
    # Strip before and after case folding: "İ" folds to "i" plus a combining dot.
    return "".join(_strip_char(ch) for ch in _strip_char(c).casefold())


def strip_diacritics(s: str) -> str:
    return "".join(_strip_char(c) for c in s)


def normalize(s: str, case_sensitive: bool = False) -> str:
    """
    Fold `s` for comparison: diacritics removed and case folded.

    Case-sensitive searches compare raw text, so `s` is returned unchanged.
    """
    if case_sensitive:
        return s
    return "".join(_fold_char(c) for c in s)


def normalize_with_offsets(s: str, case_sensitive: bool = False) -> Tuple[str, List[int]]:
    """
    Like normalize(), plus the raw offset of every folded character.

    The offset list has one trailing entry equal to len(s) so that end
    positions can be looked up too.
    """
    if case_sensitive:
        return s, list(range(len(s) + 1))
    parts: List[str] = []
    offsets: List[int] = []
    for i, c in enumerate(s):
        folded = _fold_char(c)
        parts.append(folded)
        offsets.extend([i] * len(folded))
    offsets.append(len(s))
    return "".join(parts), offsets


def _raw_span(offsets: Sequence[int], start: int, end: int) -> Tuple[int, int]:
    # Extend the end over raw characters that folded to nothing (combining marks).
    return offsets[start], max(offsets[end], offsets[end - 1] + 1)


# --- edit distance ---------------------------------------------------------


def edit_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        cur = [i]
        for j, cb in enumerate(b, 1):
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + (ca != cb)))
        prev = cur
    return prev[-1]


def _within(a: str, b: str, threshold: int) -> bool:
    if abs(len(a) - len(b)) > threshold:
        return False
    return edit_distance(a, b) <= threshold


# --- patterns --------------------------------------------------------------


@dataclass(frozen=True)
class CompiledPattern:
    index: int
    keyword: str
    regex: re.Pattern


def _strip_regex_literals(pattern: str) -> str:
    """
    Strip diacritics from the literal characters of a regex.

    Escapes and character classes are copied unchanged: "[À-ÿ]" is a range,
    and folding its ends would turn it into "[A-y]".
    """
    out: List[str] = []
    class_start = -1
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\" and i + 1 < len(pattern):
            out.append(pattern[i : i + 2])
            i += 2
            continue
        if class_start >= 0:
            # "]" right after "[" or "[^" is a member, not the end of the class.
            if c == "^" and i == class_start:
                class_start += 1
            elif c == "]" and i > class_start:
                class_start = -1
            out.append(c)
        elif c == "[":
            class_start = i + 1
            out.append(c)
        else:
            out.append(_strip_char(c))
        i += 1
    return "".join(out)


def compile_patterns(
    keywords: Sequence[str], *, case_sensitive: bool = False, regex: bool = False
) -> List[CompiledPattern]:
    flags = 0 if case_sensitive else re.IGNORECASE
    out: List[CompiledPattern] = []
    for i, kw in enumerate(keywords):
        if regex:
            # Never lowercase a user regex: "\D" and "\d" mean different things.
            text = kw if case_sensitive else _strip_regex_literals(kw)
        else:
            text = re.escape(normalize(kw, case_sensitive))
        try:
            rx = re.compile(text, flags)
        except re.error as e:
            raise InvalidPatternError(kw, e) from e
        out.append(CompiledPattern(index=i, keyword=kw, regex=rx))
    return out


# --- matching --------------------------------------------------------------


@dataclass(frozen=True)
class MatchVerdict:
    index: int
    matched: bool
    keywords: Tuple[int, ...] = ()
    terms: Tuple[str, ...] = ()


def _pattern_hits(text: str, patterns: Sequence[CompiledPattern], match_any: bool) -> Tuple[int, ...]:
    hits: List[int] = []
    for p in patterns:
        if p.regex.search(text) is not None:
            hits.append(p.index)
        elif not match_any:
            return ()
    return tuple(hits)


def _fuzzy_hits(line: str, config: SearchConfig) -> Tuple[Tuple[int, ...], Tuple[str, ...]]:
    tokens = [(raw, normalize(raw, config.case_sensitive)) for raw in line.split()]
    hits: List[int] = []
    terms: List[str] = []
    for k, keyword in enumerate(config.keywords):
        needle = normalize(keyword, config.case_sensitive)
        term = next(
            (raw for raw, norm in tokens if _within(norm, needle, config.fuzzy_threshold)),
            None,
        )
        if term is None:
            if not config.match_any:
                return (), ()
            continue
        hits.append(k)
        terms.append(term)
    return tuple(hits), tuple(terms)


def match_line(
    index: int,
    line: str,
    config: SearchConfig,
    patterns: Sequence[CompiledPattern] = (),
) -> MatchVerdict:
    if config.fuzzy:
        hits, terms = _fuzzy_hits(line, config)
        return MatchVerdict(index=index, matched=bool(hits), keywords=hits, terms=terms)
    hits = _pattern_hits(normalize(line, config.case_sensitive), patterns, config.match_any)
    return MatchVerdict(index=index, matched=bool(hits), keywords=hits)


def match_lines(
    lines: Sequence[str],
    config: SearchConfig,
    patterns: Optional[Sequence[CompiledPattern]] = None,
) -> List[MatchVerdict]:
    if patterns is None:
        patterns = [] if config.fuzzy else compile_patterns(
            config.keywords, case_sensitive=config.case_sensitive, regex=config.regex
        )
    return [match_line(i, line, config, patterns) for i, line in enumerate(lines)]


# --- display plan ----------------------------------------------------------


@dataclass(frozen=True)
class PlanEntry:
    index: int
    role: str


@dataclass(frozen=True)
class DisplayPlan:
    blocks: Tuple[Tuple[PlanEntry, ...], ...] = ()

    @property
    def entries(self) -> List[PlanEntry]:
        return [e for block in self.blocks for e in block]

    @property
    def match_count(self) -> int:
        return sum(1 for e in self.entries if e.role == MATCH)

    def rows(self) -> Iterator[Union[PlanEntry, str]]:
        for n, block in enumerate(self.blocks):
            if n:
                yield SEPARATOR
            yield from block

    def __bool__(self) -> bool:
        return bool(self.blocks)


def build_plan(verdicts: Sequence[MatchVerdict], context_radius: int, total_lines: int) -> DisplayPlan:
    """
    Expand match lines by `context_radius` into display blocks.

    Windows that overlap or touch are merged, so every index shows up once
    and two consecutive blocks always have a gap between them.
    """
    if context_radius < 0:
        raise ValueError("context_radius must be non-negative")
    hits = sorted({v.index for v in verdicts if v.matched})
    ranges: List[List[int]] = []
    for i in hits:
        lo = max(0, i - context_radius)
        hi = max(i + 1, min(total_lines, i + context_radius + 1))
        if ranges and lo <= ranges[-1][1]:
            ranges[-1][1] = max(ranges[-1][1], hi)
        else:
            ranges.append([lo, hi])
    hit_set = set(hits)
    blocks = tuple(
        tuple(PlanEntry(j, MATCH if j in hit_set else CONTEXT) for j in range(lo, hi))
        for lo, hi in ranges
    )
    return DisplayPlan(blocks=blocks)


# --- highlighting ----------------------------------------------------------


Span = Tuple[int, int, int]


def paint(text: str, style: str) -> str:
    if not text:
        return text
    return f"{style}{text}{RESET}"


def _style_for(key: int, mode: HighlightMode) -> str:
    if mode is HighlightMode.MULTI:
        return PALETTE[key % len(PALETTE)]
    return MATCH_STYLE


def _resolve_overlaps(spans: Sequence[Span]) -> List[Span]:
    # Leftmost wins, then longest, then the earlier keyword.
    out: List[Span] = []
    last_end = 0
    for start, end, key in sorted(spans, key=lambda s: (s[0], s[0] - s[1], s[2])):
        if start < last_end:
            continue
        out.append((start, end, key))
        last_end = end
    return out


def pattern_spans(line: str, patterns: Sequence[CompiledPattern], *, case_sensitive: bool = False) -> List[Span]:
    text, offsets = normalize_with_offsets(line, case_sensitive)
    found: List[Span] = []
    for p in patterns:
        for m in p.regex.finditer(text):
            if m.end() == m.start():
                continue
            start, end = _raw_span(offsets, m.start(), m.end())
            found.append((start, end, p.index))
    return _resolve_overlaps(found)


def fuzzy_spans(line: str, verdict: MatchVerdict, config: SearchConfig) -> List[Span]:
    needles = [(k, normalize(t, config.case_sensitive)) for k, t in zip(verdict.keywords, verdict.terms)]
    spans: List[Span] = []
    if not needles:
        return spans
    for m in _TOKEN_RE.finditer(line):
        token = normalize(m.group(0), config.case_sensitive)
        for k, needle in needles:
            if _within(token, needle, config.fuzzy_threshold):
                spans.append((m.start(), m.end(), k))
                break
    return spans


def render(line: str, spans: Sequence[Span], mode: HighlightMode) -> str:
    if mode is HighlightMode.OFF or not spans:
        return line
    out: List[str] = []
    pos = 0
    for start, end, key in spans:
        out.append(line[pos:start])
        out.append(paint(line[start:end], _style_for(key, mode)))
        pos = end
    out.append(line[pos:])
    return "".join(out)


def highlight(
    line: str,
    verdict: MatchVerdict,
    config: SearchConfig,
    patterns: Sequence[CompiledPattern] = (),
) -> str:
    if config.highlight is HighlightMode.OFF:
        return line
    if config.fuzzy:
        spans = fuzzy_spans(line, verdict, config)
    else:
        spans = pattern_spans(line, patterns, case_sensitive=config.case_sensitive)
    return render(line, spans, config.highlight)


# --- driver ----------------------------------------------------------------


def read_lines(path: Union[str, Path]) -> List[str]:
    # Universal newlines only: form feeds and U+2028 stay inside their line.
    try:
        with Path(path).open(encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\n") for line in f]
    except OSError as e:
        raise FileError(path, e) from e


@dataclass
class SearchResult:
    path: Path
    config: SearchConfig
    lines: List[str]
    patterns: List[CompiledPattern]
    verdicts: List[MatchVerdict]
    plan: DisplayPlan


def search(path: Union[str, Path], config: SearchConfig) -> SearchResult:
    # Compile first: a bad pattern is reported even when the file is fine.
    patterns: List[CompiledPattern] = []
    if not config.fuzzy:
        patterns = compile_patterns(config.keywords, case_sensitive=config.case_sensitive, regex=config.regex)
    lines = read_lines(path)
    verdicts = match_lines(lines, config, patterns)
    plan = build_plan(verdicts, config.context, len(lines))
    return SearchResult(
        path=Path(path),
        config=config,
        lines=lines,
        patterns=patterns,
        verdicts=verdicts,
        plan=plan,
    )


def format_plan(result: SearchResult, *, line_numbers: bool = False) -> Iterator[str]:
    config = result.config
    color = config.highlight is not HighlightMode.OFF
    for row in result.plan.rows():
        if isinstance(row, str):
            # "--" only marks gaps between context blocks.
            if config.context > 0:
                yield row
            continue
        line = result.lines[row.index]
        if row.role == MATCH:
            text = highlight(line, result.verdicts[row.index], config, result.patterns)
            sep = ":"
        else:
            text = paint(line, CONTEXT_STYLE) if color else line
            sep = "-"
        if line_numbers:
            text = f"{row.index + 1}{sep}{text}"
        yield text


def plan_records(result: SearchResult) -> List[Dict[str, object]]:
    out: List[Dict[str, object]] = []
    for entry in result.plan.entries:
        v = result.verdicts[entry.index]
        out.append(
            {
                "line": entry.index + 1,
                "role": entry.role,
                "text": result.lines[entry.index],
                "keywords": [result.config.keywords[k] for k in v.keywords],
                "terms": list(v.terms),
            }
        )
    return out


def summary(plan: DisplayPlan) -> str:
    n = plan.match_count
    if not n:
        return "No matches found."
    return f"{n} matching line{'s' if n != 1 else ''}"
