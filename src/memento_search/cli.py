from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Mapping, Optional

from memento_search import engine as memento


COLOR_CHOICES = ("always", "auto", "never", "multi")


def default_color(env: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if env is None else env
    value = env.get("MEMENTO_COLOR", "").strip().lower()
    return value if value in COLOR_CHOICES else "auto"


def resolve_highlight(
    color: str, *, isatty: bool, env: Optional[Mapping[str, str]] = None
) -> memento.HighlightMode:
    env = os.environ if env is None else env
    if color == "always":
        return memento.HighlightMode.SINGLE
    if color == "multi":
        return memento.HighlightMode.MULTI
    if color == "never" or "NO_COLOR" in env:
        return memento.HighlightMode.OFF
    return memento.HighlightMode.SINGLE if isatty else memento.HighlightMode.OFF


def non_negative(s: str) -> int:
    try:
        n = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {s!r}")
    if n < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {n}")
    return n


def cmd_search(args: argparse.Namespace) -> int:
    config = memento.SearchConfig(
        keywords=tuple(args.keywords),
        case_sensitive=args.case_sensitive,
        regex=args.regex,
        fuzzy=args.fuzzy,
        fuzzy_threshold=args.threshold,
        match_any=args.any,
        context=args.context,
        highlight=(
            memento.HighlightMode.OFF
            if args.json
            else resolve_highlight(args.color, isatty=sys.stdout.isatty())
        ),
    )
    result = memento.search(Path(args.file), config)
    plan = result.plan
    if args.verbose:
        sys.stderr.write(f"scan: {len(result.lines)} lines from {args.file}\n")
        sys.stderr.write(f"plan: {plan.match_count} matching lines in {len(plan.blocks)} blocks\n")

    if args.json:
        print(json.dumps(memento.plan_records(result), indent=2))
        return 0

    for row in memento.format_plan(result, line_numbers=args.line_numbers):
        print(row)
    print(memento.summary(plan))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="memento",
        description="Print the lines of FILE that contain the given keywords.",
    )
    p.add_argument("file", help="Text file to search")
    p.add_argument("keywords", nargs="+", metavar="keyword", help="Keyword(s) to look for")
    p.add_argument("-c", "--case-sensitive", action="store_true", help="Match case and diacritics exactly")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("-r", "--regex", action="store_true", help="Treat keywords as regular expressions")
    mode.add_argument("-f", "--fuzzy", action="store_true", help="Match words within an edit distance of each keyword")
    p.add_argument(
        "-t",
        "--threshold",
        type=non_negative,
        default=memento.DEFAULT_FUZZY_THRESHOLD,
        help=f"Max edit distance in fuzzy mode (default: {memento.DEFAULT_FUZZY_THRESHOLD})",
    )
    p.add_argument("-o", "--any", action="store_true", help="Match lines with any keyword (default: all keywords)")
    p.add_argument("-C", "--context", type=non_negative, default=0, help="Lines of context around matches (default: 0)")
    p.add_argument("-n", "--line-numbers", action="store_true", help="Prefix lines with their line number")
    p.add_argument(
        "--color",
        choices=COLOR_CHOICES,
        default=default_color(),
        help="Highlight matches (default: auto, or $MEMENTO_COLOR)",
    )
    p.add_argument("--json", action="store_true", help="Emit JSON records instead of text")
    p.add_argument("-v", "--verbose", action="store_true", help="Report progress on stderr")
    return p


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv
    p = build_parser()
    args = p.parse_args(argv[1:])
    try:
        return cmd_search(args)
    except memento.UsageError as e:
        p.print_usage(sys.stderr)
        sys.stderr.write(f"{p.prog}: error: {e}\n")
        return 2
    except memento.FileError as e:
        sys.stderr.write(f"{p.prog}: cannot read {e}\n")
        return 1
    except memento.InvalidPatternError as e:
        sys.stderr.write(f"{p.prog}: {e}\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
