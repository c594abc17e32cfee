"""Compatibility wrapper so the tool runs from a source checkout.

Prefer importing from `memento_search.engine`.
"""

from pathlib import Path
import sys

_SRC = Path(__file__).resolve().parent / "src"
if _SRC.is_dir():
    sys.path.insert(0, str(_SRC))

from memento_search.engine import *  # noqa: F401,F403
from memento_search.cli import main  # noqa: F401

if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
