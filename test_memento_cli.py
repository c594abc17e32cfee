import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

import memento
from memento_search import cli


def run(*argv):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = memento.main(["memento", *argv])
    return code, out.getvalue(), err.getvalue()


class TestMain(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.path = Path(self._td.name) / "notes.txt"
        self.path.write_text("apple pie\nbanana split\napple tart\n", encoding="utf-8")

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_prints_matches_and_summary(self) -> None:
        code, out, err = run(str(self.path), "apple", "--color", "never")
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines(), ["apple pie", "apple tart", "2 matching lines"])
        self.assertEqual(err, "")

    def test_no_matches_exits_zero(self) -> None:
        code, out, _ = run(str(self.path), "cherry", "--color", "never")
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines(), ["No matches found."])

    def test_any_with_line_numbers(self) -> None:
        code, out, _ = run(str(self.path), "tart", "banana", "-o", "-n", "--color", "never")
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines(), ["2:banana split", "3:apple tart", "2 matching lines"])

    def test_fuzzy(self) -> None:
        code, out, _ = run(str(self.path), "banan", "--fuzzy", "-t", "1", "--color", "never")
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines(), ["banana split", "1 matching line"])

    def test_color_always(self) -> None:
        code, out, _ = run(str(self.path), "tart", "--color", "always")
        self.assertEqual(code, 0)
        self.assertIn("apple \x1b[1;31mtart\x1b[0m", out)

    def test_auto_color_off_when_not_a_tty(self) -> None:
        code, out, _ = run(str(self.path), "tart", "--color", "auto")
        self.assertEqual(code, 0)
        self.assertNotIn("\x1b[", out)

    def test_json(self) -> None:
        code, out, _ = run(str(self.path), "split", "-C", "1", "--json")
        self.assertEqual(code, 0)
        records = json.loads(out)
        self.assertEqual([(r["line"], r["role"]) for r in records], [(1, "context"), (2, "match"), (3, "context")])
        self.assertEqual(records[1]["keywords"], ["split"])

    def test_verbose(self) -> None:
        code, _, err = run(str(self.path), "apple", "-v", "--color", "never")
        self.assertEqual(code, 0)
        self.assertIn("scan: 3 lines", err)
        self.assertIn("plan: 2 matching lines in 2 blocks", err)

    def test_missing_file(self) -> None:
        missing = Path(self._td.name) / "missing.txt"
        code, out, err = run(str(missing), "apple")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("cannot read", err)
        self.assertIn("missing.txt", err)

    def test_bad_regex(self) -> None:
        code, out, err = run(str(self.path), "app(", "--regex")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("invalid pattern 'app('", err)

    def test_usage_errors(self) -> None:
        for argv in (
            [str(self.path)],
            [str(self.path), "x", "--regex", "--fuzzy"],
            [str(self.path), "x", "-C", "-1"],
            [str(self.path), "x", "--color", "rainbow"],
        ):
            with self.assertRaises(SystemExit) as cm:
                run(*argv)
            self.assertEqual(cm.exception.code, 2, argv)

    def test_empty_keyword_is_usage_error(self) -> None:
        code, out, err = run(str(self.path), "")
        self.assertEqual(code, 2)
        self.assertEqual(out, "")
        self.assertIn("keywords must not be empty", err)


class TestColorResolution(unittest.TestCase):
    def test_explicit_modes(self) -> None:
        self.assertIs(cli.resolve_highlight("always", isatty=False, env={}), memento.HighlightMode.SINGLE)
        self.assertIs(cli.resolve_highlight("multi", isatty=False, env={}), memento.HighlightMode.MULTI)
        self.assertIs(cli.resolve_highlight("never", isatty=True, env={}), memento.HighlightMode.OFF)

    def test_auto(self) -> None:
        self.assertIs(cli.resolve_highlight("auto", isatty=True, env={}), memento.HighlightMode.SINGLE)
        self.assertIs(cli.resolve_highlight("auto", isatty=False, env={}), memento.HighlightMode.OFF)
        self.assertIs(cli.resolve_highlight("auto", isatty=True, env={"NO_COLOR": "1"}), memento.HighlightMode.OFF)

    def test_default_from_env(self) -> None:
        self.assertEqual(cli.default_color({}), "auto")
        self.assertEqual(cli.default_color({"MEMENTO_COLOR": "Multi"}), "multi")
        self.assertEqual(cli.default_color({"MEMENTO_COLOR": "bogus"}), "auto")


if __name__ == "__main__":
    unittest.main()
