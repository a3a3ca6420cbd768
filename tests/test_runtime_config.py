"""Tests for .env parsing and the runtime configuration service."""

import shutil
import tempfile
import unittest
from pathlib import Path

from sproutvault.config.runtime import ConfigReloader, RuntimeConfig, parse_env


class TestParseEnv(unittest.TestCase):
    """Tests for parse_env."""

    def test_simple_pairs(self) -> None:
        self.assertEqual(parse_env("A=1\nB=two\n"), {"A": "1", "B": "two"})

    def test_skips_blank_lines_and_comments(self) -> None:
        text = "\n# comment\n   # indented comment\nA=1\n\n"

        self.assertEqual(parse_env(text), {"A": "1"})

    def test_double_quoted_value(self) -> None:
        self.assertEqual(parse_env('X="a\\"b"'), {"X": 'a"b'})

    def test_single_quoted_value(self) -> None:
        self.assertEqual(parse_env("X='it\\'s'"), {"X": "it's"})

    def test_mismatched_quotes_kept(self) -> None:
        self.assertEqual(parse_env("X=\"abc'"), {"X": "\"abc'"})

    def test_single_quote_character_kept(self) -> None:
        self.assertEqual(parse_env('X="'), {"X": '"'})

    def test_empty_quoted_value(self) -> None:
        self.assertEqual(parse_env('X=""'), {"X": ""})

    def test_splits_on_first_equals(self) -> None:
        self.assertEqual(
            parse_env('DATABASE_URL="file:../db/x.db?a=b"'),
            {"DATABASE_URL": "file:../db/x.db?a=b"},
        )

    def test_trims_key_and_value(self) -> None:
        self.assertEqual(parse_env("  KEY  =  value  "), {"KEY": "value"})

    def test_line_without_equals_skipped(self) -> None:
        self.assertEqual(parse_env("JUSTTEXT\nA=1"), {"A": "1"})

    def test_empty_key_skipped(self) -> None:
        self.assertEqual(parse_env("=value\nA=1"), {"A": "1"})

    def test_empty_value(self) -> None:
        self.assertEqual(parse_env("VAPID_PUBLIC_KEY="), {"VAPID_PUBLIC_KEY": ""})

    def test_last_duplicate_wins(self) -> None:
        self.assertEqual(parse_env("A=1\nA=2"), {"A": "2"})

    def test_crlf_line_endings(self) -> None:
        self.assertEqual(parse_env("A=1\r\nB=2\r\n"), {"A": "1", "B": "2"})

    def test_empty_text(self) -> None:
        self.assertEqual(parse_env(""), {})

    def test_only_newline_separates_lines(self) -> None:
        self.assertEqual(
            parse_env('A="x\x1cy"\nB=p\x0cq\nC=m n'),
            {"A": "x\x1cy", "B": "p\x0cq", "C": "m n"},
        )

    def test_parsing_is_repeatable(self) -> None:
        text = '# comment\nA=1\nB="two"\nA=3\nC=\'x\\\'y\'\n'

        self.assertEqual(parse_env(text), parse_env(text))
        self.assertEqual(parse_env(text), {"A": "3", "B": "two", "C": "x'y"})


class TestRuntimeConfig(unittest.TestCase):
    """Tests for RuntimeConfig and ConfigReloader."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_from_file(self) -> None:
        env_path = Path(self.temp_dir) / ".env"
        env_path.write_text('ENC_HASH="abc"\nTZ=UTC\n')

        config = RuntimeConfig.from_file(env_path)

        self.assertEqual(config.get("ENC_HASH"), "abc")
        self.assertEqual(len(config), 2)
        self.assertIn("TZ", config)

    def test_from_missing_file(self) -> None:
        config = RuntimeConfig.from_file(Path(self.temp_dir) / ".env")

        self.assertEqual(len(config), 0)
        self.assertIsNone(config.get("ENC_HASH"))
        self.assertEqual(config.get("ENC_HASH", "fallback"), "fallback")

    def test_apply_overwrites_and_keeps_other_keys(self) -> None:
        config = RuntimeConfig({"A": "old", "KEEP": "yes"})
        reloader = ConfigReloader(config)

        count = reloader.apply({"A": "new", "B": "added"})

        self.assertEqual(count, 2)
        self.assertEqual(config.as_dict(), {"A": "new", "KEEP": "yes", "B": "added"})

    def test_reload_file(self) -> None:
        env_path = Path(self.temp_dir) / ".env"
        env_path.write_text("A=1\nB=2\n")
        config = RuntimeConfig()

        self.assertEqual(ConfigReloader(config).reload_file(env_path), 2)
        self.assertEqual(sorted(config), ["A", "B"])

    def test_reload_missing_file(self) -> None:
        config = RuntimeConfig({"A": "1"})

        self.assertEqual(ConfigReloader(config).reload_file(Path(self.temp_dir) / "nope"), 0)
        self.assertEqual(config.get("A"), "1")


if __name__ == "__main__":
    unittest.main()
