"""
Unit tests for env-file loading.
"""

import logging

import pytest

from sysrelay.env import (
    apply_env,
    find_env_file,
    load_env_file,
    parse_env_file,
    parse_env_lines,
)


class TestParseEnvLines:
    def test_simple_pairs(self):
        values = parse_env_lines(["A=1\n", "B=two\n"])

        assert values == {"A": "1", "B": "two"}

    def test_comments_and_blank_lines_skipped(self):
        values = parse_env_lines(["# comment\n", "\n", "   \n", "A=1\n"])

        assert values == {"A": "1"}

    def test_whitespace_trimmed(self):
        values = parse_env_lines(["  KEY  =  value with spaces  \r\n"])

        assert values == {"KEY": "value with spaces"}

    @pytest.mark.parametrize("raw, expected", [
        ('A="quoted"', "quoted"),
        ("A='single'", "single"),
        ('A="mismatched\'', '"mismatched\''),
        ('A="', '"'),
        ("A=", ""),
    ])
    def test_quotes(self, raw, expected):
        assert parse_env_lines([raw]) == {"A": expected}

    def test_value_may_contain_equals(self):
        assert parse_env_lines(["URL=a=b=c"]) == {"URL": "a=b=c"}

    def test_malformed_lines_skipped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="sysrelay.env"):
            values = parse_env_lines(["no equals sign", "=value", "OK=1"], source="test.env")

        assert values == {"OK": "1"}
        assert "line 1" in caplog.text
        assert "line 2" in caplog.text

    def test_later_values_win_within_file(self):
        assert parse_env_lines(["A=1", "A=2"]) == {"A": "2"}


class TestApplyEnv:
    def test_never_overwrites(self):
        environ = {"EXISTING": "real"}

        applied = apply_env({"EXISTING": "from-file", "NEW": "x"}, environ)

        assert applied == 1
        assert environ == {"EXISTING": "real", "NEW": "x"}


class TestFiles:
    def test_parse_env_file(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text('SENDGRID_API_KEY="SG.abc"\nSENDGRID_FROM=me@example.com\n')

        assert parse_env_file(str(path)) == {
            "SENDGRID_API_KEY": "SG.abc",
            "SENDGRID_FROM": "me@example.com",
        }

    def test_parse_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            parse_env_file(str(tmp_path / "missing.env"))

    def test_find_env_file_first_readable_wins(self, tmp_path):
        second = tmp_path / "second.env"
        third = tmp_path / "third.env"
        second.write_text("A=2\n")
        third.write_text("A=3\n")

        found = find_env_file([str(tmp_path / "first.env"), str(second), str(third)])

        assert found == str(second)

    def test_find_env_file_none(self, tmp_path):
        assert find_env_file([str(tmp_path / "nope.env")]) is None

    def test_find_env_file_ignores_directories(self, tmp_path):
        assert find_env_file([str(tmp_path)]) is None

    def test_load_env_file(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("A=1\nB=2\n")
        environ = {"A": "keep"}

        assert load_env_file(str(path), environ) == 1
        assert environ == {"A": "keep", "B": "2"}
