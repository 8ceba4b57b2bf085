"""Tests for the statement splitter."""

from __future__ import annotations

import pytest

from sql_sandbox.errors import EmptyScript
from sql_sandbox.sandbox.splitter import preview, split_statements


class TestSplitStatements:
    def test_two_statements(self):
        assert split_statements("SELECT 1; SELECT 2") == ["SELECT 1", "SELECT 2"]

    def test_trailing_semicolon(self):
        assert split_statements("SELECT 1;") == ["SELECT 1"]

    def test_empty_statements_dropped(self):
        assert split_statements(";; SELECT 1;;\n;SELECT 2;  ") == ["SELECT 1", "SELECT 2"]

    def test_semicolon_in_single_quotes(self):
        assert split_statements("SELECT ';' FROM t; SELECT 2") == [
            "SELECT ';' FROM t",
            "SELECT 2",
        ]

    def test_semicolon_in_double_quotes(self):
        assert split_statements('SELECT 1 AS "a;b"; SELECT 2') == [
            'SELECT 1 AS "a;b"',
            "SELECT 2",
        ]

    def test_doubled_quote_is_escape(self):
        script = "INSERT INTO t VALUES ('it''s; fine'); SELECT 1"
        assert split_statements(script) == [
            "INSERT INTO t VALUES ('it''s; fine')",
            "SELECT 1",
        ]

    def test_other_quote_inside_literal(self):
        assert split_statements("SELECT 'say \"hi;\"'; SELECT 2") == [
            "SELECT 'say \"hi;\"'",
            "SELECT 2",
        ]

    def test_dollar_block_keeps_semicolons(self):
        script = (
            "CREATE FUNCTION f() RETURNS int AS $$ BEGIN RETURN 1; END; $$ LANGUAGE plpgsql;"
            "SELECT f()"
        )
        statements = split_statements(script)
        assert len(statements) == 2
        assert statements[0].endswith("LANGUAGE plpgsql")
        assert statements[1] == "SELECT f()"

    def test_tagged_dollar_block(self):
        script = "DO $body$ BEGIN PERFORM 1; $$ still inside; END $body$; SELECT 1"
        assert split_statements(script) == [
            "DO $body$ BEGIN PERFORM 1; $$ still inside; END $body$",
            "SELECT 1",
        ]

    def test_positional_parameter_is_not_a_block(self):
        assert split_statements("SELECT $1; SELECT $2") == ["SELECT $1", "SELECT $2"]

    def test_dollar_inside_identifier_is_not_a_block(self):
        assert split_statements("SELECT price$usd$ FROM t; SELECT 2") == [
            "SELECT price$usd$ FROM t",
            "SELECT 2",
        ]

    def test_unterminated_quote_runs_to_end(self):
        assert split_statements("SELECT 'abc; SELECT 2") == ["SELECT 'abc; SELECT 2"]

    def test_unterminated_block_runs_to_end(self):
        assert split_statements("SELECT 1; DO $$ BEGIN; END;") == [
            "SELECT 1",
            "DO $$ BEGIN; END;",
        ]

    def test_statements_are_trimmed(self):
        assert split_statements("\n  SELECT 1  \n;\n\tSELECT 2\n") == ["SELECT 1", "SELECT 2"]

    @pytest.mark.parametrize("script", ["", "   ", ";", " ;; \n ; "])
    def test_empty_script(self, script):
        with pytest.raises(EmptyScript):
            split_statements(script)


class TestPreview:
    def test_short_statement_unchanged(self):
        assert preview("SELECT 1") == "SELECT 1"

    def test_whitespace_collapsed(self):
        assert preview("SELECT *\n  FROM\tt") == "SELECT * FROM t"

    def test_long_statement_truncated(self):
        text = preview("SELECT " + "x" * 200, limit=40)
        assert len(text) == 40
        assert text.endswith("...")
