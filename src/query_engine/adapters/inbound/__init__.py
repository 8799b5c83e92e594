"""Inbound adapters - ways of producing query descriptions.

Exports:
    - SQLParser: SQL text to QueryDescription via sqlglot
    - ParseError: Raised for invalid or unsupported SQL
"""

from query_engine.adapters.inbound.sql_parser import ParseError, SQLParser, parse_sql

__all__ = ["ParseError", "SQLParser", "parse_sql"]
