"""Relational storage layer: ORM tables, engines, clocks and migrations."""
