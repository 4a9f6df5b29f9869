"""Candidate evaluation and comparison.

Key components:
- scoring: score extraction, strengths / weaknesses, leniency
- engine: three concurrent judge passes per candidate
- comparator: per-aspect diff, detailed comparison and verdict
- verdict_parser: keyword-based parsing of the free-text verdict
"""
