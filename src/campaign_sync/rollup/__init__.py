"""Hierarchical rollup engine."""
