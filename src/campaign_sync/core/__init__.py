"""Core domain types, normalization and correlation."""
