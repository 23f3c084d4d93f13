"""Sync orchestration: single-flight guard, progress, orchestrator, scheduler."""
