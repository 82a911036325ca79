"""Rulebook indexing service."""
