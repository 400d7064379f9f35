"""Persistent cache of generated artifacts."""
