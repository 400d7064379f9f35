"""Artifact post-processing and quality scoring."""
