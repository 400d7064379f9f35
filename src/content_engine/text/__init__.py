"""Text segmentation and language helpers."""
