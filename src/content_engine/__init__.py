"""Content generation engine: summaries, tags, categories and SEO metadata via remote LLMs."""

__version__ = "0.1.0"
