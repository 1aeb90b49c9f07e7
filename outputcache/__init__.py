"""Output caching for FastAPI request pipelines."""

__version__ = "0.1.0"
