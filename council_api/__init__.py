"""Council API — FastAPI application exposing the council engine."""

__version__ = "1.0.0"
