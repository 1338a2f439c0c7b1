"""Writing, negotiating and decoding metrics exposition formats."""

__version__ = "0.1.0"
__all__ = ["decode", "encode", "formats", "metricdata", "openmetrics", "protodelim", "text"]