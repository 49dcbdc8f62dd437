"""Decoding of kernel RAS hardware error trace events, tracing directory control and CPU fault isolation."""

__version__ = "0.1.0"