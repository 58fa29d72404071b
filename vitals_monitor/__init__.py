"""Núcleo de streaming en tiempo real de signos vitales y alertas."""

__version__ = "0.1.0"
