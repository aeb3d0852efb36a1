"""Sketch-based neighbor-joining trees from genome assemblies."""

__version__ = "0.3.0"
