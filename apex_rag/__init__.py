"""Apex Legends wiki RAG backend."""

__version__ = "0.1.0"
