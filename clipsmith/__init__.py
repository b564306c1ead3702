"""Clipsmith: long-form video in, ranked captioned short clips out."""

__version__ = "1.0.0"
