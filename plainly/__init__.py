"""Plainly: voice capture session and post-capture processing pipeline."""

__version__ = "0.1.0"
