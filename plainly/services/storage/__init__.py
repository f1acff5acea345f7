"""Persistence for stopped recordings and their processing outputs."""
