"""Supervision of external search engine processes and interpretation of their output."""
