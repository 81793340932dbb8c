"""Grouped audit history service."""
