"""Vallaroo Business backend."""
