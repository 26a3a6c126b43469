"""Catering operations portal backend."""
