"""Concurrent analysis dispatch."""
