"""Tracking sessions, monotonic tracking state, interactions and scores."""

__all__: list[str] = []
