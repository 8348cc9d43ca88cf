"""Durable outbox and downstream event delivery."""

__all__: list[str] = []
