"""Content records, training scenarios and the launch entrypoint."""

__all__: list[str] = []
