"""Package for collecting, filtering and delivering a daily news digest."""

__all__ = ["config", "db", "models", "pipeline"]
