"""Mozart flow-definition API backend."""

__version__ = "0.1.0"
