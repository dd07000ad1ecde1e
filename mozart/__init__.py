"""Mozart - visual API-flow engine.

The portable core: graph store, node executors, execution coordinator,
autosave and version history. The HTTP service lives in `web.backend`.
"""

__version__ = "0.1.0"

from .core.store import CyclicGraphError, GraphStore, ReadOnlyViewError
from .runner import FlowRunner, NoEntryNodes
from .session import FlowSession

__all__ = [
    "CyclicGraphError",
    "FlowRunner",
    "FlowSession",
    "GraphStore",
    "NoEntryNodes",
    "ReadOnlyViewError",
    "__version__",
]
