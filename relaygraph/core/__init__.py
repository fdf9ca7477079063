"""relaygraph.core

Core primitives. Every other package depends on this one and nothing here
depends on them, except the relay URL helpers the local state validates with.
"""

from .config import Config
from .events import Event, EventDraft, Filter, Kind
from .exceptions import RelaygraphError
from .types import MutationResult, PublishReport

__all__ = [
    "Config",
    "Event",
    "EventDraft",
    "Filter",
    "Kind",
    "MutationResult",
    "PublishReport",
    "RelaygraphError",
]
