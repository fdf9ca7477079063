"""relaygraph: social graph and zap settlement over independent relays.

There is no server of record. Every read is a poll of whoever answers in time,
and every write is a new fact that may or may not stick.
"""

from __future__ import annotations

__all__ = ["__version__", "SocialEngine"]

__version__ = "0.3.0"


def __getattr__(name: str):
    if name == "SocialEngine":
        from relaygraph.engine import SocialEngine

        return SocialEngine
    raise AttributeError(name)
