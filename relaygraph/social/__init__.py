"""relaygraph.social

Read models over the event stream: follows, profiles, interactions, threads,
discovery, and relay list sync.
"""

from .discovery import Discovery
from .follows import FollowAction, FollowRepository, FollowState
from .interactions import InteractionAggregator, InteractionState
from .profiles import Profile, ProfileMetadata, ProfileRepository
from .relay_sync import RelayListPublisher, RelayPreference, SyncReport
from .threads import ThreadNode, ThreadReconstructor, ThreadView

__all__ = [
    "Discovery",
    "FollowAction",
    "FollowRepository",
    "FollowState",
    "InteractionAggregator",
    "InteractionState",
    "Profile",
    "ProfileMetadata",
    "ProfileRepository",
    "RelayListPublisher",
    "RelayPreference",
    "SyncReport",
    "ThreadNode",
    "ThreadReconstructor",
    "ThreadView",
]
