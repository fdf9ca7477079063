"""relaygraph.relays

Raw I/O against relays: the gateway, its transport, and URL hygiene.
"""

from .gateway import RelayGateway
from .transport import RelayTransport, WebSocketTransport
from .urls import normalize_relay_url

__all__ = ["RelayGateway", "RelayTransport", "WebSocketTransport", "normalize_relay_url"]
