"""Unix socket gateway: listener, per-connection sessions, client."""

from carapace.gateway.client import GatewayClient
from carapace.gateway.listener import GatewayListener
from carapace.gateway.session import ConnectionSession, SessionState

__all__ = ["GatewayClient", "GatewayListener", "ConnectionSession", "SessionState"]
