from ember.gateway.connection import ConnectionState, GatewayConnection, websocket_connector
from ember.gateway.session import GatewaySession, SessionState

__all__ = [
    "ConnectionState",
    "GatewayConnection",
    "GatewaySession",
    "SessionState",
    "websocket_connector",
]
