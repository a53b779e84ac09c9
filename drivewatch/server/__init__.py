"""
HTTP surface for Drive Watch: push notification webhook, monitoring setup
endpoints and the subscriber WebSocket.
"""

from .app import WebSocketSubscriber, build_reconciler, create_app, create_app_from_settings
from .renewal import ChannelRenewer

__all__ = [
    "WebSocketSubscriber",
    "build_reconciler",
    "create_app",
    "create_app_from_settings",
    "ChannelRenewer",
]
