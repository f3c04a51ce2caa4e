"""
Inbound event feed (WebSocket relay client).
"""

from .socket_feed import EventFeedClient, decode_message

__all__ = ["EventFeedClient", "decode_message"]
