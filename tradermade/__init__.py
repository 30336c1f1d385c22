"""TraderMade market-data clients.

- `RestClient`: async request/response access to live, historical,
  time-series and conversion endpoints.
- `FeedClient`: streaming quote feed over a persistent websocket with
  automatic reconnection.
"""

from tradermade.common.errors import (
    APIError,
    FeedAuthenticationError,
    FeedConnectionError,
    FeedError,
    FeedProtocolError,
    FeedRetriesExhaustedError,
    ResponseParseError,
    RestError,
    RestTransportError,
    TraderMadeError,
)
from tradermade.common.models import ConnectedMessage, QuoteMessage
from tradermade.rest.client import RestClient
from tradermade.stream.client import FeedClient

__all__ = [
    "RestClient",
    "FeedClient",
    "ConnectedMessage",
    "QuoteMessage",
    "TraderMadeError",
    "FeedError",
    "FeedConnectionError",
    "FeedAuthenticationError",
    "FeedProtocolError",
    "FeedRetriesExhaustedError",
    "RestError",
    "RestTransportError",
    "APIError",
    "ResponseParseError",
]
