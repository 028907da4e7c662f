"""HTTP access to the pub/sub relay.

The relay is best-effort and unauthenticated:
    POST <base>/<topic>                          publish one frame
    GET  <base>/<topic>/raw?poll=1[&since=<ts>]  newline-separated frames
"""

import logging
from typing import Any, Iterator, Optional, Protocol

import httpx

from .exceptions import PublishError, RelayError

logger = logging.getLogger(__name__)


class HTTPClient(Protocol):
    """The subset of `httpx.Client` the relay calls need."""

    def post(self, url: str, **kwargs: Any) -> httpx.Response: ...

    def get(self, url: str, **kwargs: Any) -> httpx.Response: ...


class RelayPublisher:
    def __init__(self, client: HTTPClient, base_url: str):
        self.client = client
        self.base_url = base_url.rstrip("/")

    def publish(self, topic: str, frame: str) -> httpx.Response:
        """POST one frame. No retry; the status code is left to the caller."""
        url = f"{self.base_url}/{topic}"
        try:
            resp = self.client.post(url, content=frame.encode())
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise PublishError(f"Could not reach relay at {url}: {e}") from e
        logger.debug(f"Published {len(frame)} chars to {topic}: {resp.status_code}")
        return resp


class RelayPoller:
    def __init__(self, client: HTTPClient, base_url: str, strict: bool = False):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.strict = strict

    def poll(self, topic: str, since: Optional[int] = None) -> Iterator[str]:
        """Yield raw frames in delivery order.

        The request is issued on first iteration. An unreachable relay or a
        non-2xx reply yields nothing, or raises RelayError when strict.
        """
        url = f"{self.base_url}/{topic}/raw"
        params = {"poll": "1"}
        if since is not None:
            params["since"] = str(since)

        try:
            resp = self.client.get(url, params=params)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            if self.strict:
                raise RelayError(f"Could not poll relay at {url}: {e}") from e
            logger.warning(f"Could not poll relay: {e}")
            return
        if not resp.is_success:
            if self.strict:
                raise RelayError(f"Relay poll failed: {resp.status_code} {resp.text}")
            logger.warning(f"Relay poll failed: {resp.status_code} {resp.text}")
            return

        for line in resp.iter_lines():
            line = line.strip()
            if line:
                yield line
