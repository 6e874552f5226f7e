"""
HTTP transport for XML-RPC calls.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import requests

from ..core.exceptions import TransportError
from .codec import WireValue, build_request, parse_response


logger = logging.getLogger(__name__)

XML_HEADERS = {
    "Content-Type": "text/xml",
    "Accept": "text/xml",
}


class RpcTransport(ABC):
    """
    Abstract base class for RPC transports.

    A transport performs exactly one call per invocation and never retries;
    retry policy belongs to the caller.
    """

    @abstractmethod
    def call(self, url: str, method_name: str, params: Sequence[Any]) -> WireValue:
        """
        Invoke a remote method.

        Args:
            url: Endpoint URL
            method_name: Remote method name
            params: Positional parameters (native or wire values)

        Returns:
            The decoded return value

        Raises:
            TransportError: connection, timeout or non-2xx HTTP status
            ProtocolFault: the remote returned a fault envelope
            MalformedResponseError: the response body is ungrammatical
        """
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass


class XmlRpcTransport(RpcTransport):
    """
    XML-RPC over HTTP POST using a pooled ``requests`` session.

    Supports:
    - Configurable timeout
    - Minimum delay between requests (rate limiting)
    - Custom User-Agent
    """

    def __init__(
        self,
        timeout: float = 60.0,
        rate_limit_delay: float = 0.0,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the transport.

        Args:
            timeout: Request timeout in seconds
            rate_limit_delay: Minimum seconds between requests
            user_agent: Custom User-Agent header
            session: Pre-built requests session (mainly for tests)
        """
        self.timeout = timeout
        self.rate_limit_delay = rate_limit_delay
        self.user_agent = user_agent or "erpsync/1.0"
        self.last_request_time = 0.0
        self.session = session or requests.Session()

    def call(self, url: str, method_name: str, params: Sequence[Any]) -> WireValue:
        self._wait_for_rate_limit()

        body = build_request(method_name, params)
        headers = dict(XML_HEADERS)
        headers["User-Agent"] = self.user_agent

        logger.debug(f"XML-RPC request: {method_name} to {url}")
        start_time = time.time()

        try:
            response = self.session.post(
                url,
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"XML-RPC {method_name} to {url} failed: {e}")
            raise TransportError(f"Request to {url} failed: {e}", url=url) from e

        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"HTTP {response.status_code} for {method_name} ({duration_ms}ms)")

        if response.status_code < 200 or response.status_code >= 300:
            raise TransportError(
                f"XML-RPC request failed: {response.status_code} {response.reason}",
                url=url,
                status_code=response.status_code,
            )

        return parse_response(response.content)

    def _wait_for_rate_limit(self) -> None:
        """Enforce rate limiting between requests."""
        if self.rate_limit_delay > 0:
            elapsed = time.time() - self.last_request_time
            if elapsed < self.rate_limit_delay:
                time.sleep(self.rate_limit_delay - elapsed)
        self.last_request_time = time.time()

    def close(self) -> None:
        """Close the session."""
        if self.session:
            self.session.close()
