"""
Entity fetcher: search, count and read against remote models.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from ..core.exceptions import MalformedResponseError, TransportError
from ..rpc.codec import to_native
from ..rpc.domain import Domain, to_wire
from ..rpc.session import RemoteSession
from ..utils.retry import RetryConfig, call_with_retry


logger = logging.getLogger(__name__)


def default_retry_config() -> RetryConfig:
    """Transport errors retried with backoff; malformed responses retried once."""
    return RetryConfig(
        max_attempts=3,
        attempt_limits={MalformedResponseError: 2},
    )


class EntityFetcher:
    """
    Stateless per-call access to remote collections.

    Pagination is the caller's job: ``search`` returns one page, and a page
    shorter than the requested limit signals the end of results.
    ``iter_id_pages`` wraps that loop for convenience.
    """

    def __init__(
        self,
        session: RemoteSession,
        read_batch_size: int = 80,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the fetcher.

        Args:
            session: Authenticated (or lazily authenticating) remote session
            read_batch_size: Maximum ids per ``read`` call
            retry_config: Retry policy for transport-class failures
            sleep: Sleep function used between retries
        """
        if read_batch_size < 1:
            raise ValueError("read_batch_size must be at least 1")

        self.session = session
        self.read_batch_size = read_batch_size
        self.retry_config = retry_config or default_retry_config()
        self._sleep = sleep

    def count(self, model: str, domain: Optional[Domain]) -> int:
        """Number of records matching the domain."""
        result = self._execute(model, "search_count", [to_wire(domain)])
        if isinstance(result, bool) or not isinstance(result, int):
            raise MalformedResponseError(f"search_count on {model} returned {result!r}")
        return result

    def search(
        self,
        model: str,
        domain: Optional[Domain],
        limit: Optional[int] = None,
        offset: int = 0,
        order: Optional[str] = None,
    ) -> List[int]:
        """
        One page of ids matching the domain.

        Args:
            model: Remote model name
            domain: Filter expression (None matches everything)
            limit: Page size (None = no limit)
            offset: Number of matches to skip
            order: Remote ordering clause, e.g. "id desc"
        """
        kwargs: Dict[str, Any] = {}
        if limit is not None:
            kwargs["limit"] = limit
        if offset:
            kwargs["offset"] = offset
        if order:
            kwargs["order"] = order

        result = self._execute(model, "search", [to_wire(domain)], kwargs)
        if not isinstance(result, list) or not all(
            isinstance(item, int) and not isinstance(item, bool) for item in result
        ):
            raise MalformedResponseError(f"search on {model} returned a non-id list")
        return result

    def search_all(self, model: str, domain: Optional[Domain], order: Optional[str] = None) -> List[int]:
        """All ids matching the domain in a single unbounded search."""
        return self.search(model, domain, limit=None, offset=0, order=order)

    def iter_id_pages(
        self,
        model: str,
        domain: Optional[Domain],
        page_size: int,
        order: Optional[str] = None,
        start_offset: int = 0,
    ) -> Iterator[List[int]]:
        """Yield id pages until a page shorter than ``page_size`` is returned."""
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        offset = start_offset
        while True:
            page = self.search(model, domain, limit=page_size, offset=offset, order=order)
            if page:
                yield page
            if len(page) < page_size:
                return
            offset += len(page)

    def read(self, model: str, ids: Sequence[int], fields: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """
        Full records for the given ids, fetched in bounded batches.

        Raises:
            ValueError: ``ids`` is empty
        """
        if not ids:
            raise ValueError(f"read on {model} requires at least one id")

        kwargs = {"fields": list(fields)} if fields else None
        records: List[Dict[str, Any]] = []
        for start in range(0, len(ids), self.read_batch_size):
            batch = list(ids[start:start + self.read_batch_size])
            result = self._execute(model, "read", [batch], kwargs)
            if not isinstance(result, list) or not all(isinstance(row, dict) for row in result):
                raise MalformedResponseError(f"read on {model} returned {type(result).__name__}")
            records.extend(result)

        logger.debug(f"Read {len(records)} {model} records for {len(ids)} ids")
        return records

    def _execute(
        self,
        model: str,
        operation: str,
        args: List[Any],
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> Any:
        wire = call_with_retry(
            lambda: self.session.call(model, operation, args, kwargs),
            self.retry_config,
            retry_on=(TransportError, MalformedResponseError),
            operation_name=f"{model}.{operation}",
            sleep=self._sleep,
        )
        return to_native(wire)
