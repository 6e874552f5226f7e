"""
Authenticated session against the remote ERP.
"""

import logging
import threading
from typing import Any, Dict, Optional, Sequence

from ..core.exceptions import AuthenticationError, ProtocolFault
from ..core.models import RemoteConnection
from .codec import WireValue
from .transport import RpcTransport


logger = logging.getLogger(__name__)


class RemoteSession:
    """
    Binds a connection descriptor to a transport and a session id.

    ``call`` is the only path through which fetchers talk to the remote
    system: it injects database name, session id and api key ahead of the
    caller's arguments.
    """

    def __init__(self, connection: RemoteConnection, transport: RpcTransport):
        self.connection = connection
        self.transport = transport
        self.uid: Optional[int] = None
        self._auth_lock = threading.Lock()

    def authenticate(self) -> int:
        """
        Authenticate and remember the session id.

        Returns:
            The opaque numeric session id (uid)

        Raises:
            AuthenticationError: the remote returned a falsy id or a fault
            TransportError: the common endpoint could not be reached
        """
        connection = self.connection
        logger.info(
            f"Authenticating against {connection.url} "
            f"(database={connection.database}, user={connection.username})"
        )

        try:
            result = self.transport.call(
                connection.common_endpoint,
                "authenticate",
                [connection.database, connection.username, connection.api_key, {}],
            )
        except ProtocolFault as e:
            raise AuthenticationError(f"Authentication rejected: {e.message}") from e

        uid = getattr(result, "value", None)
        if isinstance(uid, bool) or not isinstance(uid, int) or uid == 0:
            raise AuthenticationError(
                f"Authentication failed for {connection.username} on {connection.database}"
            )

        self.uid = uid
        logger.info(f"Authenticated, uid={uid}")
        return uid

    def ensure_authenticated(self) -> int:
        with self._auth_lock:
            if self.uid is None:
                return self.authenticate()
            return self.uid

    def call(
        self,
        model: str,
        operation: str,
        args: Sequence[Any],
        kwargs: Optional[Dict[str, Any]] = None,
        method_name: str = "execute_kw",
    ) -> WireValue:
        """
        Execute a model operation on the object endpoint.

        Args:
            model: Remote model name (e.g. "account.move")
            operation: Model method (search, search_count, read, ...)
            args: Positional arguments for the model method
            kwargs: Named arguments for the model method
            method_name: Generic execute method on the endpoint

        Returns:
            The decoded wire value returned by the remote
        """
        uid = self.ensure_authenticated()
        params = [
            self.connection.database,
            uid,
            self.connection.api_key,
            model,
            operation,
            list(args),
        ]
        if kwargs:
            params.append(kwargs)

        return self.transport.call(self.connection.object_endpoint, method_name, params)

    def close(self) -> None:
        self.transport.close()
