"""
Service catalogue for the iGPT API.

Each service is a fixed endpoint with a declared set of operations. An
operation is posted to ``<endpoint>/<operation>``; anything not declared
here is rejected before a request is built.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Union

from .runtime.errors import NormalizedError
from .runtime.request import CancellationToken
from .runtime.stream import StreamParser

if TYPE_CHECKING:
    from .client import IGPT

Result = Union[Any, NormalizedError, StreamParser]


class Service:
    """Base class binding a service endpoint to a client."""

    endpoint: ClassVar[str] = ""
    operations: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, client: "IGPT"):
        self._client = client

    def path_for(self, operation: str) -> str:
        """Resolve an operation name to its relative path.

        Raises:
            ValueError: If the operation is not declared for this service.
        """
        if operation not in self.operations:
            raise ValueError(
                f"Unknown operation {operation!r} for {self.endpoint}; "
                f"expected one of {sorted(self.operations)}"
            )
        return f"{self.endpoint}/{operation}"

    async def call(
        self,
        operation: str,
        params: dict[str, Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> Result:
        """Invoke a declared operation by name.

        Args:
            operation: One of this service's operations.
            params: Request body fields.
            cancel: Optional caller cancellation token.

        Returns:
            The decoded JSON body, a StreamParser when params has stream=True,
            or a NormalizedError.
        """
        return await self._client.invoke(self.path_for(operation), params or {}, cancel=cancel)


class RecallService(Service):
    """Recall operations (ask, search)."""

    endpoint = "/recall"
    operations = frozenset({"ask", "search"})

    async def ask(self, *, cancel: CancellationToken | None = None, **params: Any) -> Result:
        """Generate a response based on input and the user's connected context.

        Args:
            cancel: Optional caller cancellation token.
            **params: input (required), user, stream, quality, output_format.

        Returns:
            The answer, a StreamParser when stream=True, or a NormalizedError.
        """
        return await self.call("ask", params, cancel=cancel)

    async def search(self, *, cancel: CancellationToken | None = None, **params: Any) -> Result:
        """Search connected datasources.

        Args:
            cancel: Optional caller cancellation token.
            **params: query, user, date_from, date_to, max_results.
        """
        return await self.call("search", params, cancel=cancel)


class DatasourcesService(Service):
    """Datasource management (list, disconnect)."""

    endpoint = "/datasources"
    operations = frozenset({"list", "disconnect"})

    async def list(self, *, cancel: CancellationToken | None = None, **params: Any) -> Result:
        """List user datasources and their indexing status."""
        return await self.call("list", params, cancel=cancel)

    async def disconnect(self, *, cancel: CancellationToken | None = None, **params: Any) -> Result:
        """Disconnect a datasource (params: id, user) and remove its index data."""
        return await self.call("disconnect", params, cancel=cancel)


class ConnectorsService(Service):
    """Connector authorization."""

    endpoint = "/connectors"
    operations = frozenset({"authorize"})

    async def authorize(self, *, cancel: CancellationToken | None = None, **params: Any) -> Result:
        """Authorize, connect and start indexing a new datasource.

        Args:
            cancel: Optional caller cancellation token.
            **params: service, scope (required), user, redirect_uri, state.
        """
        return await self.call("authorize", params, cancel=cancel)


SERVICES: dict[str, type[Service]] = {
    "recall": RecallService,
    "datasources": DatasourcesService,
    "connectors": ConnectorsService,
}
