import logging
from typing import Any, Callable

import httpx

from pharmpos.client.event_bus import ChangeEvent, EventBus, Subscription, bus as default_bus
from pharmpos.client.query_builder import QueryBuilder, QueryError, QueryResult, error_from_response

logger = logging.getLogger(__name__)

SERVER_TOPIC = "server"

# Functions whose success implies row changes the server does not announce itself
FUNCTION_EVENTS = {
    "complete-sale": [("sales", "INSERT"), ("inventory", "UPDATE")],
}


class Channel:
    """Named group of table subscriptions that are switched on and off together."""

    def __init__(self, bus: EventBus, name: str):
        self.bus = bus
        self.name = name
        self._handlers: list[tuple[str, Callable[[ChangeEvent], Any]]] = []
        self._subscriptions: list[Subscription] = []

    def on(self, table: str, callback: Callable[[ChangeEvent], Any]) -> "Channel":
        self._handlers.append((table, callback))
        return self

    def subscribe(self) -> "Channel":
        if not self._subscriptions:
            self._subscriptions = [self.bus.subscribe(table, cb) for table, cb in self._handlers]
        return self

    def unsubscribe(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []


class DBClient:
    """Async client for the PharmPOS HTTP API.

    ``table()`` starts a query builder; ``invoke()`` and ``rpc()`` call
    server functions. Every response's instance headers are tracked so a
    server restart is reported on the ``server`` topic.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        http: httpx.AsyncClient | None = None,
        bus: EventBus | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.bus = bus or default_bus
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=None)
        self.server_instance_id: str | None = None
        self.server_start_time: str | None = None

    async def __aenter__(self) -> "DBClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    def set_token(self, token: str | None) -> None:
        self.token = token

    def table(self, name: str) -> QueryBuilder:
        return QueryBuilder(self, name, self.bus)

    from_ = table

    def channel(self, name: str) -> Channel:
        return Channel(self.bus, name)

    async def send(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        response = await self.http.request(
            method, f"{self.base_url}{path}", params=params or None, json=json, headers=headers
        )
        self._track_server(response)
        return response

    def _track_server(self, response: httpx.Response) -> None:
        instance_id = response.headers.get("X-Server-Instance-ID")
        if not instance_id:
            return
        start_time = response.headers.get("X-Server-Start-Time")
        previous = self.server_instance_id
        self.server_instance_id = instance_id
        self.server_start_time = start_time
        if previous and previous != instance_id:
            logger.warning("Server restarted: instance %s -> %s (started %s)", previous, instance_id, start_time)
            self.bus.emit(
                SERVER_TOPIC,
                ChangeEvent(
                    table=SERVER_TOPIC,
                    event_type="RESTART",
                    new={"previousInstanceId": previous, "instanceId": instance_id, "startTime": start_time},
                ),
            )

    async def _post(self, path: str, body: Any) -> QueryResult:
        try:
            response = await self.send("POST", path, json=body)
        except httpx.HTTPError as e:
            logger.error("POST %s failed: %s", path, e)
            return QueryResult(error=QueryError(message=str(e) or "Offline connection error"))
        if response.is_error:
            return QueryResult(error=error_from_response(response))
        try:
            return QueryResult(data=response.json())
        except ValueError:
            return QueryResult(error=QueryError("Response is not valid JSON", response.status_code, response.text))

    async def invoke(self, name: str, body: Any = None) -> QueryResult:
        result = await self._post(f"/api/functions/{name}", body or {})
        if result.ok:
            for table, event_type in FUNCTION_EVENTS.get(name, []):
                self.bus.emit(table, ChangeEvent(table=table, event_type=event_type, new=result.data))
        return result

    async def rpc(self, name: str, params: dict | None = None) -> QueryResult:
        return await self._post(f"/api/rpc/{name}", params or {})
