import logging
import random
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

import httpx

from pharmpos.client.event_bus import ChangeEvent, EventBus
from pharmpos.filters import FilterExpression, Operator

if TYPE_CHECKING:
    from pharmpos.client.client import DBClient

logger = logging.getLogger(__name__)


class Action(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


CHANGE_TYPES = {Action.INSERT: "INSERT", Action.UPDATE: "UPDATE", Action.DELETE: "DELETE"}


@dataclass
class QueryError:
    message: str
    status: int | None = None
    details: Any = None


@dataclass
class QueryResult:
    data: Any = None
    error: QueryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def generate_uuid() -> str:
    """Random (version 4) UUID, falling back to the ``random`` module when the OS has no entropy source."""
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        return str(uuid.UUID(int=random.getrandbits(128), version=4))


def error_from_response(response: httpx.Response) -> QueryError:
    try:
        body = response.json()
    except ValueError:
        body = None
    message = None
    if isinstance(body, dict):
        message = body.get("detail") or body.get("message") or body.get("error")
    if not isinstance(message, str):
        message = response.text or response.reason_phrase or f"HTTP {response.status_code}"
    return QueryError(message=message, status=response.status_code, details=body)


class QueryBuilder:
    """Fluent description of one request against ``/api/<table>``.

    Nothing is sent until ``await execute()``; a builder runs exactly once.
    """

    def __init__(self, client: "DBClient", table: str, bus: EventBus):
        self.client = client
        self.table = table
        self.bus = bus
        self.action = Action.SELECT
        self.columns = "*"
        self.filters: list[FilterExpression] = []
        self.order_by: tuple[str, bool] | None = None
        self.row_limit: int | None = None
        self.single_mode: str | None = None  # "single" or "maybe"
        self.payload: Any = None
        self.executed = False

    def select(self, columns: str = "*") -> "QueryBuilder":
        self.action = Action.SELECT
        self.columns = columns or "*"
        return self

    def insert(self, data: dict | list[dict]) -> "QueryBuilder":
        self.action = Action.INSERT
        self.payload = data
        return self

    def update(self, data: dict) -> "QueryBuilder":
        self.action = Action.UPDATE
        self.payload = data
        return self

    def delete(self) -> "QueryBuilder":
        self.action = Action.DELETE
        return self

    def _filter(self, column: str, operator: Operator, value: Any) -> "QueryBuilder":
        self.filters.append(FilterExpression.build(column, operator, value))
        return self

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(column, Operator.EQ, value)

    def neq(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(column, Operator.NEQ, value)

    def gt(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(column, Operator.GT, value)

    def gte(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(column, Operator.GTE, value)

    def lt(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(column, Operator.LT, value)

    def lte(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(column, Operator.LTE, value)

    def like(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(column, Operator.LIKE, value)

    def ilike(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(column, Operator.ILIKE, value)

    def in_(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self._filter(column, Operator.IN, list(values))

    def order(self, column: str, ascending: bool = True) -> "QueryBuilder":
        self.order_by = (column, ascending)
        return self

    def limit(self, n: int) -> "QueryBuilder":
        if n < 0:
            raise ValueError("limit must not be negative")
        self.row_limit = n
        return self

    def single(self) -> "QueryBuilder":
        self.single_mode = "single"
        return self

    def maybe_single(self) -> "QueryBuilder":
        self.single_mode = "maybe"
        return self

    def query_params(self) -> list[tuple[str, str]]:
        params = [f.to_param() for f in self.filters]
        if self.action is Action.SELECT:
            if self.columns != "*":
                params.append(("select", self.columns))
            if self.order_by:
                column, ascending = self.order_by
                params.append(("order", f"{column}.{'asc' if ascending else 'desc'}"))
            limit = self.row_limit
            if limit is None and self.single_mode:
                # two rows are enough to tell "exactly one" from "several"
                limit = 2 if self.single_mode == "single" else 1
            if limit is not None:
                params.append(("limit", str(limit)))
        return params

    def _prepare_insert_payload(self) -> dict | list[dict]:
        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        if not rows or not all(isinstance(r, dict) for r in rows):
            raise ValueError("insert() takes an object or a list of objects")
        prepared = [r if r.get("id") else {**r, "id": generate_uuid()} for r in rows]
        return prepared if isinstance(self.payload, list) else prepared[0]

    async def execute(self) -> QueryResult:
        if self.executed:
            raise RuntimeError(f"Query on '{self.table}' has already been executed")
        self.executed = True

        method = {
            Action.SELECT: "GET",
            Action.INSERT: "POST",
            Action.UPDATE: "PATCH",
            Action.DELETE: "DELETE",
        }[self.action]
        body = None
        if self.action is Action.INSERT:
            body = self._prepare_insert_payload()
        elif self.action is Action.UPDATE:
            if not isinstance(self.payload, dict):
                raise ValueError("update() takes an object")
            body = self.payload
        elif self.action is Action.DELETE and not self.filters:
            raise ValueError("delete() needs at least one filter")

        try:
            response = await self.client.send(method, f"/api/{self.table}", params=self.query_params(), json=body)
        except httpx.HTTPError as e:
            logger.error("Request %s %s failed: %s", method, self.table, e)
            return QueryResult(error=QueryError(message=str(e) or "Offline connection error"))

        if response.is_error:
            return QueryResult(error=error_from_response(response))
        try:
            data = response.json()
        except ValueError:
            return QueryResult(error=QueryError("Response is not valid JSON", response.status_code, response.text))

        if self.action is Action.SELECT:
            return self._select_result(data)

        if self.action is Action.INSERT:
            data = {**data, "data": body} if isinstance(data, dict) else data
        self.bus.emit(self.table, ChangeEvent(table=self.table, event_type=CHANGE_TYPES[self.action], new=data))
        return QueryResult(data=data)

    def _select_result(self, data: Any) -> QueryResult:
        if not self.single_mode:
            return QueryResult(data=data)
        rows = data if isinstance(data, list) else [data]
        if self.single_mode == "single" and len(rows) > 1:
            return QueryResult(error=QueryError("Expected a single row, found several", status=406))
        if rows:
            return QueryResult(data=rows[0])
        if self.single_mode == "maybe":
            return QueryResult(data=None)
        return QueryResult(error=QueryError("Expected a single row, found none", status=406))
