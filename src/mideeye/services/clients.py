"""Asynchronous relation clients consumed by the optimistic reconciler.

Two interchangeable backends implement :class:`RelationClient`:

- :class:`LocalRelationClient` calls :mod:`mideeye.services.relation_service`
  in a worker thread with a fresh session per call.
- :class:`HttpRelationClient` talks to the REST API over ``httpx``.

Both return :data:`~mideeye.schemas.common.ServiceResult` values and never
raise across the client boundary.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol, TypeVar

import httpx
from sqlalchemy.orm import Session

from mideeye.core.settings import settings
from mideeye.schemas.common import Err, Ok, ServiceResult
from mideeye.schemas.relations import RelationKind
from mideeye.services import relation_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RelationClient(Protocol):
    """Remote persistence for a single user-owned relation row."""

    async def cast_relation(
        self, kind: RelationKind, owner_id: str, target_id: str, value: int
    ) -> ServiceResult[int]: ...

    async def remove_relation(
        self, owner_id: str, target_id: str, kind: RelationKind
    ) -> ServiceResult[None]: ...

    async def get_aggregate(
        self, kind: RelationKind, target_ids: Sequence[str]
    ) -> ServiceResult[dict[str, int]]: ...

    async def get_owner_relations(
        self, owner_id: str, kind: RelationKind, target_ids: Sequence[str]
    ) -> ServiceResult[dict[str, int]]: ...


class LocalRelationClient:
    """Relation client backed directly by the database."""

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        if session_factory is None:
            from mideeye.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    def _call(self, fn: Callable[..., ServiceResult[T]], *args: Any) -> ServiceResult[T]:
        try:
            with self._session_factory() as db:
                return fn(db, *args)
        except Exception as err:  # session creation or connection failures
            logger.warning("Local relation call %s failed: %s", fn.__name__, err)
            return Err("Relation store unavailable")

    async def _run(self, fn: Callable[..., ServiceResult[T]], *args: Any) -> ServiceResult[T]:
        return await asyncio.to_thread(self._call, fn, *args)

    async def cast_relation(
        self, kind: RelationKind, owner_id: str, target_id: str, value: int
    ) -> ServiceResult[int]:
        return await self._run(relation_service.cast_relation, kind, owner_id, target_id, value)

    async def remove_relation(
        self, owner_id: str, target_id: str, kind: RelationKind
    ) -> ServiceResult[None]:
        return await self._run(relation_service.remove_relation, owner_id, target_id, kind)

    async def get_aggregate(
        self, kind: RelationKind, target_ids: Sequence[str]
    ) -> ServiceResult[dict[str, int]]:
        if not target_ids:
            return Ok({})
        return await self._run(relation_service.get_aggregate, kind, list(target_ids))

    async def get_owner_relations(
        self, owner_id: str, kind: RelationKind, target_ids: Sequence[str]
    ) -> ServiceResult[dict[str, int]]:
        if not target_ids:
            return Ok({})
        return await self._run(
            relation_service.get_owner_relations, owner_id, kind, list(target_ids)
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get("detail"), str):
        return body["detail"]
    return f"HTTP {response.status_code}"


class HttpRelationClient:
    """Relation client for the ``/relations`` REST endpoints.

    The server derives the owner from the bearer token, so ``owner_id``
    arguments are only used for logging.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout if timeout is not None else settings.api_http_timeout_seconds,
        )

    def set_token(self, token: str | None) -> None:
        """Swap credentials after an auth-state change."""
        self._token = token

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> ServiceResult[Any]:
        try:
            response = await self._client.request(
                method, path, json=payload, headers=self._headers()
            )
        except httpx.HTTPError as err:
            logger.warning("%s %s failed: %s", method, path, err)
            return Err(str(err) or err.__class__.__name__)

        if not response.is_success:
            detail = _error_detail(response)
            logger.warning("%s %s returned %d: %s", method, path, response.status_code, detail)
            return Err(detail)

        if response.status_code == httpx.codes.NO_CONTENT or not response.content:
            return Ok(None)
        try:
            return Ok(response.json())
        except ValueError:
            return Err("Malformed response body")

    async def cast_relation(
        self, kind: RelationKind, owner_id: str, target_id: str, value: int
    ) -> ServiceResult[int]:
        result = await self._request(
            "PUT", f"/relations/{kind.value}/{target_id}", {"value": value}
        )
        if not result.success:
            return result
        try:
            return Ok(int(result.data["value"]))
        except (KeyError, TypeError, ValueError):
            return Err("Malformed response body")

    async def remove_relation(
        self, owner_id: str, target_id: str, kind: RelationKind
    ) -> ServiceResult[None]:
        result = await self._request("DELETE", f"/relations/{kind.value}/{target_id}")
        if not result.success:
            return result
        return Ok(None)

    async def _batch(
        self, kind: RelationKind, endpoint: str, field: str, target_ids: Sequence[str]
    ) -> ServiceResult[dict[str, int]]:
        if not target_ids:
            return Ok({})
        result = await self._request(
            "POST", f"/relations/{kind.value}/{endpoint}", {"target_ids": list(target_ids)}
        )
        if not result.success:
            return result
        try:
            return Ok({str(key): int(value) for key, value in result.data[field].items()})
        except (AttributeError, KeyError, TypeError, ValueError):
            return Err("Malformed response body")

    async def get_aggregate(
        self, kind: RelationKind, target_ids: Sequence[str]
    ) -> ServiceResult[dict[str, int]]:
        return await self._batch(kind, "aggregate", "counts", target_ids)

    async def get_owner_relations(
        self, owner_id: str, kind: RelationKind, target_ids: Sequence[str]
    ) -> ServiceResult[dict[str, int]]:
        return await self._batch(kind, "mine", "values", target_ids)
