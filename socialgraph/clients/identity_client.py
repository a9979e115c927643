"""
Identity lookup client — how the posts service learns who wrote something.

The users service owns profiles. It exposes two internal endpoints:
  POST /internal/users/batch                 { "user_ids": [...] } → { "users": [...] }
  GET  /internal/users/by-username/{name}    → { "id", "username" }

The batch call returns whatever subset of ids it can resolve; missing ids are
simply absent. Transport failures raise UpstreamError and `decorate_authors`
turns that into undecorated results, so a slow or dead users service never
fails a posts request.

One client is built per process in the app lifespan (start → stop) and handed
to handlers through `get_identity_client`.
"""
import logging
from typing import Any, Callable, Iterable, Optional, Sequence

import httpx
from fastapi import Request

from socialgraph.config import settings
from socialgraph.errors import UpstreamError
from socialgraph.schemas import UserBrief
from socialgraph.telemetry import IDENTITY_RESOLUTION_ERRORS_TOTAL

logger = logging.getLogger(__name__)


class IdentityClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url or settings.identity_service_url
        self.timeout = timeout if timeout is not None else settings.identity_timeout_seconds
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            raise UpstreamError("Identity client used before start()")
        return self._http

    async def resolve_batch(self, ids: Iterable[int]) -> dict[int, UserBrief]:
        """
        Resolve display identities for `ids` in a single request.

        Returns a partial map: ids the users service does not know are left
        out. Raises UpstreamError if the call itself fails.
        """
        unique_ids = sorted({int(i) for i in ids})
        if not unique_ids:
            return {}

        try:
            resp = await self._client().post(
                "/internal/users/batch", json={"user_ids": unique_ids}
            )
            resp.raise_for_status()
            users = resp.json()["users"]
            resolved = [UserBrief.model_validate(u) for u in users]
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Batch user lookup failed: {exc}") from exc

        return {u.id: u for u in resolved if u.id in unique_ids}

    async def resolve_username(self, username: str) -> Optional[int]:
        """Return the user id for `username`, or None when it does not exist."""
        try:
            resp = await self._client().get(f"/internal/users/by-username/{username}")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return int(resp.json()["id"])
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Username lookup failed: {exc}") from exc


async def decorate_authors(
    items: Sequence[Any],
    client: IdentityClient,
    get_user_id: Callable[[Any], int] = lambda item: item.user_id,
    field: str = "author",
) -> Sequence[Any]:
    """
    Set `item.<field>` from the identity service for every resolvable item.

    Unresolved ids leave the field untouched (None). If the lookup fails as a
    whole the items are returned as they came in.
    """
    if not items:
        return items

    try:
        users = await client.resolve_batch(get_user_id(item) for item in items)
    except UpstreamError as exc:
        logger.warning("Identity lookup failed: %s — returning items without authors", exc)
        IDENTITY_RESOLUTION_ERRORS_TOTAL.inc()
        return items

    for item in items:
        user = users.get(get_user_id(item))
        if user is not None:
            setattr(item, field, user)
    return items


def get_identity_client(request: Request) -> IdentityClient:
    """FastAPI dependency — the client built in the app lifespan."""
    return request.app.state.identity_client
