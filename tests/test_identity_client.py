import json
from types import SimpleNamespace

import httpx
import pytest

from socialgraph.clients.identity_client import IdentityClient, decorate_authors
from socialgraph.errors import UpstreamError

KNOWN = {
    1: {"id": 1, "username": "ana", "full_name": "Ana", "profile_picture_url": None},
    3: {"id": 3, "username": "cy", "full_name": "Cy", "profile_picture_url": "http://img/cy"},
}


def directory_handler(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        ids = json.loads(request.content)["user_ids"]
        return httpx.Response(200, json={"users": [KNOWN[i] for i in ids if i in KNOWN]})

    return handler


@pytest.fixture
async def client_and_calls():
    calls = []
    client = IdentityClient(
        base_url="http://identity", transport=httpx.MockTransport(directory_handler(calls))
    )
    await client.start()
    yield client, calls
    await client.stop()


def failing_client(exc=None, status_code=None):
    def handler(request):
        if exc is not None:
            raise exc
        return httpx.Response(status_code)

    return IdentityClient(base_url="http://identity", transport=httpx.MockTransport(handler))


class TestResolveBatch:
    async def test_partial_result(self, client_and_calls):
        client, calls = client_and_calls
        users = await client.resolve_batch([1, 2, 3])
        assert set(users) == {1, 3}
        assert users[3].username == "cy"

    async def test_deduplicates_into_one_call(self, client_and_calls):
        client, calls = client_and_calls
        await client.resolve_batch([3, 1, 3, 1, 1])
        assert len(calls) == 1
        assert json.loads(calls[0].content) == {"user_ids": [1, 3]}

    async def test_empty_input_makes_no_call(self, client_and_calls):
        client, calls = client_and_calls
        assert await client.resolve_batch([]) == {}
        assert calls == []

    async def test_transport_error_raises_upstream(self):
        client = failing_client(exc=httpx.ConnectError("refused"))
        await client.start()
        try:
            with pytest.raises(UpstreamError):
                await client.resolve_batch([1])
        finally:
            await client.stop()

    async def test_server_error_raises_upstream(self):
        client = failing_client(status_code=503)
        await client.start()
        try:
            with pytest.raises(UpstreamError):
                await client.resolve_batch([1])
        finally:
            await client.stop()

    async def test_not_started(self):
        with pytest.raises(UpstreamError):
            await IdentityClient(base_url="http://identity").resolve_batch([1])


class TestDecorate:
    async def test_unresolved_ids_stay_unset(self, client_and_calls):
        client, _ = client_and_calls
        items = [SimpleNamespace(user_id=i, author=None) for i in (1, 2, 3)]
        await decorate_authors(items, client)
        assert items[0].author.username == "ana"
        assert items[1].author is None
        assert items[2].author.username == "cy"

    async def test_failure_degrades_to_undecorated(self):
        client = failing_client(exc=httpx.ReadTimeout("slow"))
        await client.start()
        try:
            items = [SimpleNamespace(user_id=1, author=None)]
            result = await decorate_authors(items, client)
            assert result is items
            assert items[0].author is None
        finally:
            await client.stop()


class TestResolveUsername:
    async def test_known_and_unknown(self):
        def handler(request):
            if request.url.path.endswith("/ana"):
                return httpx.Response(200, json={"id": 1, "username": "ana"})
            return httpx.Response(404, json={"detail": "not found"})

        client = IdentityClient(base_url="http://identity", transport=httpx.MockTransport(handler))
        await client.start()
        try:
            assert await client.resolve_username("ana") == 1
            assert await client.resolve_username("nobody") is None
        finally:
            await client.stop()
