import random

import pytest

from socialgraph.routers.friends import get_rng


async def create(client, username, **extra):
    resp = await client.post("/user/createProfile", json={"username": username, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
async def trio(users_client):
    return [await create(users_client, name) for name in ("alice", "bob", "carol")]


class TestProfiles:
    async def test_create_and_fetch(self, users_client, auth):
        alice = await create(users_client, "alice", email="a@example.com", full_name="Alice A")
        resp = await users_client.get("/users/alice", headers=auth(alice["id"]))
        assert resp.status_code == 200
        assert resp.json()["full_name"] == "Alice A"

    async def test_create_with_explicit_id(self, users_client):
        user = await create(users_client, "fixed", id=77)
        assert user["id"] == 77

    async def test_duplicate_username_conflicts(self, users_client):
        await create(users_client, "alice")
        resp = await users_client.post("/user/createProfile", json={"username": "alice"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"

    async def test_invalid_username_rejected(self, users_client):
        resp = await users_client.post("/user/createProfile", json={"username": "a b"})
        assert resp.status_code == 422

    async def test_me_and_update(self, users_client, auth, trio):
        alice = trio[0]
        resp = await users_client.put(
            "/users/me", json={"bio": "hello"}, headers=auth(alice["id"])
        )
        assert resp.status_code == 200
        assert resp.json()["bio"] == "hello"

        me = (await users_client.get("/users/me", headers=auth(alice["id"]))).json()
        assert me["username"] == "alice"
        assert me["bio"] == "hello"

    async def test_unknown_user_is_404(self, users_client, auth, trio):
        resp = await users_client.get("/users/nobody", headers=auth(trio[0]["id"]))
        assert resp.status_code == 404
        assert resp.json() == {"error": "not_found", "detail": "User 'nobody' not found"}

    async def test_list_and_search(self, users_client, auth, trio):
        resp = await users_client.get(
            "/users", params={"query": "car"}, headers=auth(trio[0]["id"])
        )
        body = resp.json()
        assert body["total"] == 1
        assert body["users"][0]["username"] == "carol"


class TestFriendsApi:
    async def test_request_accept_list(self, users_client, auth, trio):
        alice, bob, _ = trio
        resp = await users_client.post(
            "/friends/request", json={"friend_id": bob["id"]}, headers=auth(alice["id"])
        )
        assert resp.json() == {"action": "request", "friend_id": bob["id"], "status": "pending"}

        incoming = await users_client.get(
            "/friends/requests", params={"type": "incoming"}, headers=auth(bob["id"])
        )
        assert incoming.json()["total"] == 1
        assert incoming.json()["friends"][0]["friend"]["username"] == "alice"

        resp = await users_client.post(
            "/friends/accept", json={"friend_id": alice["id"]}, headers=auth(bob["id"])
        )
        assert resp.json()["status"] == "accepted"

        friends = (await users_client.get("/friends", headers=auth(alice["id"]))).json()
        assert friends["total"] == 1
        assert friends["total_pages"] == 1
        assert friends["friends"][0]["friend"]["username"] == "bob"

        status = await users_client.get("/friends/status/bob", headers=auth(alice["id"]))
        assert status.json() == {"user_id": bob["id"], "status": "accepted"}

    async def test_error_mapping(self, users_client, auth, trio):
        alice, bob, _ = trio
        await users_client.post(
            "/friends/request", json={"friend_id": bob["id"]}, headers=auth(alice["id"])
        )
        dup = await users_client.post(
            "/friends/request", json={"friend_id": alice["id"]}, headers=auth(bob["id"])
        )
        assert dup.status_code == 409

        wrong_side = await users_client.post(
            "/friends/accept", json={"friend_id": bob["id"]}, headers=auth(alice["id"])
        )
        assert wrong_side.status_code == 403
        assert wrong_side.json()["error"] == "forbidden"

        to_self = await users_client.post(
            "/friends/request", json={"friend_id": alice["id"]}, headers=auth(alice["id"])
        )
        assert to_self.status_code == 400

        unknown_action = await users_client.post(
            "/friends/poke", json={"friend_id": bob["id"]}, headers=auth(alice["id"])
        )
        assert unknown_action.status_code == 422

    async def test_failed_action_is_rolled_back(self, users_client, auth, trio):
        alice, bob, _ = trio
        await users_client.post(
            "/friends/block", json={"friend_id": bob["id"]}, headers=auth(alice["id"])
        )
        resp = await users_client.post(
            "/friends/unblock", json={"friend_id": alice["id"]}, headers=auth(bob["id"])
        )
        assert resp.status_code == 403
        status = await users_client.get("/friends/status/bob", headers=auth(alice["id"]))
        assert status.json()["status"] == "blocked"

    async def test_suggestions_and_mutual(self, users_client, auth, trio):
        from socialgraph.apps.users_api import app

        app.dependency_overrides[get_rng] = lambda: random.Random(1)
        alice, bob, carol = trio
        for other in (bob, carol):
            await users_client.post(
                "/friends/request", json={"friend_id": other["id"]}, headers=auth(alice["id"])
            )
            await users_client.post(
                "/friends/accept", json={"friend_id": alice["id"]}, headers=auth(other["id"])
            )

        mutual = await users_client.get("/friends/mutual/carol", headers=auth(bob["id"]))
        assert mutual.json()["mutual_friends_count"] == 1

        friends = (await users_client.get("/friends", headers=auth(alice["id"]))).json()
        assert {f["friend"]["username"]: f["mutual_friends_count"] for f in friends["friends"]} == {
            "bob": 0,
            "carol": 0,
        }

        resp = await users_client.get(
            "/friends/suggestions", params={"limit": 5}, headers=auth(bob["id"])
        )
        suggestions = resp.json()["suggestions"]
        assert [s["username"] for s in suggestions] == ["carol"]
        assert suggestions[0]["mutual_friends_count"] == 1


class TestGroupsApi:
    async def test_group_lifecycle(self, users_client, auth, trio):
        alice, bob, carol = trio
        resp = await users_client.post(
            "/groups",
            json={"name": "Book club", "privacy": "private"},
            headers=auth(alice["id"]),
        )
        assert resp.status_code == 201
        group = resp.json()
        assert group["member_count"] == 1
        assert group["creator"]["username"] == "alice"

        join = await users_client.post(
            "/groups/join", json={"group_id": group["id"]}, headers=auth(bob["id"])
        )
        assert join.status_code == 201
        assert join.json()["status"] == "pending"

        hidden = await users_client.get(f"/groups/{group['id']}", headers=auth(bob["id"]))
        assert hidden.status_code == 403

        approve = await users_client.post(
            f"/groups/{group['id']}/members/approve",
            json={"user_id": bob["id"]},
            headers=auth(alice["id"]),
        )
        assert approve.json()["status"] == "approved"

        detail = (await users_client.get(f"/groups/{group['id']}", headers=auth(bob["id"]))).json()
        assert detail["member_count"] == 2
        assert detail["current_user_member"]["role"] == "member"

        not_admin = await users_client.post(
            f"/groups/{group['id']}/invite",
            json={"user_id": carol["id"]},
            headers=auth(bob["id"]),
        )
        assert not_admin.status_code == 403

        creator_leave = await users_client.post(
            f"/groups/{group['id']}/leave", headers=auth(alice["id"])
        )
        assert creator_leave.status_code == 409
        assert creator_leave.json()["error"] == "invalid_state"

        removed = await users_client.request(
            "DELETE",
            f"/groups/{group['id']}/members",
            json={"user_id": bob["id"]},
            headers=auth(alice["id"]),
        )
        assert removed.status_code == 204

        members = await users_client.get(
            f"/groups/{group['id']}/members", headers=auth(alice["id"])
        )
        assert members.json()["total"] == 1

        gone = await users_client.delete(f"/groups/{group['id']}", headers=auth(alice["id"]))
        assert gone.status_code == 204
        missing = await users_client.get(f"/groups/{group['id']}", headers=auth(alice["id"]))
        assert missing.status_code == 404


class TestInternalApi:
    async def test_batch_returns_known_subset(self, users_client, trio):
        ids = [trio[0]["id"], 9999, trio[2]["id"]]
        resp = await users_client.post("/internal/users/batch", json={"user_ids": ids})
        assert resp.status_code == 200
        assert {u["username"] for u in resp.json()["users"]} == {"alice", "carol"}

    async def test_by_username(self, users_client, trio):
        resp = await users_client.get("/internal/users/by-username/bob")
        assert resp.json() == {"id": trio[1]["id"], "username": "bob"}
        missing = await users_client.get("/internal/users/by-username/nobody")
        assert missing.status_code == 404

    async def test_health(self, users_client):
        resp = await users_client.get("/health")
        assert resp.json()["status"] == "ok"
