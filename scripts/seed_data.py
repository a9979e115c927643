#!/usr/bin/env python3
"""
Seed script — creates a demo dataset through the public HTTP APIs.

Creates:
  • 10 user profiles (users service)
  • A friendship graph (each user sends 3 requests; most get accepted)
  • 2 groups, one public and one private, with a few members
  • 3 posts per user (posts service)
  • Some likes, comments and shares across posts

Run after both services are up (tokens are signed with JWT_SECRET):
  python scripts/seed_data.py --users-url http://localhost:8080 --posts-url http://localhost:8081
"""
import argparse
import json
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional

from socialgraph.auth import issue_token

BASE_USERS = [
    ("alice_ai", "Alice Chen"),
    ("bob_builder", "Bob Martinez"),
    ("carol_codes", "Carol Singh"),
    ("dave_designs", "Dave Kim"),
    ("eve_engineer", "Eve Johnson"),
    ("frank_feeds", "Frank Williams"),
    ("grace_graphs", "Grace Li"),
    ("henry_hpc", "Henry Brown"),
    ("iris_infra", "Iris Davis"),
    ("jack_ml", "Jack Wilson"),
]

SAMPLE_POSTS = [
    "Just shipped a new feature to production 🚀 Zero downtime deploys are beautiful.",
    "Weekend hike photos coming soon. The view from the ridge was unreal.",
    "Anyone up for a board game night on Friday?",
    "Finally finished the book club pick. No spoilers, but that ending!",
    "Fan-out on write vs pull-on-read — the eternal debate in feed architecture.",
    "Made fresh pasta for the first time. Messy kitchen, great dinner.",
    "Hot take: tabs for indentation, spaces for alignment.",
    "Our group hit 100 members today. Thanks everyone for joining!",
    "Learning to juggle. Currently at two balls and a lot of patience.",
    "OpenTelemetry traces finally connected to Jaeger. The waterfall diagram is so satisfying.",
    "Coffee recommendations for someone who thinks espresso is too strong?",
    "Moved across the city this week. Boxes everywhere.",
]

COMMENTS = ["Love this!", "Congrats 🎉", "Totally agree.", "Tell me more!", "Haha, same."]


@dataclass
class ApiClient:
    base_url: str

    def _send(self, method: str, path: str, data: Optional[dict], user_id: Optional[int]) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if user_id is not None:
            headers["Authorization"] = f"Bearer {issue_token(user_id)}"
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                raw = resp.read()
                return json.loads(raw) if raw else {}
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on {method} {path}: {e.read().decode()}")
            return {}

    def post(self, path: str, data: dict, user_id: Optional[int] = None) -> dict:
        return self._send("POST", path, data, user_id)

    def get(self, path: str, user_id: Optional[int] = None) -> dict:
        return self._send("GET", path, None, user_id)


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for _ in range(retries):
        try:
            if client.get("/health").get("status") == "ok":
                print("  API is ready!\n")
                return
        except OSError:
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


def main(users_url: str, posts_url: str, seed: int) -> None:
    rng = random.Random(seed)
    users = ApiClient(users_url)
    posts = ApiClient(posts_url)
    wait_for_api(users)
    wait_for_api(posts)

    # ── Profiles ──────────────────────────────────────────────────────────
    print("Creating profiles...")
    user_ids: list[int] = []
    for username, full_name in BASE_USERS:
        result = users.post("/user/createProfile", {"username": username, "full_name": full_name})
        uid = result.get("id")
        if uid:
            user_ids.append(uid)
            print(f"  ✓ {username} ({uid})")
        else:
            print(f"  ✗ Failed to create {username}")

    if len(user_ids) < 2:
        print("Not enough users created — aborting")
        return

    # ── Friendships ───────────────────────────────────────────────────────
    print("\nCreating friendships...")
    accepted = 0
    for uid in user_ids:
        for other in rng.sample([u for u in user_ids if u != uid], k=min(3, len(user_ids) - 1)):
            if users.post("/friends/request", {"friend_id": other}, user_id=uid).get("status") != "pending":
                continue
            # Leave roughly a quarter of the requests pending
            if rng.random() < 0.75:
                users.post("/friends/accept", {"friend_id": uid}, user_id=other)
                accepted += 1
    print(f"  ✓ {accepted} friendships accepted")

    # ── Groups ────────────────────────────────────────────────────────────
    print("\nCreating groups...")
    for name, privacy, owner in (
        ("Weekend Hikers", "public", user_ids[0]),
        ("Book Club", "private", user_ids[1]),
    ):
        group = users.post("/groups", {"name": name, "privacy": privacy}, user_id=owner)
        gid = group.get("id")
        if not gid:
            continue
        for uid in rng.sample([u for u in user_ids if u != owner], k=min(4, len(user_ids) - 1)):
            users.post("/groups/join", {"group_id": gid}, user_id=uid)
            if privacy == "private":
                users.post(f"/groups/{gid}/members/approve", {"user_id": uid}, user_id=owner)
        print(f"  ✓ {name} ({privacy})")

    # ── Posts ─────────────────────────────────────────────────────────────
    print("\nCreating posts...")
    post_ids: list[int] = []
    pool = SAMPLE_POSTS[:]
    rng.shuffle(pool)
    for i, uid in enumerate(user_ids):
        for j in range(3):
            content = pool[(i * 3 + j) % len(pool)]
            pid = posts.post("/posts", {"content": content}, user_id=uid).get("id")
            if pid:
                post_ids.append(pid)
    print(f"  ✓ {len(post_ids)} posts created")

    # ── Engagement ────────────────────────────────────────────────────────
    print("\nAdding likes, comments and shares...")
    likes = comments = shares = 0
    for pid in post_ids:
        for uid in rng.sample(user_ids, k=rng.randint(0, 5)):
            posts.post(f"/posts/{pid}/like", {}, user_id=uid)
            likes += 1
        if rng.random() < 0.4:
            posts.post(f"/posts/{pid}/comments", {"content": rng.choice(COMMENTS)}, user_id=rng.choice(user_ids))
            comments += 1
        if rng.random() < 0.15:
            posts.post(f"/posts/{pid}/shares", {}, user_id=rng.choice(user_ids))
            shares += 1
    print(f"  ✓ {likes} likes, {comments} comments, {shares} shares")

    # ── Print summary ─────────────────────────────────────────────────────
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    token = issue_token(user_ids[0])
    print("# Popular posts this week:")
    print(f"  curl -s '{posts_url}/posts?sort=popular_week' | python3 -m json.tool\n")
    print(f"# Friends of '{BASE_USERS[0][0]}':")
    print(f"  curl -s -H 'Authorization: Bearer {token}' '{users_url}/friends' | python3 -m json.tool\n")
    print("# Check Jaeger traces: http://localhost:16686")
    print("# Check Prometheus: http://localhost:9090")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the social graph services")
    parser.add_argument("--users-url", default="http://localhost:8080", help="Users service base URL")
    parser.add_argument("--posts-url", default="http://localhost:8081", help="Posts service base URL")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    args = parser.parse_args()
    main(args.users_url, args.posts_url, args.seed)
