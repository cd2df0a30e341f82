"""Unit tests for the SQL document store and path helpers."""

import pytest

from sentra.core.exceptions import NotFoundError
from sentra.store.documents import apply_update
from sentra.store.paths import cfm_path, chat_history_path, friendship_id, split_path


def test_split_path():
    assert split_path("users/u1/CFM/char_1") == ("users/u1/CFM", "char_1")
    for bad in ("users", "users/u1/CFM", "", "chats//x"):
        with pytest.raises(ValueError):
            split_path(bad)


def test_friendship_id_is_order_independent():
    assert friendship_id("zed", "amy") == friendship_id("amy", "zed") == "amy__zed"


def test_apply_update_dotted_keys():
    original = {"memories": {"chat_1": "old"}, "lastUpdated": "t0"}

    merged = apply_update(original, {"memories.chat_2": "new", "lastUpdated": "t1"})

    assert merged == {"memories": {"chat_1": "old", "chat_2": "new"}, "lastUpdated": "t1"}
    assert original["memories"] == {"chat_1": "old"}


async def test_get_missing_returns_none(store):
    assert await store.get("chats/nope") is None


async def test_set_replaces_and_merges(store):
    await store.set("chats/c1", {"title": "A", "userId": "alice"})
    await store.set("chats/c1", {"title": "B"})
    assert await store.get("chats/c1") == {"title": "B"}

    await store.set("chats/c1", {"userId": "alice"}, merge=True)
    assert await store.get("chats/c1") == {"title": "B", "userId": "alice"}


async def test_update_requires_existing_document(store):
    with pytest.raises(NotFoundError):
        await store.update("chats/missing", {"title": "x"})

    await store.set(cfm_path("alice", "char_1"), {"memories": {}})
    await store.update(cfm_path("alice", "char_1"), {"memories.chat_1": "We met."})
    assert (await store.get(cfm_path("alice", "char_1")))["memories"] == {"chat_1": "We met."}


async def test_returned_data_is_a_copy(store):
    await store.set("chats/c1", {"tags": ["a"]})
    data = await store.get("chats/c1")
    data["tags"].append("b")

    assert await store.get("chats/c1") == {"tags": ["a"]}


async def test_delete(store):
    await store.set("chats/c1", {"title": "A"})

    assert await store.delete("chats/c1") is True
    assert await store.delete("chats/c1") is False
    assert await store.get("chats/c1") is None


async def test_list_direct_children_only(store):
    await store.set("users/alice", {"username": "alice"})
    await store.set(chat_history_path("alice", "c1"), {"lastUpdated": "2024-01-01"})

    users = await store.list("users")

    assert [s.path for s in users] == ["users/alice"]
    assert users[0].id == "alice"


async def test_list_order_and_limit(store):
    for chat_id, stamp in [("c1", "2024-01-02"), ("c2", "2024-01-03"), ("c3", "2024-01-01"), ("c4", None)]:
        data = {"title": chat_id}
        if stamp:
            data["lastUpdated"] = stamp
        await store.set(chat_history_path("alice", chat_id), data)

    ordered = await store.list("users/alice/chatHistory", order_by="lastUpdated", descending=True)
    assert [s.id for s in ordered] == ["c2", "c1", "c3", "c4"]

    limited = await store.list("users/alice/chatHistory", order_by="lastUpdated", descending=True, limit=2)
    assert [s.id for s in limited] == ["c2", "c1"]


async def test_list_id_prefix_range(store):
    for chat_id in ("chat_alice_1", "chat_alice_2", "chat_bob_1"):
        await store.set(f"chats/{chat_id}", {})

    matches = await store.list("chats", id_prefix="chat_alice_")

    assert [s.id for s in matches] == ["chat_alice_1", "chat_alice_2"]


async def test_find_by_field(store):
    await store.set("users/u1", {"username": "alice"})
    await store.set("users/u2", {"username": "bob"})

    found = await store.find("users", "username", "bob")

    assert [s.id for s in found] == ["u2"]
    assert await store.find("users", "username", "carol") == []


async def test_find_typed_values_and_limit(store):
    await store.set("chats/c1", {"CFM_enabled": True, "turns": 3, "title": "3"})
    await store.set("chats/c2", {"CFM_enabled": False, "turns": 5})
    await store.set("chats/c3", {"CFM_enabled": True, "turns": 3})

    assert [s.id for s in await store.find("chats", "CFM_enabled", True)] == ["c1", "c3"]
    assert [s.id for s in await store.find("chats", "turns", 5)] == ["c2"]
    assert [s.id for s in await store.find("chats", "title", "3")] == ["c1"]
    assert [s.id for s in await store.find("chats", "turns", 3, limit=1)] == ["c1"]
    with pytest.raises(ValueError):
        await store.find("chats", "turns", [3])


async def test_list_limit_without_order(store):
    for chat_id in ("c3", "c1", "c2"):
        await store.set(f"chats/{chat_id}", {})

    assert [s.id for s in await store.list("chats", limit=2)] == ["c1", "c2"]
