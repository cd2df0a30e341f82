"""Per-document access rules for the document routes.

    characters/{id}             read: anyone     write: authorID
    chats/{id}                  read/write: userId
    users/{uid}                 read: anyone     write: uid
    users/{uid}/CFM/{id}        read: uid or an accepted friend
    users/{uid}/<other>/{id}    read/write: uid
    friendships/{a}__{b}        read/write: a or b; created pending by the
                                requester, accepted only by the other side

Anything else is denied.
"""

from typing import Any, Optional

from ..core.exceptions import PermissionDeniedError
from ..memory.friends import ACCEPTED, PENDING, FriendshipService
from ..store.documents import DocumentStore
from ..store.paths import CFM, CHARACTERS, CHATS, FRIENDSHIPS, USERS

Data = Optional[dict[str, Any]]


def _owned_by(field: str, user_id: str, existing: Data, incoming: Data) -> bool:
    if existing is not None and existing.get(field) != user_id:
        return False
    if incoming is not None and field in incoming and incoming[field] != user_id:
        return False
    if existing is None and (incoming is None or incoming.get(field) != user_id):
        return False
    return True


def _participants(friendship_id: str, data: Data) -> list[str]:
    if data and isinstance(data.get("users"), list):
        return data["users"]
    return friendship_id.split("__")


def _may_write_friendship(
    user_id: str,
    friendship_id: str,
    existing: Data,
    incoming: Data,
    replace: bool,
) -> bool:
    participants = sorted(_participants(friendship_id, existing))
    if user_id not in participants:
        return False
    if incoming is None:
        return True

    if existing is None:
        return (
            sorted(incoming.get("users") or []) == participants
            and incoming.get("requestedBy") == user_id
            and incoming.get("status") == PENDING
        )

    # Who asked, and between whom, never changes after creation.
    for key in ("users", "requestedBy"):
        if key in incoming or replace:
            if incoming.get(key) != existing.get(key):
                return False

    old_status = existing.get("status")
    new_status = incoming.get("status", None if replace else old_status)
    if new_status == old_status:
        return True
    # The only transition is pending -> accepted, made by the recipient.
    return (
        old_status == PENDING
        and new_status == ACCEPTED
        and existing.get("requestedBy") in participants
        and existing.get("requestedBy") != user_id
    )


class AccessPolicy:
    """Decides whether a user may read or write a document."""

    def __init__(self, store: DocumentStore):
        self.friends = FriendshipService(store)

    async def can_read(self, user_id: str, path: str, data: Data) -> bool:
        segments = path.strip("/").split("/")
        root = segments[0]

        if root == CHARACTERS:
            return True
        if root == CHATS:
            return data is None or data.get("userId") == user_id
        if root == USERS:
            owner = segments[1]
            if owner == user_id or len(segments) == 2:
                return True
            if segments[2] == CFM:
                return await self.friends.are_friends(user_id, owner)
            return False
        if root == FRIENDSHIPS:
            return user_id in _participants(segments[1], data)
        return False

    async def can_write(
        self,
        user_id: str,
        path: str,
        existing: Data,
        incoming: Data,
        replace: bool = False,
    ) -> bool:
        """`incoming` is None for deletes; `replace` marks a whole-document overwrite."""
        segments = path.strip("/").split("/")
        root = segments[0]

        if root == CHARACTERS:
            return _owned_by("authorID", user_id, existing, incoming)
        if root == CHATS:
            return _owned_by("userId", user_id, existing, incoming)
        if root == USERS:
            return segments[1] == user_id
        if root == FRIENDSHIPS:
            return _may_write_friendship(user_id, segments[1], existing, incoming, replace)
        return False

    async def check_read(self, user_id: str, path: str, data: Data) -> None:
        if not await self.can_read(user_id, path, data):
            raise PermissionDeniedError(f"Not allowed to read {path}")

    async def check_write(
        self,
        user_id: str,
        path: str,
        existing: Data,
        incoming: Data,
        replace: bool = False,
    ) -> None:
        if not await self.can_write(user_id, path, existing, incoming, replace):
            raise PermissionDeniedError(f"Not allowed to write {path}")
