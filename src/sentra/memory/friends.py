"""Friendship records between users.

One document per pair at `friendships/{a}__{b}` (ids sorted), so either side
finds it without a query.
"""

from typing import Literal, Optional

from loguru import logger

from ..core.exceptions import InvalidArgumentError, NotFoundError, PermissionDeniedError
from ..core.state import utc_now_iso
from ..store.documents import DocumentStore
from ..store.paths import FRIENDSHIPS, friendship_path

FriendshipStatus = Literal["none", "pending", "friends"]

PENDING = "pending"
ACCEPTED = "accepted"


class FriendshipService:
    """Friend requests and the friendship gate used by cross-friend memory."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def _get(self, user_a: str, user_b: str) -> Optional[dict]:
        return await self.store.get(friendship_path(user_a, user_b))

    async def status(self, user_a: str, user_b: str) -> FriendshipStatus:
        record = await self._get(user_a, user_b)
        if record is None:
            return "none"
        if record.get("status") == ACCEPTED:
            return "friends"
        return "pending"

    async def are_friends(self, user_a: str, user_b: str) -> bool:
        if user_a == user_b:
            return False
        return await self.status(user_a, user_b) == "friends"

    async def send_request(self, from_user: str, to_user: str) -> FriendshipStatus:
        """Ask `to_user` for friendship.

        A request crossing an open request from the other side accepts it.
        """
        if from_user == to_user:
            raise InvalidArgumentError("Cannot send a friend request to yourself", field="to_user")

        record = await self._get(from_user, to_user)
        if record is not None:
            if record.get("status") == ACCEPTED:
                return "friends"
            if record.get("requestedBy") != from_user:
                await self.accept_request(from_user, to_user)
                return "friends"
            return "pending"

        await self.store.set(
            friendship_path(from_user, to_user),
            {
                "users": sorted([from_user, to_user]),
                "status": PENDING,
                "requestedBy": from_user,
                "createdAt": utc_now_iso(),
            },
        )
        logger.info(f"Friend request {from_user} -> {to_user}")
        return "pending"

    async def accept_request(self, user_id: str, requester_id: str) -> None:
        """Accept the pending request `requester_id` sent to `user_id`."""
        path = friendship_path(user_id, requester_id)
        record = await self.store.get(path)
        if record is None:
            raise NotFoundError("Friend request", path)
        if record.get("status") == ACCEPTED:
            return
        if record.get("requestedBy") == user_id:
            raise PermissionDeniedError("Cannot accept your own friend request")

        await self.store.update(path, {"status": ACCEPTED, "acceptedAt": utc_now_iso()})
        logger.info(f"Friendship accepted between {user_id} and {requester_id}")

    async def list_friends(self, user_id: str) -> list[str]:
        """Ids of everyone with an accepted friendship with `user_id`."""
        friends = []
        for snapshot in await self.store.list(FRIENDSHIPS):
            users = snapshot.data.get("users") or []
            if user_id not in users or snapshot.data.get("status") != ACCEPTED:
                continue
            friends.extend(u for u in users if u != user_id)
        return friends
