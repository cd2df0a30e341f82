"""Document path conventions.

Documents live at paths with an even number of segments
(`collection/id[/subcollection/id...]`); collections at odd ones.
"""

CHARACTERS = "characters"
CHATS = "chats"
USERS = "users"
FRIENDSHIPS = "friendships"
CHAT_HISTORY = "chatHistory"
CFM = "CFM"


def split_path(path: str) -> tuple[str, str]:
    """Split a document path into (collection path, document id)."""
    segments = path.strip("/").split("/")
    if len(segments) < 2 or len(segments) % 2 != 0 or any(not s for s in segments):
        raise ValueError(f"Invalid document path: {path!r}")
    return "/".join(segments[:-1]), segments[-1]


def validate_collection(collection: str) -> str:
    segments = collection.strip("/").split("/")
    if len(segments) % 2 != 1 or any(not s for s in segments):
        raise ValueError(f"Invalid collection path: {collection!r}")
    return "/".join(segments)


def character_path(character_id: str) -> str:
    return f"{CHARACTERS}/{character_id}"


def chat_path(chat_id: str) -> str:
    return f"{CHATS}/{chat_id}"


def user_path(user_id: str) -> str:
    return f"{USERS}/{user_id}"


def chat_history_collection(user_id: str) -> str:
    return f"{USERS}/{user_id}/{CHAT_HISTORY}"


def chat_history_path(user_id: str, chat_id: str) -> str:
    return f"{chat_history_collection(user_id)}/{chat_id}"


def cfm_path(user_id: str, character_id: str) -> str:
    return f"{USERS}/{user_id}/{CFM}/{character_id}"


def friendship_id(user_a: str, user_b: str) -> str:
    first, second = sorted((user_a, user_b))
    return f"{first}__{second}"


def friendship_path(user_a: str, user_b: str) -> str:
    return f"{FRIENDSHIPS}/{friendship_id(user_a, user_b)}"
