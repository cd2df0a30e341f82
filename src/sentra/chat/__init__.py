"""Client side of a chat: gateway transport and the chat orchestrator."""

from .gateway_client import GatewayClient
from .orchestrator import ChatCallbacks, ChatOrchestrator

__all__ = ["ChatCallbacks", "ChatOrchestrator", "GatewayClient"]
