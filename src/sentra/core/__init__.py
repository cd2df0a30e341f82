"""Core types shared by the API and the chat client."""
