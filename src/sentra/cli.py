import argparse
import asyncio
import sys

from rich.console import Console
from rich.table import Table

from .api.llm import LLMClient
from .chat.gateway_client import GatewayClient
from .chat.orchestrator import ChatCallbacks, ChatOrchestrator
from .config import settings
from .core.exceptions import SentraException
from .memory.cfm import CFMService
from .store.remote import RemoteDocumentStore

console = Console()

CHAT_HELP = """[grey50]Commands:
  /rewind <index> <text>  edit a previous message of yours and regenerate
  /history                show the transcript with message indexes
  /title <text>           rename this chat
  /scenario <text>        set this chat's scenario (empty to clear)
  /cfm                    enable cross-friend memory for this chat
  /quit                   leave[/grey50]"""


def build_orchestrator(api_url: str, token: str, user_id: str) -> ChatOrchestrator:
    store = RemoteDocumentStore(api_url, token)
    gateway = GatewayClient(api_url, token)
    cfm = CFMService(store, user_id, llm=LLMClient() if settings.LLM_API_KEY else None)
    return ChatOrchestrator(store, user_id, gateway, cfm=cfm)


def _render_callbacks(errors: list[str]) -> ChatCallbacks:
    def on_error(reason: str) -> None:
        errors.append(reason)
        console.print(f"\n[bold red]Error: {reason}")

    return ChatCallbacks(
        on_start=lambda: console.print("[bold magenta]>[/bold magenta] ", end=""),
        on_delta=lambda fragment, _buffer: console.print(fragment, end="", markup=False, highlight=False),
        on_complete=lambda _message: console.print(),
        on_error=on_error,
    )


async def _show_history(orchestrator: ChatOrchestrator, chat_id: str) -> None:
    for index, message in enumerate(await orchestrator.get_messages(chat_id)):
        colour = "cyan" if message.role == "user" else "magenta"
        console.print(f"[{colour}]{index:>3} {message.role}:[/{colour}] ", end="")
        console.print(message.content, markup=False, highlight=False)


async def _handle_command(orchestrator: ChatOrchestrator, chat_id: str, line: str, callbacks: ChatCallbacks) -> bool:
    """Run a slash command; returns False when the user wants to leave."""
    command, _, rest = line[1:].partition(" ")
    if command in ("quit", "exit"):
        return False
    if command == "history":
        await _show_history(orchestrator, chat_id)
    elif command == "rewind":
        index, _, text = rest.partition(" ")
        if not index.isdigit() or not text.strip():
            console.print("[yellow]Usage: /rewind <index> <text>")
            return True
        await orchestrator.rewind(chat_id, int(index), text)
        await orchestrator.generate(chat_id, callbacks)
    elif command == "title":
        title = await orchestrator.update_title(chat_id, rest)
        console.print(f"[green]Renamed to {title!r}")
    elif command == "scenario":
        await orchestrator.update_scenario(chat_id, rest)
        console.print("[green]Scenario updated")
    elif command == "cfm":
        await orchestrator.cfm.enable(chat_id)
        console.print("[green]Cross-friend memory enabled for this chat")
    else:
        console.print(CHAT_HELP)
    return True


async def chat(api_url: str, token: str, user_id: str, character_id: str | None, chat_id: str | None) -> int:
    """
    Interactive chat in the terminal, streaming each reply as it arrives.
    """
    orchestrator = build_orchestrator(api_url, token, user_id)

    try:
        if chat_id is None:
            if character_id is None:
                console.print("[bold red]Pass --character to start a chat or --chat to resume one")
                return 1
            chat_id = await orchestrator.create_chat(character_id)
        record = await orchestrator.get_chat(chat_id)
    except SentraException as e:
        console.print(f"[bold red]{e.message}")
        return 1

    console.print(f"[bold]{record.title or record.character_name}[/bold] [grey50]({chat_id})[/grey50]")
    console.print(CHAT_HELP)
    await _show_history(orchestrator, chat_id)

    while True:
        try:
            line = await asyncio.to_thread(console.input, "[bold cyan]you>[/bold cyan] ")
        except (EOFError, KeyboardInterrupt):
            break
        line = line.strip()
        if not line:
            continue

        errors: list[str] = []
        callbacks = _render_callbacks(errors)
        try:
            if line.startswith("/"):
                if not await _handle_command(orchestrator, chat_id, line, callbacks):
                    break
            else:
                await orchestrator.send_and_generate(chat_id, line, callbacks)
        except SentraException as e:
            # Generation errors were already shown by on_error.
            if not errors:
                console.print(f"[bold red]{e.message}")

    await orchestrator.drain()
    return 0


async def recent(api_url: str, token: str, user_id: str, limit: int) -> int:
    orchestrator = build_orchestrator(api_url, token, user_id)
    try:
        chats = await orchestrator.list_recent_chats(limit)
    except SentraException as e:
        console.print(f"[bold red]{e.message}")
        return 1

    table = Table(title="Recent chats")
    table.add_column("Chat id", style="grey50")
    table.add_column("Title")
    table.add_column("Character")
    table.add_column("Last updated")
    for entry in chats:
        table.add_row(entry["id"], entry.get("title", ""), entry.get("characterName", ""), entry.get("lastUpdated", ""))
    console.print(table)
    return 0


def serve(host: str, port: int, reload: bool) -> None:
    """
    Run the Sentra API with uvicorn.
    """
    import uvicorn

    uvicorn.run("sentra.api.main:create_app", factory=True, host=host, port=port, reload=reload)


def main() -> int:
    """
    Command-line interface (CLI) entry point for Sentra.
    """
    parser = argparse.ArgumentParser(description="Sentra character chat")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", type=str, default=settings.API_HOST)
    serve_parser.add_argument("--port", type=int, default=settings.API_PORT)
    serve_parser.add_argument("--reload", action="store_true", default=settings.API_RELOAD)

    for name, help_text in (("chat", "Chat with a character"), ("recent", "List your recent chats")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--api-url", type=str, default=settings.SENTRA_API_URL)
        sub.add_argument("--token", type=str, required=True, help="Bearer token of the signed-in user")
        sub.add_argument("--user-id", type=str, required=True, help="Id of the signed-in user")
        if name == "chat":
            sub.add_argument("--character", type=str, help="Character id to start a new chat with")
            sub.add_argument("--chat", type=str, help="Existing chat id to resume")
        else:
            sub.add_argument("--limit", type=int, default=10)

    args = parser.parse_args()

    if args.command == "serve":
        serve(args.host, args.port, args.reload)
        return 0
    if args.command == "chat":
        return asyncio.run(chat(args.api_url, args.token, args.user_id, args.character, args.chat))
    if args.command == "recent":
        return asyncio.run(recent(args.api_url, args.token, args.user_id, args.limit))

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
