"""
ChatStream — Entry Point
Terminal chat against local or remote language models.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import requests

from chatstream.config.settings import get_config_service
from chatstream.core.chat_engine import ChatEngine
from chatstream.core.errors import (
    AvailabilityError,
    BusyError,
    ChatStreamError,
    ConfigurationError,
)
from chatstream.core.generation import GenerationSession
from chatstream.core.models import ASSISTANT
from chatstream.core.request_builder import encode_image_file
from chatstream.services.availability_service import ConfigAvailabilityResolver
from chatstream.ui.colors import (
    AI_FG,
    ERROR_FG,
    MUTED_FG,
    PROMPT_FG,
    SUCCESS_FG,
    WARNING_FG,
    color_enabled,
    colorize,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05
USE_COLOR = color_enabled()

REPL_HELP = """\
Commands:
  /new [title]          start a new conversation
  /model provider:model switch model (e.g. ollama:llama3:8b)
  /list                 list conversations
  /open <n>             open conversation number n from /list
  /show                 print the current conversation
  /edit <n> <text>      replace message n and resend from there
  /delete <n>           delete message n
  /rename <title>       rename the current conversation
  /image <path>         attach an image to the next message
  /quit                 exit
Ctrl+C stops a streaming reply and leaves the chat."""


def _c(text: str, color: str) -> str:
    return colorize(text, color, enabled=USE_COLOR)


# =====================================================================
#  STREAM RENDERING
# =====================================================================

async def _render_reply(engine: ChatEngine, session: GenerationSession) -> None:
    """
    Print the reply as the ledger fills in. The ledger is the only
    source; deltas are never printed directly.
    """
    printed = 0
    shown_typing = False
    try:
        while True:
            finished = session.done
            replies = engine.replies_to(session.conversation_id, session.user_message_id)
            text = "".join(m.content for m in replies if m.role == ASSISTANT)
            if not text and not finished and not shown_typing:
                sys.stdout.write(_c(f"{session.model_id} is typing...\r", MUTED_FG))
                sys.stdout.flush()
                shown_typing = True
            if len(text) > printed:
                if printed == 0 and shown_typing:
                    sys.stdout.write("\033[2K\r" if USE_COLOR else "\n")
                sys.stdout.write(_c(text[printed:], AI_FG))
                sys.stdout.flush()
                printed = len(text)
            if finished:
                break
            await asyncio.sleep(POLL_INTERVAL)
    except asyncio.CancelledError:
        engine.stop_generation(session.conversation_id)
        raise
    sys.stdout.write("\n")
    if session.error:
        logger.debug(f"Generation failed: {session.error}")


async def _send(engine: ChatEngine, content: str, images: Optional[List[str]] = None) -> bool:
    try:
        session = await engine.send_message(content, images=images)
    except AvailabilityError as e:
        print(_c(f"⚠ {e}", WARNING_FG))
        return False
    except (BusyError, ConfigurationError) as e:
        print(_c(f"✗ {e}", ERROR_FG))
        return False
    await _render_reply(engine, session)
    engine.flush()
    return True


# =====================================================================
#  COMMANDS
# =====================================================================

def _build_engine(args: argparse.Namespace) -> ChatEngine:
    config = get_config_service(Path(args.config) if args.config else None)
    if args.temperature is not None:
        config.set("defaults.temperature", args.temperature)
    if args.max_tokens is not None:
        config.set("defaults.max_tokens", args.max_tokens)
    return ChatEngine.from_config(config, selection=args.model)


def cmd_ask(args: argparse.Namespace) -> int:
    """One-shot question in a fresh conversation."""

    async def _run() -> int:
        engine = _build_engine(args)
        try:
            engine.create_conversation()
            images = [encode_image_file(p) for p in args.image or []]
            ok = await _send(engine, " ".join(args.prompt), images=images)
            return 0 if ok else 2
        finally:
            engine.close()

    try:
        return asyncio.run(_run())
    except (ChatStreamError, OSError) as e:
        print(_c(f"✗ {e}", ERROR_FG))
        return 1


def cmd_providers(args: argparse.Namespace) -> int:
    """List providers, their catalog and whether they are usable."""
    engine = _build_engine(args)

    async def _check(provider_id: str, model_id: str) -> bool:
        return await engine.resolver.is_available(provider_id, model_id)

    for provider_id in engine.registry.provider_ids():
        provider = engine.registry.resolve(provider_id)
        if provider.is_local:
            try:
                models = ConfigAvailabilityResolver(engine.config, engine.registry).list_local_models(provider_id)
                status = _c("running", SUCCESS_FG)
            except (requests.RequestException, ValueError) as e:
                logger.debug(f"Local listing failed: {e}")
                models = []
                status = _c("not running", WARNING_FG)
        else:
            models = [m.id for m in provider.models]
            configured = asyncio.run(_check(provider_id, models[0] if models else ""))
            status = _c("configured", SUCCESS_FG) if configured else _c("no API key", WARNING_FG)
        print(f"{_c(provider.name, PROMPT_FG)} ({provider_id}, {provider.dialect.value}) — {status}")
        for model in models:
            print(f"  {provider_id}:{model}")
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    """List stored conversations (optionally filtered)."""
    engine = _build_engine(args)
    query = " ".join(args.query or [])
    conversations = engine.search_conversations(query)
    if not conversations:
        print(_c("No conversations.", MUTED_FG))
        return 0
    for i, conv in enumerate(conversations, 1):
        stamp = conv.updated_at.strftime("%Y-%m-%d %H:%M")
        print(f"{i:>3}. {conv.title}  {_c(f'[{conv.provider_id}:{conv.model_id}] {len(conv.messages)} msgs {stamp}', MUTED_FG)}")
    return 0


def _print_conversation(engine: ChatEngine) -> None:
    conv = engine.current_conversation()
    if conv is None:
        print(_c("No conversation selected.", MUTED_FG))
        return
    print(_c(f"— {conv.title} —", PROMPT_FG))
    for i, msg in enumerate(conv.messages, 1):
        label = "you" if msg.role != ASSISTANT else (msg.model_id or "assistant")
        color = PROMPT_FG if msg.role != ASSISTANT else AI_FG
        print(f"{_c(f'[{i}] {label}:', color)} {msg.content}")


async def _repl(engine: ChatEngine) -> None:
    pending_images: List[str] = []
    listed: List[str] = []
    print(_c(f"ChatStream — {engine.selection}. Type /help for commands.", MUTED_FG))

    while True:
        try:
            line = await asyncio.to_thread(input, _c("you › ", PROMPT_FG))
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue

        if not line.startswith("/"):
            await _send(engine, line, images=pending_images or None)
            pending_images = []
            continue

        cmd, _, rest = line.partition(" ")
        rest = rest.strip()
        try:
            if cmd in ("/quit", "/exit"):
                break
            elif cmd == "/help":
                print(REPL_HELP)
            elif cmd == "/new":
                engine.create_conversation(rest or None)
                print(_c("New conversation.", MUTED_FG))
            elif cmd == "/model":
                engine.set_model(rest)
                print(_c(f"Model: {engine.selection}", MUTED_FG))
            elif cmd == "/list":
                listed = [c.id for c in engine.list_conversations()]
                for i, conv in enumerate(engine.list_conversations(), 1):
                    marker = "*" if conv.id == engine.current_chat_id else " "
                    print(f"{marker}{i:>3}. {conv.title}")
            elif cmd == "/open":
                idx = int(rest) - 1
                if 0 <= idx < len(listed) and engine.select_conversation(listed[idx]):
                    _print_conversation(engine)
                else:
                    print(_c("Unknown conversation; run /list first.", ERROR_FG))
            elif cmd == "/show":
                _print_conversation(engine)
            elif cmd in ("/edit", "/delete"):
                conv = engine.current_conversation()
                num, _, text = rest.partition(" ")
                idx = int(num) - 1
                if conv is None or not 0 <= idx < len(conv.messages):
                    print(_c("No such message.", ERROR_FG))
                elif cmd == "/delete":
                    engine.delete_message(conv.messages[idx].id)
                else:
                    session = await engine.resend_message(conv.messages[idx].id, text.strip())
                    await _render_reply(engine, session)
                    engine.flush()
            elif cmd == "/rename":
                if engine.current_chat_id:
                    engine.rename_conversation(engine.current_chat_id, rest)
            elif cmd == "/image":
                pending_images.append(encode_image_file(rest))
                print(_c(f"Attached {rest}", MUTED_FG))
            else:
                print(_c(f"Unknown command {cmd}; /help lists commands.", ERROR_FG))
        except ValueError:
            print(_c("Expected a message number.", ERROR_FG))
        except AvailabilityError as e:
            print(_c(f"⚠ {e}", WARNING_FG))
        except (ChatStreamError, OSError) as e:
            print(_c(f"✗ {e}", ERROR_FG))


def cmd_chat(args: argparse.Namespace) -> int:
    """Interactive chat REPL."""

    async def _run() -> None:
        engine = _build_engine(args)
        try:
            await _repl(engine)
        finally:
            engine.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        print()
    except ConfigurationError as e:
        print(_c(f"✗ {e}", ERROR_FG))
        return 1
    return 0


# =====================================================================
#  CLI ENTRY WITH SUBCOMMANDS
# =====================================================================

def _create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="chatstream",
        description="ChatStream — chat with local and remote language models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  chatstream                                   # Interactive chat
  chatstream --model ollama:llama3:8b chat     # Chat with a local model
  chatstream ask "What is SSE?"                # One-shot question
  chatstream providers                         # Show providers and availability
  chatstream history rust                      # Search stored conversations
        """
    )

    parser.add_argument("--version", action="version", version="chatstream 0.1.0")
    parser.add_argument("--config", type=str, help="Path to config.json")
    parser.add_argument("--model", type=str, help="Override the model (provider:model)")
    parser.add_argument("--temperature", type=float, help="Sampling temperature (0-2)")
    parser.add_argument("--max-tokens", type=int, help="Maximum tokens to generate")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("chat", help="Interactive chat (default)")

    parser_ask = subparsers.add_parser("ask", help="Ask a single question")
    parser_ask.add_argument("prompt", nargs="+", help="Question text")
    parser_ask.add_argument("--image", action="append", help="Attach an image (repeatable)")

    subparsers.add_parser("providers", help="List providers and availability")

    parser_history = subparsers.add_parser("history", help="List stored conversations")
    parser_history.add_argument("query", nargs="*", help="Optional search text")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with subcommand routing."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    try:
        if args.command == "ask":
            return cmd_ask(args)
        elif args.command == "providers":
            return cmd_providers(args)
        elif args.command == "history":
            return cmd_history(args)
        elif args.command in ("chat", None):
            return cmd_chat(args)
    except ConfigurationError as e:
        print(_c(f"✗ {e}", ERROR_FG))
        return 1
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
