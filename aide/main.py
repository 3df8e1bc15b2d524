"""Console chat: a terminal caller of the runtime's core API.

Slash commands:
    /new      start a new conversation
    /reload   re-read the config file
    /migrate  re-embed memory with the active embedding model
    /forget   delete all long-term memory
    /health   probe the embedding model
    /quit     exit
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid

from aide.config import ConfigError, Settings, load_config
from aide.embeddings import EmbeddingError
from aide.events import (
    ApprovalRequestEvent,
    ChatEvent,
    ErrorEvent,
    MemoryContextEvent,
    TokenDeltaEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    WarningEvent,
    WarningsEvent,
)
from aide.memory import VectorStoreError
from aide.runtime import Runtime
from aide.types import Message

logger = logging.getLogger(__name__)


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def _render(runtime: Runtime, event: ChatEvent) -> None:
    if isinstance(event, TokenDeltaEvent):
        print(event.content, end="", flush=True)
    elif isinstance(event, WarningsEvent):
        for warning in event.warnings:
            if warning.severity == "warning":
                print(f"[warning] {warning.message}")
    elif isinstance(event, WarningEvent):
        print(f"[notice] {event.message}")
    elif isinstance(event, MemoryContextEvent):
        print(f"[memory] recalled {len(event.memories)} item(s)")
    elif isinstance(event, ToolCallStartEvent):
        print(f"\n[tool] {event.name} {event.arguments}")
    elif isinstance(event, ApprovalRequestEvent):
        answer = await _ask(
            f"[approval] allow {event.skill_name} ({event.permission_level}) "
            f"with {json.dumps(event.arguments)}? [y/N] "
        )
        if not runtime.resolve_approval(event.id, answer.strip().lower() in ("y", "yes")):
            # The approval timer fired while the prompt was open
            print("[approval expired; the tool call was denied]")
    elif isinstance(event, ToolCallResultEvent):
        print(f"[tool result] {event.content[:200]}")
    elif isinstance(event, ErrorEvent):
        print(f"\n[error] {event.message}")


async def _command(runtime: Runtime, settings: Settings, command: str) -> bool:
    """Handle a slash command. Returns False when the session should end."""
    if command == "/quit":
        return False
    if command == "/reload":
        try:
            await runtime.reload(load_config(settings.config_path))
            print("[config reloaded]")
        except ConfigError as e:
            print(f"[reload failed] {e}")
    elif command == "/migrate":
        try:
            report = await runtime.migrate_memory()
            print(f"[migrated {report.migrated} memories to {report.model_name}]")
        except (VectorStoreError, EmbeddingError) as e:
            print(f"[migration failed] {e}")
    elif command == "/forget":
        print(f"[removed {await runtime.clear_memory()} memories]")
    elif command == "/health":
        health = await runtime.embedder_health()
        status = "ok" if health.healthy else f"failing: {health.error}"
        print(f"[embedder {health.model_name}: {status}]")
    else:
        print(f"[unknown command {command}]")
    return True


async def run_console(settings: Settings) -> None:
    config = load_config(settings.config_path)
    runtime = await Runtime.start(config, settings)
    conversation_id = str(uuid.uuid4())
    history: list[Message] = []
    try:
        while True:
            try:
                line = (await _ask("> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line == "/new":
                runtime.end_conversation(conversation_id)
                conversation_id, history = str(uuid.uuid4()), []
                continue
            if line.startswith("/"):
                if not await _command(runtime, settings, line):
                    break
                continue

            history.append(Message.user(line))
            async for event in runtime.chat(conversation_id, history):
                await _render(runtime, event)
            print()
    finally:
        runtime.end_conversation(conversation_id)
        await runtime.close()


def main() -> None:
    """Entry point -- parse settings, start the runtime, run the console."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logger.info("Config: %s", settings.config_path)

    try:
        asyncio.run(run_console(settings))
    except ConfigError as e:
        logger.error("%s", e)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
