"""Runtime state: builds components from config and swaps them on reload.

Components that depend on configuration (provider chain, embedder,
skill registry, approval policies) live together in an immutable
``RuntimeSnapshot``. ``Runtime.reload`` builds a complete new snapshot
and replaces the reference in one assignment; a turn that already
started keeps the snapshot it captured, and a replaced snapshot's clients
are closed when its last turn ends. The vector store, conversation
state and pending approvals outlive reloads.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass

from aide.agent.gate import ApprovalBroker, ApprovalGate
from aide.agent.loop import AgentLoop, MessageSink
from aide.config import ApprovalPolicy, RuntimeConfig, Settings
from aide.conversation import ConversationRegistry
from aide.embeddings import Embedder, EmbedderHealth, check_embedder_health, create_embedder
from aide.events import ChatEvent
from aide.memory import Database, MigrationReport, VectorStore, check_migration, migrate
from aide.providers import ProviderChain, create_provider
from aide.skills import (
    FetchUrlSkill,
    MemoryReadSkill,
    MemoryWriteSkill,
    ReadFileSkill,
    RecallSkill,
    RememberSkill,
    SkillRegistry,
    WriteFileSkill,
)
from aide.types import Message
from aide.warning import (
    EMBEDDING_FAILED,
    MIGRATION_REQUIRED,
    NO_EMBEDDING_MODEL,
    SINGLE_CHAT_PROVIDER,
    ConfigWarning,
    WarningCollector,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_provider_chain(config: RuntimeConfig, settings: Settings | None = None) -> ProviderChain:
    providers = [
        create_provider(entry, system_prompt=config.chat.system_prompt, settings=settings)
        for entry in config.models.chat.providers
    ]
    return ProviderChain(providers)


def build_embedder(config: RuntimeConfig) -> Embedder:
    return create_embedder(config.models.embedding)


def build_skill_registry(
    config: RuntimeConfig,
    conversations: ConversationRegistry,
    embedder: Embedder,
    store: VectorStore,
) -> SkillRegistry:
    """Register the memory skills plus every sandboxed skill that has a config section."""
    registry = SkillRegistry()
    skills = config.skills
    if skills.read_file is not None:
        registry.register(ReadFileSkill(skills.read_file.allowed_directories))
    if skills.write_file is not None:
        registry.register(WriteFileSkill(skills.write_file.allowed_directories))
    if skills.fetch_url is not None:
        registry.register(FetchUrlSkill(skills.fetch_url.allowed_domains))
    registry.register(RememberSkill(embedder, store))
    registry.register(RecallSkill(embedder, store))
    registry.register(MemoryWriteSkill(conversations))
    registry.register(MemoryReadSkill(conversations))
    return registry


def build_approval_overrides(config: RuntimeConfig) -> dict[str, ApprovalPolicy]:
    return config.approval_overrides()


async def refresh_warnings(
    collector: WarningCollector,
    config: RuntimeConfig,
    store: VectorStore,
) -> list[ConfigWarning]:
    """Recompute the config-derived warnings after a build or migration."""
    if config.models.embedding is None or not config.models.embedding.providers:
        collector.add(ConfigWarning(
            code=NO_EMBEDDING_MODEL,
            message="No embedding model configured; memory uses the built-in local model.",
            severity="info",
        ))
    else:
        collector.clear(NO_EMBEDDING_MODEL)

    if len(config.models.chat.providers) == 1:
        collector.add(ConfigWarning(
            code=SINGLE_CHAT_PROVIDER,
            message="Only one chat provider is configured; there is no fallback if it fails.",
            severity="info",
        ))
    else:
        collector.clear(SINGLE_CHAT_PROVIDER)

    if store.migration_required:
        collector.add(ConfigWarning(
            code=MIGRATION_REQUIRED,
            message="The embedding model changed. Memory search is disabled until memory is migrated.",
        ))
    else:
        collector.clear(MIGRATION_REQUIRED)
    return collector.current()


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuntimeSnapshot:
    config: RuntimeConfig
    provider: ProviderChain
    embedder: Embedder
    registry: SkillRegistry
    gate: ApprovalGate

    async def close(self) -> None:
        """Close the HTTP clients held by the provider chain, embedder and skills."""
        await self.provider.close()
        await self.embedder.close()
        await self.registry.close()


class Runtime:
    """Owns the live components and exposes the core API to callers."""

    def __init__(self, db: Database, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self.db = db
        self.store = VectorStore(db)
        self.conversations = ConversationRegistry()
        self.broker = ApprovalBroker()
        self.warnings = WarningCollector()
        self._snapshot: RuntimeSnapshot | None = None
        # Turns in flight per snapshot, and replaced snapshots waiting for theirs to end
        self._turns: dict[int, int] = {}
        self._retired: dict[int, RuntimeSnapshot] = {}

    @classmethod
    async def start(cls, config: RuntimeConfig, settings: Settings | None = None) -> Runtime:
        db = Database(config.storage.database)
        await db.connect()
        runtime = cls(db, settings)
        try:
            await runtime.reload(config)
        except Exception:
            await db.disconnect()
            raise
        return runtime

    @property
    def snapshot(self) -> RuntimeSnapshot:
        if self._snapshot is None:
            raise RuntimeError("runtime not configured -- call reload() first")
        return self._snapshot

    async def _build(self, config: RuntimeConfig) -> RuntimeSnapshot:
        provider = build_provider_chain(config, self.settings)
        try:
            embedder = build_embedder(config)
        except Exception:
            await provider.close()
            raise
        await check_migration(self.store, embedder)
        registry = build_skill_registry(config, self.conversations, embedder, self.store)
        gate = ApprovalGate(build_approval_overrides(config), self.broker, config.approval.timeout_seconds)
        return RuntimeSnapshot(config=config, provider=provider, embedder=embedder, registry=registry, gate=gate)

    async def reload(self, config: RuntimeConfig) -> None:
        """Build every config-dependent component and swap them in together.

        If building fails the previous snapshot stays active. The replaced
        snapshot is closed once no turn is using it.
        """
        snapshot = await self._build(config)
        previous, self._snapshot = self._snapshot, snapshot
        if previous is not None:
            if self._turns.get(id(previous)):
                self._retired[id(previous)] = previous
            else:
                await self._close_snapshot(previous)
        await refresh_warnings(self.warnings, config, self.store)
        logger.info(
            "Runtime configured: %d chat provider(s), embedder %s (%d dims), %d skill(s)",
            len(snapshot.provider), snapshot.embedder.model_name,
            snapshot.embedder.dimensions, len(snapshot.registry),
        )

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    async def chat(
        self,
        conversation_id: str,
        history: list[Message],
        sink: MessageSink | None = None,
    ) -> AsyncGenerator[ChatEvent, None]:
        """Run one turn; ``history`` must end with the new user message.

        The turn uses the snapshot that is current when iteration starts.
        """
        snapshot = self.snapshot
        key = id(snapshot)
        self._turns[key] = self._turns.get(key, 0) + 1
        try:
            loop = AgentLoop(
                provider=snapshot.provider,
                registry=snapshot.registry,
                gate=snapshot.gate,
                conversations=self.conversations,
                embedder=snapshot.embedder,
                vector_store=self.store,
                memory=snapshot.config.memory,
                warnings=self.warnings.current(),
                max_iterations=snapshot.config.chat.max_tool_iterations,
                sink=sink,
            )
            events = loop.run(conversation_id, history)
            try:
                async for event in events:
                    yield event
            finally:
                await events.aclose()
        finally:
            self._turns[key] -= 1
            if not self._turns[key]:
                del self._turns[key]
                retired = self._retired.pop(key, None)
                if retired is not None:
                    await self._close_snapshot(retired)

    async def _close_snapshot(self, snapshot: RuntimeSnapshot) -> None:
        try:
            await snapshot.close()
        except Exception:
            logger.warning("Failed to close replaced runtime components", exc_info=True)
        else:
            logger.debug("Closed components of a replaced runtime snapshot")

    def resolve_approval(self, approval_id: str, approved: bool) -> bool:
        return self.broker.resolve(approval_id, approved)

    def end_conversation(self, conversation_id: str) -> None:
        """Drop working memory and Once approvals; cancel waiting approvals."""
        cancelled = self.broker.cancel_conversation(conversation_id)
        if cancelled:
            logger.info("Cancelled %d pending approval(s) for %s", cancelled, conversation_id)
        self.conversations.remove(conversation_id)

    async def migrate_memory(self) -> MigrationReport:
        snapshot = self.snapshot
        report = await migrate(self.store, snapshot.embedder)
        await refresh_warnings(self.warnings, snapshot.config, self.store)
        return report

    async def clear_memory(self) -> int:
        removed = await self.store.clear()
        await refresh_warnings(self.warnings, self.snapshot.config, self.store)
        return removed

    async def embedder_health(self, timeout: float = 5.0) -> EmbedderHealth:
        health = await check_embedder_health(self.snapshot.embedder, timeout=timeout)
        if health.healthy:
            self.warnings.clear(EMBEDDING_FAILED)
        else:
            self.warnings.add(ConfigWarning(
                code=EMBEDDING_FAILED,
                message=f"Embedding model {health.model_name} is not working: {health.error}",
            ))
        return health

    async def close(self) -> None:
        snapshots = list(self._retired.values())
        self._retired.clear()
        if self._snapshot is not None:
            snapshots.append(self._snapshot)
        for snapshot in snapshots:
            await self._close_snapshot(snapshot)
        await self.db.disconnect()
