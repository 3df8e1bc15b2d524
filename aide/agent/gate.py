"""Permission and approval gate.

The gate only decides; it never runs a skill. Read-only skills pass
straight through. Other skills follow their ApprovalPolicy: ``trust``
passes, ``once`` asks the first time per conversation, ``always`` asks
every time. Asking registers a PendingApproval with the broker and waits
for ``resolve()`` or the timeout, whichever comes first; a timeout is a
denial. The deadline is fixed when the approval is opened, so it runs
even while the caller has not resumed the event stream.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from aide.config import ApprovalPolicy
from aide.conversation import ConversationState
from aide.skills.base import PermissionLevel

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_TIMEOUT = 60.0  # seconds


class Decision(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"


@dataclass
class PendingApproval:
    id: str
    conversation_id: str
    skill_name: str
    arguments: dict[str, Any]
    permission_level: PermissionLevel
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    future: asyncio.Future[bool] = field(default_factory=lambda: asyncio.get_running_loop().create_future())
    timer: asyncio.TimerHandle | None = None
    timed_out: bool = False


class ApprovalBroker:
    """Holds approvals waiting for a human decision.

    Lives for the whole process so a config reload never strands a
    request that is already waiting.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingApproval] = {}

    def open(
        self,
        conversation_id: str,
        skill_name: str,
        arguments: dict[str, Any],
        permission_level: PermissionLevel,
        timeout: float | None = None,
    ) -> PendingApproval:
        """Register an approval; with ``timeout`` it is denied once that many seconds pass."""
        pending = PendingApproval(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            skill_name=skill_name,
            arguments=arguments,
            permission_level=permission_level,
        )
        if timeout is not None:
            pending.timer = asyncio.get_running_loop().call_later(timeout, self._expire, pending, timeout)
        self._pending[pending.id] = pending
        return pending

    def _expire(self, pending: PendingApproval, timeout: float) -> None:
        if pending.future.done():
            return
        logger.warning("Approval %s for %s timed out after %.0fs", pending.id, pending.skill_name, timeout)
        pending.timed_out = True
        pending.future.set_result(False)

    def resolve(self, approval_id: str, approved: bool) -> bool:
        """Deliver a decision. Returns False if the id is unknown or already settled."""
        pending = self._pending.get(approval_id)
        if pending is None or pending.future.done():
            logger.info("Ignoring decision for unknown or settled approval %s", approval_id)
            return False
        pending.future.set_result(approved)
        return True

    def discard(self, approval_id: str) -> None:
        pending = self._pending.pop(approval_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()

    def cancel_conversation(self, conversation_id: str) -> int:
        """Cancel every approval still waiting in ``conversation_id``."""
        cancelled = 0
        for pending in list(self._pending.values()):
            if pending.conversation_id == conversation_id and not pending.future.done():
                pending.future.cancel()
                cancelled += 1
        return cancelled

    def pending(self) -> list[PendingApproval]:
        return list(self._pending.values())


class ApprovalGate:
    def __init__(
        self,
        policies: Mapping[str, ApprovalPolicy],
        broker: ApprovalBroker,
        timeout: float = DEFAULT_APPROVAL_TIMEOUT,
    ) -> None:
        self.policies = dict(policies)
        self.broker = broker
        self.timeout = timeout

    def policy_for(self, skill_name: str, permission: PermissionLevel) -> ApprovalPolicy:
        if permission == PermissionLevel.READ_ONLY:
            return ApprovalPolicy.TRUST
        return self.policies.get(skill_name, ApprovalPolicy.ALWAYS)

    def evaluate(
        self,
        conversation: ConversationState,
        skill_name: str,
        permission: PermissionLevel,
    ) -> Decision | None:
        """Return an immediate decision, or None when a human must be asked."""
        policy = self.policy_for(skill_name, permission)
        if policy == ApprovalPolicy.TRUST:
            return Decision.APPROVED
        if policy == ApprovalPolicy.ONCE and skill_name in conversation.approved_skills:
            return Decision.APPROVED
        return None

    def request(
        self,
        conversation: ConversationState,
        skill_name: str,
        arguments: dict[str, Any],
        permission: PermissionLevel,
    ) -> PendingApproval:
        pending = self.broker.open(
            conversation.conversation_id, skill_name, arguments, permission, timeout=self.timeout,
        )
        logger.info(
            "Approval %s requested for %s in conversation %s",
            pending.id, skill_name, conversation.conversation_id,
        )
        return pending

    async def wait(self, pending: PendingApproval, conversation: ConversationState) -> Decision:
        """Wait for the decision on ``pending``; a timeout counts as denial.

        The pending entry is removed whatever the outcome. Cancelling the
        caller cancels the wait and its timer.
        """
        try:
            approved = await asyncio.shield(pending.future)
        except asyncio.CancelledError:
            if not pending.future.cancelled():
                raise
            # Conversation ended while waiting
            logger.info("Approval %s cancelled", pending.id)
            approved = False
        finally:
            self.broker.discard(pending.id)

        if not approved:
            return Decision.DENIED
        if self.policy_for(pending.skill_name, pending.permission_level) == ApprovalPolicy.ONCE:
            conversation.approved_skills.add(pending.skill_name)
        return Decision.APPROVED
