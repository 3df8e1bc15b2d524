"""Agent loop and approval gate."""

from aide.agent.gate import ApprovalBroker, ApprovalGate, Decision, PendingApproval
from aide.agent.loop import MAX_TOOL_ITERATIONS, AgentLoop, MessageSink

__all__ = [
    "MAX_TOOL_ITERATIONS",
    "AgentLoop",
    "ApprovalBroker",
    "ApprovalGate",
    "Decision",
    "MessageSink",
    "PendingApproval",
]
