"""
MQTT Topic Schema for LUCID Asset Agent.

All topics under lucid/agents/<agent_id>/.
Agent retained: status, reported.
Hub retained (subscribed): desired.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_AGENT_ID_RE = re.compile(r"^[a-z0-9_]+$")


class TopicSchemaError(ValueError):
    """Raised when an invalid identifier is used to construct topics."""


def _validate_agent_id(agent_id: str) -> str:
    if not isinstance(agent_id, str) or not agent_id:
        raise TopicSchemaError("agent_id must be a non-empty string")
    if not _AGENT_ID_RE.fullmatch(agent_id):
        raise TopicSchemaError(
            f"agent_id '{agent_id}' is invalid; allowed: [a-z0-9_]+"
        )
    return agent_id


@dataclass(frozen=True, slots=True)
class TopicSchema:
    """
    MQTT topic schema for a single agent.
    Root: lucid/agents/<agent_id>
    """

    agent_username: str  # agent_id

    def __post_init__(self) -> None:
        _validate_agent_id(self.agent_username)

    @property
    def base(self) -> str:
        return f"lucid/agents/{self.agent_username}"

    # -------------------------
    # Agent retained
    # -------------------------
    def status(self) -> str:
        return f"{self.base}/status"

    def reported(self) -> str:
        return f"{self.base}/reported"

    # -------------------------
    # Hub retained
    # -------------------------
    def desired(self) -> str:
        return f"{self.base}/desired"
