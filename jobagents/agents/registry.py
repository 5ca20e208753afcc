# =============================================================================
# Agent Registry — Explicit id → Task Mapping
# =============================================================================
#
# Built once at process start (see bootstrap.build_services) and passed by
# reference to the plan executor, batch matcher and application pipeline.
# Plans name agents by id; an unknown id is a configuration error.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from jobagents.agents.errors import UnknownAgentError
from jobagents.agents.runtime import AgentTask

logger = logging.getLogger(__name__)


class AgentRegistry:
    def __init__(self, tasks: Iterable[AgentTask] = ()) -> None:
        self._tasks: dict[str, AgentTask] = {}
        for task in tasks:
            self.register(task)

    def register(self, task: AgentTask) -> None:
        agent_id = task.descriptor.id
        if agent_id in self._tasks:
            raise ValueError(f"Agent already registered: {agent_id}")
        self._tasks[agent_id] = task
        logger.debug("Registered agent %s", agent_id)

    def get(self, agent_id: str) -> AgentTask:
        """
        Raises:
            UnknownAgentError: If no task is registered under `agent_id`.
        """
        try:
            return self._tasks[agent_id]
        except KeyError:
            raise UnknownAgentError(agent_id) from None

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._tasks

    def __iter__(self) -> Iterator[str]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)
