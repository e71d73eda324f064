"""Agent-end hook: runs memory capture when an agent run finishes.

Expected event shape::

    {"type": "agent", "action": "end",
     "context": {"workspaceDir": "...", "messages": [{"role": ..., "content": ...}],
                 "success": True, "runId": "...", "sessionKey": "..."}}

Anything else is ignored. Captures for the same workspace run one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from memoria.config import MemoriaConfig
from memoria.memory.capture import CaptureResult, capture_from_agent_end
from memoria.workspace import Workspace

logger = logging.getLogger(__name__)


def _capture_messages(raw: list[Any]) -> list[dict]:
    """Keep only items that look like ``{role: str, content: ...}``."""
    return [
        {"role": m["role"], "content": m.get("content")}
        for m in raw
        if isinstance(m, Mapping) and isinstance(m.get("role"), str)
    ]


class MemoryCaptureHook:
    """Callable handler for agent-end events."""

    def __init__(self, config: MemoriaConfig | None = None) -> None:
        self.config = config or MemoriaConfig()
        self._workspaces: dict[Path, Workspace] = {}
        self._lane_locks: dict[Path, asyncio.Lock] = {}

    def workspace(self, workspace_dir: str | Path) -> Workspace:
        root = Path(workspace_dir).expanduser().resolve()
        if root not in self._workspaces:
            self._workspaces[root] = Workspace(root, config=self.config)
        return self._workspaces[root]

    # ── Lane Queue (per-workspace serialization) ─────────────

    def _get_lane_lock(self, root: Path) -> asyncio.Lock:
        if root not in self._lane_locks:
            self._lane_locks[root] = asyncio.Lock()
        return self._lane_locks[root]

    async def __call__(self, event: Mapping[str, Any]) -> CaptureResult | None:
        """Capture facts from a finished run. Returns None when the event is not for us."""
        if not self.config.capture.enabled:
            return None
        if event.get("type") != "agent" or event.get("action") != "end":
            return None

        context = event.get("context")
        if not isinstance(context, Mapping):
            return None
        workspace_dir = context.get("workspaceDir")
        raw_messages = context.get("messages")
        if not isinstance(workspace_dir, str) or not workspace_dir:
            return None
        if not isinstance(raw_messages, list) or not raw_messages:
            return None

        try:
            workspace = self.workspace(workspace_dir)
            messages = _capture_messages(raw_messages)
            session_key = context.get("sessionKey") or event.get("sessionKey")
            capture = self.config.capture
            async with self._get_lane_lock(workspace.root):
                return await asyncio.to_thread(
                    capture_from_agent_end,
                    workspace,
                    messages,
                    default_entity=capture.default_entity,
                    max_facts_per_run=capture.max_facts_per_run,
                    opinion_confidence=capture.opinion_confidence,
                    run_id=context.get("runId") if isinstance(context.get("runId"), str) else None,
                    session_key=session_key if isinstance(session_key, str) else None,
                    success=context.get("success") if isinstance(context.get("success"), bool) else None,
                )
        except Exception as e:
            logger.error("Memory capture hook failed for %s: %s", workspace_dir, e)
            return CaptureResult()
