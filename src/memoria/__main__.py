"""Entry point: python -m memoria <command>

- entities               List entities, most recently updated first
- show <name>            Print one entity page
- conflicts [names...]   Report conflicting opinions
- top [limit]            Most important memory keys
- search <query>         Enhanced search over the workspace
- capture <file.json>    Capture facts from a saved transcript
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

from memoria.config import MemoriaConfig, load_config

USAGE = """\
Usage: python -m memoria <command> [args]
  entities               List entities
  show <name>            Print one entity page
  conflicts [names...]   Report conflicting opinions
  top [limit]            Most important memory keys
  search <query>         Enhanced search over the workspace
  capture <file.json>    Capture facts from a transcript (list of {role, content})"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_entities(config: MemoriaConfig, args: list[str]) -> int:
    from memoria.workspace import Workspace

    workspace = Workspace(config.workspace_dir, config=config)
    summaries = workspace.entities.list_entities()
    if not summaries:
        print("No entities yet.")
        return 0
    for s in summaries:
        print(f"{s.name:<24} {s.type:<12} {len(s.key_facts)} key facts, "
              f"{s.relationship_count} links  {s.summary}")
    return 0


def _run_show(config: MemoriaConfig, args: list[str]) -> int:
    from memoria.memory.codec import encode_entity
    from memoria.workspace import Workspace

    if not args:
        print("Usage: python -m memoria show <name>")
        return 1
    workspace = Workspace(config.workspace_dir, config=config)
    record = workspace.entities.get_entity(" ".join(args))
    if record is None:
        print(f"Entity not found: {' '.join(args)}")
        return 1
    print(encode_entity(record), end="")
    return 0


def _run_conflicts(config: MemoriaConfig, args: list[str]) -> int:
    from memoria.workspace import Workspace

    workspace = Workspace(config.workspace_dir, config=config)
    conflicts = workspace.opinions.detect_conflicts_for_entities(args or None)
    if not conflicts:
        print("No conflicts.")
        return 0
    for c in conflicts:
        print(f"[{c.type} {c.severity:.2f}] {c.description} ({', '.join(c.entities)})")
    return 0


def _run_top(config: MemoriaConfig, args: list[str]) -> int:
    from memoria.workspace import Workspace

    limit = int(args[0]) if args else 20
    workspace = Workspace(config.workspace_dir, config=config)
    for key, score in workspace.importance.get_top_keys(limit=limit):
        print(f"{score:.3f}  {key}")
    return 0


def _run_search(config: MemoriaConfig, args: list[str]) -> int:
    from memoria.retrieval.bank import BankSearch
    from memoria.workspace import Workspace

    if not args:
        print("Usage: python -m memoria search <query>")
        return 1
    workspace = Workspace(config.workspace_dir, config=config)
    results = asyncio.run(workspace.search(" ".join(args), BankSearch(workspace.root)))
    workspace.save()
    for r in results:
        span = f"#L{r.start_line}" if r.start_line is not None else ""
        first_line = r.snippet.splitlines()[0] if r.snippet else ""
        print(f"{r.score:.3f}  {r.locator}{span}  {first_line}")
    return 0


def _run_capture(config: MemoriaConfig, args: list[str]) -> int:
    from memoria.memory.capture import capture_from_agent_end
    from memoria.workspace import Workspace

    if not args:
        print("Usage: python -m memoria capture <file.json>")
        return 1
    data = json.loads(Path(args[0]).read_text(encoding="utf-8"))
    messages = data.get("messages", []) if isinstance(data, dict) else data
    workspace = Workspace(config.workspace_dir, config=config)
    result = capture_from_agent_end(
        workspace,
        messages,
        default_entity=config.capture.default_entity,
        max_facts_per_run=config.capture.max_facts_per_run,
        opinion_confidence=config.capture.opinion_confidence,
    )
    print(f"Captured {result.captured}, skipped {result.skipped}")
    return 0


COMMANDS = {
    "entities": _run_entities,
    "show": _run_show,
    "conflicts": _run_conflicts,
    "top": _run_top,
    "search": _run_search,
    "capture": _run_capture,
}


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    handler = COMMANDS.get(cmd)
    if handler is None:
        print(USAGE)
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)
    sys.exit(handler(config, sys.argv[2:]))


if __name__ == "__main__":
    main()
