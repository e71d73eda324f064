"""Plain lexical search over a workspace's Markdown files.

Good enough to drive the enhancement pipeline and the CLI without an
external index: each file is cut into fixed line windows, and a window
scores the share of query terms it contains.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from memoria.retrieval.text import query_terms
from memoria.retrieval.types import SearchResult

logger = logging.getLogger(__name__)

WINDOW_LINES = 8
SNIPPET_CHARS = 700

_META_COMMENT = re.compile(r"\s*<!--.*?-->")


class BankSearch:
    """Callable ``(query, limit) -> list[SearchResult]`` over ``root/**/*.md``."""

    def __init__(self, root: Path, window: int = WINDOW_LINES) -> None:
        self.root = root
        self.window = window

    def __call__(self, query: str, limit: int) -> list[SearchResult]:
        terms = set(query_terms(query))
        if not terms:
            return []

        hits: list[SearchResult] = []
        for md_file in sorted(self.root.rglob("*.md")):
            try:
                lines = md_file.read_text(encoding="utf-8").splitlines()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Skipping unreadable file %s: %s", md_file, e)
                continue
            locator = md_file.relative_to(self.root).as_posix()
            source = locator.split("/", 1)[0] if "/" in locator else "workspace"
            hits.extend(self._scan(locator, source, lines, terms))

        hits.sort(key=lambda r: (-r.score, r.locator, r.start_line or 0))
        return hits[:limit]

    def _scan(
        self, locator: str, source: str, lines: list[str], terms: set[str]
    ) -> list[SearchResult]:
        results = []
        for start in range(0, len(lines), self.window):
            chunk = "\n".join(_META_COMMENT.sub("", line) for line in lines[start : start + self.window])
            lowered = chunk.lower()
            matched = sum(1 for t in terms if t in lowered)
            if not matched:
                continue
            results.append(
                SearchResult(
                    locator=locator,
                    score=matched / len(terms),
                    snippet=chunk.strip()[:SNIPPET_CHARS],
                    start_line=start + 1,
                    end_line=min(start + self.window, len(lines)),
                    source=source,
                )
            )
        return results
