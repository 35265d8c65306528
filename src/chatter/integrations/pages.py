"""Markdown page directory used as the default document sink and data source."""

from __future__ import annotations

import asyncio
import json
import re
import threading
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from loguru import logger

from chatter.interfaces import PageResult, SearchResult

NEWER_THAN_RE = re.compile(r"^newer_than:(\d+)d$")
OPERATOR_WORDS = frozenset({"or", "and"})
SNIPPET_CHARS = 200


class MarkdownPages:
    """Stores pages as ``<id>.md`` with a JSON sidecar holding the metadata.

    Searching understands ``newer_than:Nd``; other ``key:value`` operators are
    ignored and the remaining words must all appear in the title or body.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.Lock()

    async def create_page(self, title: str, content: str, parent_id: str, tags: list[str]) -> PageResult:
        try:
            page_id = await asyncio.to_thread(self._write, title, content, parent_id, tags)
        except OSError as exc:
            logger.exception("pages.create.error title={}", title)
            return PageResult(success=False, message=str(exc))
        path = self._root / f"{page_id}.md"
        return PageResult(page_id=page_id, success=True, message="created", url=path.as_uri())

    async def search(self, query: str, limit: int, time_range: str) -> SearchResult:
        try:
            items = await asyncio.to_thread(self._search, query, limit)
        except OSError as exc:
            logger.exception("pages.search.error query={}", query)
            return SearchResult(success=False, message=str(exc))
        return SearchResult(items=items, success=True, message=f"{len(items)} pages")

    def _write(self, title: str, content: str, parent_id: str, tags: list[str]) -> str:
        page_id = uuid.uuid4().hex[:16]
        meta = {
            "id": page_id,
            "title": title,
            "parent_id": parent_id,
            "tags": tags,
            "created_at": datetime.now(UTC).isoformat(),
        }
        with self._lock:
            self._root.mkdir(parents=True, exist_ok=True)
            (self._root / f"{page_id}.md").write_text(f"# {title}\n\n{content}\n", encoding="utf-8")
            (self._root / f"{page_id}.json").write_text(json.dumps(meta, ensure_ascii=False), encoding="utf-8")
        logger.info("pages.create id={} title={}", page_id, title)
        return page_id

    def _search(self, query: str, limit: int) -> list[dict[str, Any]]:
        if not self._root.is_dir():
            return []
        words, newer_than = _parse_query(query)
        items: list[dict[str, Any]] = []
        with self._lock:
            sidecars = sorted(self._root.glob("*.json"), key=lambda path: path.stat().st_mtime, reverse=True)
            for sidecar in sidecars:
                try:
                    meta = json.loads(sidecar.read_text(encoding="utf-8"))
                    body = sidecar.with_suffix(".md").read_text(encoding="utf-8")
                    page_id, title, tags, created = _read_meta(meta)
                    stale = newer_than is not None and created < newer_than
                except (json.JSONDecodeError, FileNotFoundError, KeyError, TypeError, ValueError) as exc:
                    logger.warning("pages.search.skip file={} error={}", sidecar.name, exc)
                    continue
                if stale:
                    continue
                haystack = f"{title}\n{body}".lower()
                if any(word not in haystack for word in words):
                    continue
                items.append({
                    "id": page_id,
                    "from": ", ".join(tags),
                    "subject": title,
                    "date": created.strftime("%Y-%m-%d %H:%M"),
                    "snippet": body[:SNIPPET_CHARS],
                })
                if len(items) >= limit:
                    break
        return items


def _read_meta(meta: object) -> tuple[str, str, list[str], datetime]:
    if not isinstance(meta, dict):
        raise TypeError("sidecar is not a JSON object")
    tags = meta.get("tags") or []
    if not isinstance(tags, list):
        raise TypeError("tags is not a list")
    created = datetime.fromisoformat(meta["created_at"])
    return str(meta["id"]), str(meta.get("title", "")), [str(tag) for tag in tags], created


def _parse_query(query: str) -> tuple[list[str], datetime | None]:
    words: list[str] = []
    newer_than: datetime | None = None
    for token in query.replace("(", " ").replace(")", " ").split():
        match = NEWER_THAN_RE.match(token)
        if match:
            newer_than = datetime.now(UTC) - timedelta(days=int(match.group(1)))
            continue
        if ":" in token or token.lower() in OPERATOR_WORDS:
            continue
        words.append(token.lower())
    return words, newer_than
