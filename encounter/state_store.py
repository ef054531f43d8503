"""
Encounter persistence.

- SnapshotStore: one JSON file per session key, overwritten atomically
  after every state-changing operation (the "current encounter").
- EncounterArchive: append-only JSONL of finished encounters, one line per
  encounter, so past fights can be listed and exported.

File IO is blocking; the async methods push it to a worker thread so the
event loop driving the controller never stalls on disk.
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def read_json(path: str | Path, default: Any = None) -> Any:
    """Read JSON; return ``default`` if the file is missing or empty."""
    p = Path(path)
    if not p.exists():
        return default
    text = p.read_text(encoding="utf-8").strip()
    if not text:
        return default
    return json.loads(text)


def atomic_write_json(path: str | Path, obj: Any) -> None:
    """Write to a .tmp sibling, then replace the target."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(p)


def append_jsonl(path: str | Path, obj: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(obj, ensure_ascii=False)
    with p.open("a", encoding="utf-8") as f:
        f.write(line + "\n")


def read_jsonl(path: str | Path) -> List[Dict[str, Any]]:
    p = Path(path)
    if not p.exists():
        return []
    entries: List[Dict[str, Any]] = []
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                entries.append(json.loads(line))
    return entries


_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def session_filename(session_key: str) -> str:
    name = _UNSAFE.sub("_", str(session_key)).strip("._")
    return name or "default"


class SnapshotStore:
    """
    Holds the live encounter snapshot for each session key.
    ``<root>/<session>.json``
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, session_key: str) -> Path:
        return self.root / f"{session_filename(session_key)}.json"

    async def save(self, session_key: str, snapshot: Dict[str, Any]) -> None:
        await asyncio.to_thread(atomic_write_json, self.path_for(session_key), snapshot)

    async def load(self, session_key: str) -> Optional[Dict[str, Any]]:
        data = await asyncio.to_thread(read_json, self.path_for(session_key))
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError("Encounter snapshot must be a JSON object.")
        return data

    async def clear(self, session_key: str) -> None:
        await asyncio.to_thread(self.path_for(session_key).unlink, missing_ok=True)

    async def exists(self, session_key: str) -> bool:
        return await asyncio.to_thread(self.path_for(session_key).exists)


class EncounterArchive:
    """
    Append-only history of finished encounters.
    ``<root>/<session>.history.jsonl``
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, session_key: str) -> Path:
        return self.root / f"{session_filename(session_key)}.history.jsonl"

    async def append(
        self,
        session_key: str,
        *,
        log: List[Dict[str, Any]],
        summary: str,
        result: str,
        ts: Optional[str] = None,
    ) -> Dict[str, Any]:
        entry = {
            "timestamp": ts or now_iso(),
            "log": log,
            "summary": summary,
            "result": result,
        }
        await asyncio.to_thread(append_jsonl, self.path_for(session_key), entry)
        return entry

    async def list(self, session_key: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(read_jsonl, self.path_for(session_key))

    async def export(self, session_key: str) -> str:
        entries = await self.list(session_key)
        return json.dumps(entries, ensure_ascii=False, indent=2)

    async def clear(self, session_key: str) -> None:
        await asyncio.to_thread(self.path_for(session_key).unlink, missing_ok=True)


__all__ = [
    "now_iso",
    "read_json",
    "atomic_write_json",
    "append_jsonl",
    "read_jsonl",
    "session_filename",
    "SnapshotStore",
    "EncounterArchive",
]
