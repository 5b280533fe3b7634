"""Markdown note storage inside a vault directory."""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|]')


class NoteStore(Protocol):
    async def exists(self, path: str) -> bool: ...

    async def read(self, path: str) -> str: ...

    async def create(self, path: str, content: str) -> str: ...

    async def modify(self, path: str, content: str) -> None: ...


def safe_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("-", name)


def note_path(folder: str, title: str, when: Optional[datetime] = None, suffix: str = "") -> str:
    """Vault-relative path like 'Meetings/Meeting 2026-01-13 09-30.md'."""
    stamp = (when or datetime.now()).strftime("%Y-%m-%d %H-%M")
    name = f"{safe_filename(title)} {stamp}{suffix}.md"
    folder = (folder or "").strip().strip("/")
    return f"{folder}/{name}" if folder else name


class VaultNoteStore:
    """Notes are plain files addressed by vault-relative POSIX paths."""

    def __init__(self, vault_root: Path):
        self.vault_root = Path(vault_root)

    def _abs(self, path: str) -> Path:
        return self.vault_root.joinpath(*PurePosixPath(path).parts)

    async def exists(self, path: str) -> bool:
        return self._abs(path).exists()

    async def read(self, path: str) -> str:
        return self._abs(path).read_text(encoding="utf-8")

    async def create(self, path: str, content: str) -> str:
        """Create a new note, never overwriting; returns the path actually used."""
        target = self._abs(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        candidate = PurePosixPath(path)
        counter = 1
        while target.exists():
            candidate = candidate.with_name(f"{PurePosixPath(path).stem} {counter}.md")
            target = self._abs(str(candidate))
            counter += 1
        target.write_text(content, encoding="utf-8")
        return str(candidate)

    async def modify(self, path: str, content: str) -> None:
        self._abs(path).write_text(content, encoding="utf-8")
