"""Version-control collaborator — current commit/branch lookups via git."""

from __future__ import annotations

import asyncio
from pathlib import Path

UNKNOWN = "unknown"


class GitClient:
    """Thin async wrapper around the git CLI; failures return None/False."""

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    async def _git(self, *args: str) -> str | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return None
        stdout, _ = await proc.communicate()
        if proc.returncode != 0:
            return None
        return stdout.decode("utf-8", errors="replace").strip()

    async def repo_root(self) -> Path | None:
        out = await self._git("rev-parse", "--show-toplevel")
        return Path(out) if out else None

    async def current_branch(self) -> str | None:
        return await self._git("branch", "--show-current") or None

    async def current_commit(self) -> str | None:
        return await self._git("rev-parse", "HEAD") or None

    async def create_branch(self, name: str) -> bool:
        if await self._git("checkout", "-b", name) is not None:
            return True
        return await self._git("checkout", name) is not None
