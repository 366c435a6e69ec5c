"""Session & checkpoint store backed by .ralph/session.json.

The record is rewritten wholesale on every save via a temp file and an atomic
rename. Reads are forgiving: a missing, unparsable or incomplete record is
reported as "no session" so a corrupted file never blocks a fresh start.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import uuid
from dataclasses import dataclass, replace
from pathlib import Path

from .display import warn
from .errors import PersistenceError
from .git import UNKNOWN, GitClient
from .models import Checkpoint, IterationRecord, Session, now_iso

SESSION_FILE = "session.json"


@dataclass
class ResumePoint:
    session: Session
    resume_iteration: int


class SessionStore:
    def __init__(self, ralph_dir: Path, git: GitClient | None = None) -> None:
        self.ralph_dir = ralph_dir
        self.git = git or GitClient(ralph_dir.parent)

    @property
    def path(self) -> Path:
        return self.ralph_dir / SESSION_FILE

    async def create_session(self, branch: str | None = None) -> Session:
        """Fresh session with an empty history; not persisted until saved."""
        if branch is None:
            branch = await self.git.current_branch() or UNKNOWN
        start_commit = await self.git.current_commit() or UNKNOWN
        return Session(
            id=str(uuid.uuid4()),
            started_at=now_iso(),
            start_commit=start_commit,
            branch=branch,
        )

    def _read(self) -> Session | None:
        try:
            data = json.loads(self.path.read_text())
            session = Session.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError):
            return None

        cp = session.checkpoint
        if cp is not None and not any(
            r.iteration == cp.iteration and r.success for r in session.iterations
        ):
            warn(f"Ignoring checkpoint at iteration {cp.iteration}: no successful record for it")
            session.checkpoint = None
        return session

    async def load_session(self) -> Session | None:
        return await asyncio.to_thread(self._read)

    def _write(self, payload: str) -> None:
        try:
            self.ralph_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(suffix=".tmp", dir=self.ralph_dir)
        except OSError as e:
            raise PersistenceError(
                f"Could not write {self.path}: {e}",
                "Session will continue in memory but cannot be resumed",
            ) from e
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
            os.replace(temp_path, self.path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise PersistenceError(
                f"Could not write {self.path}: {e}",
                "Session will continue in memory but cannot be resumed",
            ) from e

    async def save_session(self, session: Session) -> None:
        payload = json.dumps(session.to_dict(), indent=2)
        await asyncio.to_thread(self._write, payload)

    def append_iteration_result(self, session: Session, record: IterationRecord) -> Session:
        """New session with the record appended and its cost added to the total."""
        return replace(
            session,
            iterations=[*session.iterations, record],
            total_cost_usd=session.total_cost_usd + record.cost_usd,
        )

    async def build_checkpoint(self, session: Session, iteration: int) -> Session:
        """New session whose checkpoint points at ``iteration``; not persisted."""
        if not any(r.iteration == iteration and r.success for r in session.iterations):
            raise ValueError(f"iteration {iteration} has no successful record to checkpoint")
        commit = await self.git.current_commit() or UNKNOWN
        checkpoint = Checkpoint(iteration=iteration, commit=commit, timestamp=now_iso())
        return replace(session, checkpoint=checkpoint)

    async def save_checkpoint(self, session: Session, iteration: int) -> Session:
        updated = await self.build_checkpoint(session, iteration)
        await self.save_session(updated)
        return updated

    async def clear_session(self) -> None:
        try:
            present = self.path.exists()
        except OSError:
            present = False
        if present:
            await asyncio.to_thread(self._write, "{}")

    async def resume_from_checkpoint(self) -> ResumePoint | None:
        session = await self.load_session()
        if session is None or session.checkpoint is None:
            return None
        return ResumePoint(session=session, resume_iteration=session.checkpoint.iteration + 1)

    async def can_resume(self) -> bool:
        return await self.resume_from_checkpoint() is not None
