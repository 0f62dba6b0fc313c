"""Run state persistence for resumable migrations."""

from __future__ import annotations

import json
import logging
import os
import socket
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from basecamp_migrator.constants import (
    MIGRATIONS_DIRNAME,
    RUN_LOCK_STALE_SECONDS,
    RUN_STATE_SCHEMA_VERSION,
)
from basecamp_migrator.core.state import RunState, now_iso
from basecamp_migrator.exceptions import RunLockedError, RunStateNotFoundError
from basecamp_migrator.utils.logging import log_with_context


class RunStateStore:
    """Stores one JSON document per run under ``<state_dir>/migrations``.

    Writes are atomic (write ``.tmp`` then rename) so an interrupted save
    never leaves a truncated document behind.
    """

    def __init__(self, state_dir: Path, stale_lock_seconds: float = RUN_LOCK_STALE_SECONDS) -> None:
        self.directory = Path(state_dir) / MIGRATIONS_DIRNAME
        self.stale_lock_seconds = stale_lock_seconds
        self._held: dict[str, str] = {}

    def path_for(self, run_id: str) -> Path:
        return self.directory / f"{run_id}.json"

    def lock_path_for(self, run_id: str) -> Path:
        return self.directory / f"{run_id}.lock"

    def exists(self, run_id: str) -> bool:
        return self.path_for(run_id).exists()

    def save(self, state: RunState) -> None:
        """Atomically write the run state, stamping ``updated_at``."""
        state.updated_at = now_iso()
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(state.run_id)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(state.to_dict(), indent=2) + "\n")
            tmp.replace(path)
        except OSError as e:
            log_with_context(
                logging.ERROR, f"Failed to write run state {path}: {e}", run_id=state.run_id
            )
            raise
        self.renew_lock(state.run_id)

    def load(self, run_id: str) -> RunState:
        """Load a run state by id.

        Raises:
            RunStateNotFoundError: If no readable document exists for ``run_id``
        """
        path = self.path_for(run_id)
        if not path.exists():
            raise RunStateNotFoundError(f"Migration {run_id} not found in {self.directory}")
        try:
            raw = json.loads(path.read_text())
            if not isinstance(raw, dict):
                raise ValueError("document is not an object")
            version = raw.get("schema_version", 0)
            if version != RUN_STATE_SCHEMA_VERSION:
                raise ValueError(
                    f"schema version {version} != {RUN_STATE_SCHEMA_VERSION}"
                )
            return RunState.from_dict(raw)
        except (json.JSONDecodeError, OSError, ValueError, KeyError, TypeError) as e:
            log_with_context(logging.WARNING, f"Failed to read run state {path}: {e}")
            raise RunStateNotFoundError(f"Migration {run_id} is unreadable: {e}") from e

    def list_runs(self) -> list[dict[str, Any]]:
        """Summaries of every readable run, newest first."""
        if not self.directory.exists():
            return []
        runs = []
        for path in self.directory.glob("*.json"):
            try:
                raw = json.loads(path.read_text())
                runs.append(
                    {
                        "run_id": raw["run_id"],
                        "status": raw.get("status"),
                        "started_at": raw.get("started_at") or "",
                        "completed_at": raw.get("completed_at"),
                        "source_project": (raw.get("source") or {}).get("project_name"),
                        "target_board": (raw.get("target") or {}).get("board_name"),
                        "progress": raw.get("progress") or {},
                    }
                )
            except (json.JSONDecodeError, OSError, KeyError, TypeError) as e:
                log_with_context(logging.DEBUG, f"Skipping unreadable run state {path}: {e}")
        runs.sort(key=lambda r: r["started_at"], reverse=True)
        return runs

    def delete(self, run_id: str) -> None:
        """Delete a persisted run. Runs are never deleted automatically.

        Raises:
            RunStateNotFoundError: If the run does not exist
        """
        path = self.path_for(run_id)
        if not path.exists():
            raise RunStateNotFoundError(f"Migration {run_id} not found in {self.directory}")
        path.unlink()
        log_with_context(logging.INFO, f"Deleted run state {path}", run_id=run_id)

    # -- Lease ---------------------------------------------------------------

    def _read_lease(self, lock_path: Path) -> dict[str, Any] | None:
        try:
            lease = json.loads(lock_path.read_text())
        except (json.JSONDecodeError, OSError):
            return None
        return lease if isinstance(lease, dict) else None

    def _lock_is_stale(self, lock_path: Path) -> bool:
        """Whether the lease at ``lock_path`` may be taken over.

        A holder on this host is checked by pid; a holder elsewhere is stale
        once it has not renewed the lease within ``stale_lock_seconds``.
        """
        lease = self._read_lease(lock_path)
        if lease is None:
            # Unreadable lease is treated as stale
            return True
        pid = lease.get("pid")
        if lease.get("host") == socket.gethostname() and isinstance(pid, int):
            return not _process_alive(pid)
        try:
            renewed = float(lease.get("renewed_at", lease.get("created_at", 0)))
        except (TypeError, ValueError):
            return True
        return time.time() - renewed >= self.stale_lock_seconds

    def _write_lease(self, fd: int, token: str, created_at: float) -> None:
        with os.fdopen(fd, "w") as f:
            json.dump(
                {
                    "pid": os.getpid(),
                    "host": socket.gethostname(),
                    "token": token,
                    "created_at": created_at,
                    "renewed_at": time.time(),
                },
                f,
            )

    def _try_create_lock(self, lock_path: Path, token: str) -> bool:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        self._write_lease(fd, token, time.time())
        return True

    def _take_over(self, lock_path: Path, token: str, run_id: str) -> bool:
        """Replace a stale lease. Only the holder of the takeover guard may."""
        guard = lock_path.with_name(lock_path.name + ".takeover")
        if not self._try_create_lock(guard, token):
            if self._lock_is_stale(guard):
                # A taker died mid-takeover; clear the guard for the next attempt
                guard.unlink(missing_ok=True)
            return False
        try:
            if not self._lock_is_stale(lock_path):
                return False
            log_with_context(
                logging.WARNING, f"Taking over stale lock {lock_path}", run_id=run_id
            )
            lock_path.unlink(missing_ok=True)
            return self._try_create_lock(lock_path, token)
        finally:
            guard.unlink(missing_ok=True)

    def renew_lock(self, run_id: str) -> None:
        """Refresh ``renewed_at`` on a lease this store holds.

        Called on every save so a long run never looks abandoned.
        """
        token = self._held.get(run_id)
        if token is None:
            return
        lock_path = self.lock_path_for(run_id)
        lease = self._read_lease(lock_path)
        if lease is None or lease.get("token") != token:
            log_with_context(
                logging.WARNING, f"Lease {lock_path} is no longer held by this run", run_id=run_id
            )
            return
        tmp = lock_path.with_suffix(".lock.tmp")
        fd = os.open(tmp, os.O_CREAT | os.O_TRUNC | os.O_WRONLY)
        self._write_lease(fd, token, float(lease.get("created_at", time.time())))
        tmp.replace(lock_path)

    @contextmanager
    def lock(self, run_id: str) -> Iterator[None]:
        """Hold an exclusive lease on ``run_id`` for the duration of the block.

        The lease is renewed on every ``save`` while held. A lease whose
        holder is gone is taken over.

        Raises:
            RunLockedError: If another process holds a live lease
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        lock_path = self.lock_path_for(run_id)
        token = uuid.uuid4().hex

        if not self._try_create_lock(lock_path, token):
            if not self._lock_is_stale(lock_path) or not self._take_over(
                lock_path, token, run_id
            ):
                raise RunLockedError(f"Migration {run_id} is locked by another process")

        self._held[run_id] = token
        try:
            yield
        finally:
            self._held.pop(run_id, None)
            try:
                lock_path.unlink(missing_ok=True)
            except OSError as e:
                log_with_context(
                    logging.WARNING, f"Failed to remove lock {lock_path}: {e}", run_id=run_id
                )


def _process_alive(pid: int) -> bool:
    if os.name != "posix":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
