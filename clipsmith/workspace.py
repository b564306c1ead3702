"""Per-job working directories and their delayed cleanup.

Every job owns ``<workspace_dir>/<job id>/``. Completed jobs keep their
directory for ``cleanup_delay_seconds`` so clients can download artifacts;
failed jobs are cleaned immediately, except for an uploaded source, which
stays for the same delay so the job can be retried. The pending deadline is
written to an ``.expires`` marker inside the directory, so a restarted process
can sweep directories whose timers died with the previous one.
"""
import asyncio
import logging
import re
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from clipsmith.errors import ValidationError

logger = logging.getLogger(__name__)

EXPIRY_MARKER = ".expires"
SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _is_basename(name: str) -> bool:
    return bool(name) and SAFE_NAME.match(name) is not None and ".." not in name


class WorkspaceManager:
    """Owns the on-disk footprint of every job."""

    def __init__(self, root: Path, cleanup_delay: float = 600.0):
        self.root = Path(root)
        self.cleanup_delay = cleanup_delay
        self._timers: Dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()

    def path_for(self, job_id: str) -> Path:
        if not _is_basename(job_id):
            raise ValidationError(f"Invalid session id: {job_id!r}")
        return self.root / job_id

    def allocate(self, job_id: str) -> Path:
        """Create (if needed) and return the job's working directory."""
        path = self.path_for(job_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def resolve_artifact(self, session_id: str, filename: str) -> Path:
        """
        Map a (session id, filename) pair to a path inside the workspace.

        Only plain basenames are accepted, so a request can never escape the
        job's directory. The returned path may not exist.

        Raises:
            ValidationError: If either component is not a plain basename
        """
        if not _is_basename(filename):
            raise ValidationError(f"Invalid filename: {filename!r}")
        return self.path_for(session_id) / filename

    def schedule_cleanup(self, job_id: str, delay: Optional[float] = None) -> float:
        """
        Remove the job's directory after ``delay`` seconds.

        Returns:
            The deadline as a Unix timestamp
        """
        delay = self.cleanup_delay if delay is None else delay
        deadline = time.time() + delay

        path = self.path_for(job_id)
        if path.exists():
            (path / EXPIRY_MARKER).write_text(f"{deadline:.3f}")

        task = asyncio.create_task(self._cleanup_after(job_id, delay))
        with self._lock:
            previous = self._timers.pop(job_id, None)
            self._timers[job_id] = task
        if previous is not None:
            previous.cancel()

        logger.info(f"Workspace {job_id} scheduled for cleanup in {delay:.0f}s")
        return deadline

    async def _cleanup_after(self, job_id: str, delay: float):
        await asyncio.sleep(delay)
        with self._lock:
            self._timers.pop(job_id, None)
        await self.cleanup(job_id)

    def cancel_cleanup(self, job_id: str):
        with self._lock:
            task = self._timers.pop(job_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def cleanup(self, job_id: str, keep: Iterable[str] = ()) -> List[str]:
        """
        Delete the job's directory now.

        Idempotent, and tolerant of files that are already gone. A file that
        cannot be removed is logged and skipped; the rest are still deleted.

        Top-level files named in ``keep`` survive, and the directory holding
        them is scheduled for the normal delayed cleanup instead.

        Returns:
            Paths that could not be removed
        """
        self.cancel_cleanup(job_id)
        path = self.path_for(job_id)
        if not path.exists():
            return []

        keep = frozenset(keep)
        failures = await asyncio.to_thread(_remove_tree, path, keep)
        kept = sorted(name for name in keep if (path / name).exists())
        if failures:
            logger.warning(f"Workspace {job_id} partially cleaned, {len(failures)} entries left")
        if kept:
            logger.info(f"Workspace {job_id} trimmed, keeping {', '.join(kept)}")
            self.schedule_cleanup(job_id)
        elif not failures:
            logger.info(f"Workspace {job_id} removed")
        return failures

    async def sweep_expired(self, now: Optional[float] = None) -> List[str]:
        """
        Honour cleanup deadlines left by a previous process.

        Overdue directories are removed immediately; the rest get a new timer.

        Returns:
            Ids of the directories removed
        """
        now = time.time() if now is None else now
        removed = []
        if not self.root.exists():
            return removed

        for path in sorted(self.root.iterdir()):
            marker = path / EXPIRY_MARKER
            if not path.is_dir() or not marker.exists():
                continue
            try:
                deadline = float(marker.read_text().strip())
            except (OSError, ValueError):
                deadline = now

            if deadline <= now:
                await self.cleanup(path.name)
                removed.append(path.name)
            else:
                self.schedule_cleanup(path.name, deadline - now)

        if removed:
            logger.info(f"Swept {len(removed)} expired workspaces")
        return removed

    async def shutdown(self):
        """Stop pending timers. Their markers stay on disk for the next sweep."""
        with self._lock:
            tasks = list(self._timers.values())
            self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def _remove_tree(path: Path, keep: frozenset = frozenset()) -> List[str]:
    failures = []
    kept = False
    # Deepest entries first so directories are empty when reached
    for entry in sorted(path.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if entry.parent == path and entry.name in keep:
            kept = True
            continue
        try:
            if entry.is_dir() and not entry.is_symlink():
                entry.rmdir()
            else:
                entry.unlink(missing_ok=True)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not remove {entry}: {e}")
            failures.append(str(entry))

    if kept:
        return failures

    try:
        path.rmdir()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
        failures.append(str(path))
    return failures
