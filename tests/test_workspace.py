"""Tests for per-job working directories and delayed cleanup."""
import asyncio
import time
from pathlib import Path

import pytest

from clipsmith.errors import ValidationError
from clipsmith.workspace import EXPIRY_MARKER, WorkspaceManager


@pytest.fixture
def workspace(tmp_path):
    return WorkspaceManager(tmp_path / "workspaces", cleanup_delay=600)


def _populate(path: Path):
    (path / "clip_1_0s-30s.mp4").write_bytes(b"clip")
    (path / "chunks").mkdir()
    (path / "chunks" / "chunk_000.mp3").write_bytes(b"audio")


class TestPaths:
    def test_allocate_creates_directory(self, workspace):
        path = workspace.allocate("job-1")
        assert path.is_dir()
        assert path == workspace.root / "job-1"

    @pytest.mark.parametrize("filename", ["../secret", "a/b.mp4", "..", ".expires", "", "clip\\x.mp4"])
    def test_resolve_artifact_rejects_non_basenames(self, workspace, filename):
        with pytest.raises(ValidationError):
            workspace.resolve_artifact("job-1", filename)

    def test_resolve_artifact_rejects_bad_session(self, workspace):
        with pytest.raises(ValidationError):
            workspace.resolve_artifact("../other", "clips.zip")

    def test_resolve_artifact_stays_in_job_directory(self, workspace):
        path = workspace.resolve_artifact("job-1", "clip_1_0s-30s.mp4")
        assert path == workspace.root / "job-1" / "clip_1_0s-30s.mp4"


class TestCleanup:
    @pytest.mark.asyncio
    async def test_scheduled_cleanup_removes_directory(self, workspace):
        path = workspace.allocate("job-1")
        _populate(path)

        workspace.schedule_cleanup("job-1", delay=0.05)
        assert (path / EXPIRY_MARKER).exists()
        await asyncio.sleep(0.3)

        assert not path.exists()

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, workspace):
        _populate(workspace.allocate("job-1"))
        assert await workspace.cleanup("job-1") == []
        assert await workspace.cleanup("job-1") == []
        assert await workspace.cleanup("never-existed") == []

    @pytest.mark.asyncio
    async def test_cleanup_continues_past_failures(self, workspace, monkeypatch):
        path = workspace.allocate("job-1")
        _populate(path)
        (path / "locked.mp4").write_bytes(b"x")

        original_unlink = Path.unlink

        def flaky_unlink(self, missing_ok=False):
            if self.name == "locked.mp4":
                raise PermissionError("in use")
            return original_unlink(self, missing_ok=missing_ok)

        monkeypatch.setattr(Path, "unlink", flaky_unlink)
        failures = await workspace.cleanup("job-1")

        assert str(path / "locked.mp4") in failures
        assert not (path / "clip_1_0s-30s.mp4").exists()
        assert not (path / "chunks").exists()
        assert (path / "locked.mp4").exists()

    @pytest.mark.asyncio
    async def test_cleanup_can_keep_source_until_delay(self, workspace):
        path = workspace.allocate("job-1")
        _populate(path)
        (path / "source.mp4").write_bytes(b"upload")

        assert await workspace.cleanup("job-1", keep=["source.mp4"]) == []

        assert (path / "source.mp4").read_bytes() == b"upload"
        assert not (path / "clip_1_0s-30s.mp4").exists()
        assert not (path / "chunks").exists()
        assert (path / EXPIRY_MARKER).exists()
        assert "job-1" in workspace._timers

        await workspace.cleanup("job-1")
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_keep_of_missing_file_removes_everything(self, workspace):
        _populate(workspace.allocate("job-1"))
        await workspace.cleanup("job-1", keep=["source.mp4"])
        assert not workspace.path_for("job-1").exists()
        assert "job-1" not in workspace._timers

    @pytest.mark.asyncio
    async def test_immediate_cleanup_cancels_timer(self, workspace):
        _populate(workspace.allocate("job-1"))
        workspace.schedule_cleanup("job-1", delay=60)
        await workspace.cleanup("job-1")
        assert "job-1" not in workspace._timers


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_honours_persisted_deadlines(self, workspace):
        overdue = workspace.allocate("overdue")
        (overdue / EXPIRY_MARKER).write_text(f"{time.time() - 10:.3f}")
        pending = workspace.allocate("pending")
        (pending / EXPIRY_MARKER).write_text(f"{time.time() + 600:.3f}")
        active = workspace.allocate("active")

        removed = await workspace.sweep_expired()

        assert removed == ["overdue"]
        assert not overdue.exists()
        assert pending.exists()
        assert active.exists()
        assert "pending" in workspace._timers

        await workspace.shutdown()
        assert workspace._timers == {}
        assert (pending / EXPIRY_MARKER).exists()
