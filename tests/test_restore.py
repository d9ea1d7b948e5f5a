"""
Tests for the restore manager: exactly-once restore of edited manifests.
"""

import signal
from unittest.mock import MagicMock, patch

import pytest

from conftest import output_of
from cargo_matrix.core.manifest import write_text as real_write_text
from cargo_matrix.core.restore import RestoreManager
from cargo_matrix.domain.errors import ManifestIOError, RestoreFailure


@pytest.fixture
def manifest(tmp_path):
    path = tmp_path / "Cargo.toml"
    path.write_text("edited")
    return path


class TestRestoreManager:
    """Tests for begin_edit / close / interrupt."""

    def test_close_restores(self, term, manifest):
        manager = RestoreManager(term, exit_func=MagicMock())
        handle = manager.begin_edit("original", manifest)
        handle.close()
        assert manifest.read_text() == "original"
        assert not manager.has_pending

    def test_close_is_idempotent(self, term, manifest):
        manager = RestoreManager(term, exit_func=MagicMock())
        handle = manager.begin_edit("original", manifest)
        with patch.object(manager, "_write", wraps=manager._write) as write:
            handle.close()
            handle.close()
        assert write.call_count == 1

    def test_interrupt_then_close_writes_once(self, term, manifest):
        """Test an interrupt between begin_edit and close restores exactly once."""
        exit_func = MagicMock()
        manager = RestoreManager(term, exit_func=exit_func)
        handle = manager.begin_edit("original", manifest)

        with patch.object(manager, "_write", wraps=manager._write) as write:
            manager.handle_interrupt(signal.SIGINT, None)
            handle.close()

        assert write.call_count == 1
        assert manifest.read_text() == "original"
        exit_func.assert_called_once_with(1)

    def test_no_edit_means_no_write(self, term, manifest):
        exit_func = MagicMock()
        manager = RestoreManager(term, exit_func=exit_func)
        with patch.object(manager, "_write") as write:
            manager.handle_interrupt(signal.SIGINT, None)
        write.assert_not_called()
        assert manifest.read_text() == "edited"
        exit_func.assert_called_once_with(1)

    def test_poisoned_lock_still_restores(self, term, manifest):
        """Test the handler proceeds when the lock holder never released it."""
        manager = RestoreManager(term, exit_func=MagicMock(), lock_timeout=0.01)
        manager.begin_edit("original", manifest)
        manager._lock.acquire()

        manager.handle_interrupt(signal.SIGTERM, None)

        assert manifest.read_text() == "original"
        assert "restoring anyway" in output_of(term.console)

    def test_interrupt_during_foreground_write_still_restores(self, term, manifest):
        """Test a signal arriving while close() is writing restores before exiting."""
        events = []
        manager = RestoreManager(
            term,
            exit_func=lambda code: events.append(("exit", code, manifest.read_text())),
            lock_timeout=0.01,
        )
        handle = manager.begin_edit("original", manifest)

        def write_interrupted(path, text):
            if not events:
                events.append(("signal",))
                manager.handle_interrupt(signal.SIGINT, None)
            real_write_text(path, text)

        with patch("cargo_matrix.core.restore.write_text", side_effect=write_interrupted):
            handle.close()

        assert events == [("signal",), ("exit", 1, "original")]
        assert manifest.read_text() == "original"
        assert not manager.has_pending

    def test_second_edit_rejected(self, term, manifest):
        manager = RestoreManager(term)
        manager.begin_edit("original", manifest)
        with pytest.raises(RuntimeError):
            manager.begin_edit("other", manifest)

    def test_disabled_restore_never_writes(self, term, manifest):
        manager = RestoreManager(term, needs_restore=False)
        handle = manager.begin_edit("original", manifest)
        handle.close()
        assert manifest.read_text() == "edited"
        assert handle.closed


class TestEditHandleContext:
    """Tests for the context-manager form."""

    def test_exit_restores(self, term, manifest):
        manager = RestoreManager(term)
        with manager.begin_edit("original", manifest):
            pass
        assert manifest.read_text() == "original"

    def test_error_path_keeps_original_error(self, term, manifest):
        """Test a restore failure is logged but the block's own error propagates."""
        manager = RestoreManager(term)
        failure = RestoreFailure("disk full", path=manifest)
        with patch.object(manager, "_write", side_effect=failure):
            with pytest.raises(ValueError):
                with manager.begin_edit("original", manifest):
                    raise ValueError("run failed")
        assert "disk full" in output_of(term.console)

    def test_normal_path_raises_restore_failure(self, term, manifest):
        manager = RestoreManager(term)
        with patch("cargo_matrix.core.restore.write_text", side_effect=ManifestIOError("denied", manifest)):
            with pytest.raises(RestoreFailure):
                with manager.begin_edit("original", manifest):
                    pass
