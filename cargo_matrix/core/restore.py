# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# RESTORE MANAGER - Manifest Safety Net
# -----------------------------------------------------------------------------
# Responsibility: Guarantee that an edited manifest is written back exactly
# once, whether the run finishes, fails, or is interrupted by Ctrl-C.
#
# One pending edit lives in a single slot guarded by a lock. The foreground
# close() and the signal handler both hold that lock while writing the
# original back, and the slot is emptied only once the write is done.
# -----------------------------------------------------------------------------

import os
import signal
import threading
from pathlib import Path
from typing import Callable

from cargo_matrix.core.manifest import write_text
from cargo_matrix.domain.errors import ManifestIOError, RestoreFailure
from cargo_matrix.infra.term import Term

# Python runs signal handlers on the main thread, possibly while that thread
# holds the slot lock. After this many seconds the lock is considered
# poisoned and the handler proceeds without it.
LOCK_TIMEOUT = 1.0


class EditHandle:
    """
    Scoped handle for one pending edit.

    close() is idempotent. As a context manager, exit restores; when the
    block is already failing, a restore failure is logged and the original
    error propagates.
    """

    def __init__(self, manager: "RestoreManager | None") -> None:
        self._manager = manager
        self._closed = manager is None

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._manager.restore_pending()

    def __enter__(self) -> "EditHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.close()
            return False
        try:
            self.close()
        except RestoreFailure as e:
            self._manager.term.error(str(e))
        return False


class RestoreManager:
    """Owns the single pending-restore slot."""

    def __init__(
        self,
        term: Term,
        needs_restore: bool = True,
        exit_func: Callable[[int], None] = os._exit,
        lock_timeout: float = LOCK_TIMEOUT,
    ) -> None:
        self.term = term
        self.needs_restore = needs_restore
        self._exit_func = exit_func
        self._lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._pending: tuple[str, Path] | None = None
        self._previous_handlers: dict[int, object] = {}

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def begin_edit(self, original_text: str, path: Path | str) -> EditHandle:
        """
        Register `original_text` as what `path` must be restored to.

        Returns a handle that does nothing when restore is disabled
        (--remove-dev-deps).

        Raises:
            RuntimeError: If another edit is still outstanding
        """
        if not self.needs_restore:
            return EditHandle(None)
        with self._lock:
            if self._pending is not None:
                raise RuntimeError(
                    f"manifest {self._pending[1]} is still pending restore"
                )
            self._pending = (original_text, Path(path))
        return EditHandle(self)

    def _write(self, text: str, path: Path) -> None:
        try:
            write_text(path, text)
        except ManifestIOError as e:
            raise RestoreFailure(f"failed to restore manifest {path}: {e}", path=path) from e

    def restore_pending(self) -> None:
        """
        Write back the pending original, if the slot still holds one.

        The slot is cleared only after the write, under the lock. A signal
        handler that interrupts the write finds the lock held, waits out the
        timeout and then still sees the pending text.
        """
        acquired = self._lock.acquire(timeout=self._lock_timeout)
        if not acquired:
            self.term.warn("restore lock was not released; restoring anyway")
        try:
            if self._pending is None:
                return
            text, path = self._pending
            self.term.debug(f"restoring {path}", tag="RESTORE")
            try:
                self._write(text, path)
            finally:
                self._pending = None
        finally:
            if acquired:
                self._lock.release()

    def handle_interrupt(self, signum: int, frame) -> None:
        """Signal handler: restore, then terminate. Never returns normally."""
        try:
            self.restore_pending()
        except RestoreFailure as e:
            self.term.error(str(e))
        self._exit_func(1)

    def install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self.handle_interrupt)

    def uninstall_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
