"""Source watching and rebuild coordination for Kiln.

Filesystem events are funnelled into a RebuildCoordinator, which runs at most
one rebuild at a time. The first event seen while idle starts a rebuild on a
worker thread; events that arrive while that rebuild is running are dropped,
not queued. A change saved during a rebuild is only picked up by the next
event.

Key classes:
- RebuildCoordinator: Idle/Building state machine around a SiteBuilder.
- SourceWatcher: watchdog observer feeding the coordinator.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .errors import BuildError, WatchInitError
from .generation import BuildGeneration
from .utils import is_within

# Emitted when files are merely read, including by the build itself.
IGNORED_EVENT_TYPES = frozenset({"opened", "closed_no_write"})


@dataclass(frozen=True, eq=False)
class BuildToken:
    """Proof that a rebuild is in flight; handed to the worker and returned."""

    serial: int
    trigger: Path | None = None


def _spawn_thread(work: Callable[[BuildToken], None], token: BuildToken) -> None:
    threading.Thread(
        target=work, args=(token,), name=f"kiln-rebuild-{token.serial}", daemon=True
    ).start()


class RebuildCoordinator:
    """Coalesces change notifications into single rebuilds.

    Attributes:
        builder: SiteBuilder run for each rebuild.
        generation: Counter advanced after each successful rebuild.
        dev_mode: Passed through to ``builder.build``.
        settle: Seconds a worker waits before building, so that a burst of
            events falls inside the Building window.
        dropped: Number of events ignored because a rebuild was running.
        completed: Number of rebuilds finished, successful or not.
    """

    def __init__(
        self,
        builder,
        generation: BuildGeneration,
        dev_mode: bool = True,
        settle: float = 0.05,
        spawn: Callable[[Callable[[BuildToken], None], BuildToken], None] | None = None,
    ):
        self.builder = builder
        self.generation = generation
        self.dev_mode = dev_mode
        self.settle = settle
        self.dropped = 0
        self.completed = 0
        self._spawn = spawn or _spawn_thread
        self._serials = itertools.count(1)
        self._token: BuildToken | None = None
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

    @property
    def building(self) -> bool:
        with self._lock:
            return self._token is not None

    def notify(self, path: Path | None = None) -> bool:
        """Report a source change.

        Args:
            path: The changed path, for logging.

        Returns:
            True if a rebuild was started, False if one was already running.
        """
        with self._lock:
            if self._token is not None:
                self.dropped += 1
                return False
            token = BuildToken(next(self._serials), path)
            self._token = token
            self._idle.clear()
        self._spawn(self._run, token)
        return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no rebuild is running. Returns False on timeout."""
        return self._idle.wait(timeout)

    def _run(self, token: BuildToken) -> None:
        succeeded = False
        try:
            if self.settle:
                time.sleep(self.settle)
            print("Change detected; rebuilding...")
            result = self.builder.build(dev_mode=self.dev_mode)
            succeeded = result.ok
            if not succeeded:
                print(
                    f"Rebuild finished with {len(result.failures)} failed page(s); "
                    "browsers were not reloaded."
                )
        except BuildError as exc:
            print(f"Rebuild failed: {exc}")
        finally:
            self._complete(token, succeeded)

    def _complete(self, token: BuildToken, succeeded: bool) -> None:
        with self._lock:
            if self._token is not token:
                raise RuntimeError(
                    f"Rebuild {token.serial} completed without owning the build"
                )
        # The output tree is fully written by now.
        try:
            if succeeded:
                self.generation.advance()
        finally:
            with self._lock:
                self._token = None
                self.completed += 1
                self._idle.set()


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, coordinator: RebuildCoordinator, ignore: Iterable[Path] = ()):
        super().__init__()
        self.coordinator = coordinator
        self.ignore = [Path(p) for p in ignore]

    def on_any_event(self, event):
        if event.is_directory:
            return
        if getattr(event, "event_type", None) in IGNORED_EVENT_TYPES:
            return
        path = Path(event.src_path)
        if any(is_within(path, ignored) for ignored in self.ignore):
            return
        if "node_modules" in path.parts:
            return
        self.coordinator.notify(path)


class SourceWatcher:
    """Watches the source tree recursively and notifies a coordinator.

    Attributes:
        source_dir: Directory to watch.
        coordinator: Receiver of change notifications.
        ignore: Paths whose events are skipped (e.g. the output directory).
    """

    def __init__(
        self,
        source_dir: Path,
        coordinator: RebuildCoordinator,
        ignore: Iterable[Path] = (),
    ):
        self.source_dir = source_dir
        self.coordinator = coordinator
        self.ignore = list(ignore)
        self._observer = None

    def start(self) -> None:
        """Start the observer thread.

        Raises:
            WatchInitError: If the directory is missing or cannot be watched.
        """
        if not self.source_dir.is_dir():
            raise WatchInitError(self.source_dir, "Source directory does not exist")
        handler = _ChangeHandler(self.coordinator, self.ignore)
        observer = Observer()
        try:
            observer.schedule(handler, str(self.source_dir), recursive=True)
            observer.start()
        except OSError as exc:
            raise WatchInitError(self.source_dir, f"Cannot watch: {exc}", exc) from exc
        self._observer = observer

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
