"""Protocol definitions for Kiln.

These interfaces keep the build and watch code independent of the concrete
tools and builders behind them, so tests can substitute fakes for
subprocesses and full builds.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .build import BuildResult


@runtime_checkable
class ToolRunner(Protocol):
    """Protocol for running an external transformer.

    Implementations decide how a tool is located and executed; callers only
    look at the exit status.
    """

    @abstractmethod
    def run(self, tool: str, args: list[str], cwd: Path) -> int:
        """Run a tool to completion.

        Args:
            tool: Short tool name used in error messages (e.g. ``esbuild``).
            args: Full argument vector, program first.
            cwd: Working directory for the process.

        Returns:
            The process exit status.
        """
        ...


@runtime_checkable
class SiteBuilder(Protocol):
    """Protocol for something that can produce a complete output tree."""

    @abstractmethod
    def build(self, dev_mode: bool = False) -> BuildResult:
        """Build the site.

        Args:
            dev_mode: Whether to inject the live-reload script.

        Returns:
            Result describing what was written.

        Raises:
            BuildError: If the build had to be aborted.
        """
        ...
