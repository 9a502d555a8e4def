"""External transformer invocation for Kiln.

CSS compilation and JS bundling are delegated to Node tools (Tailwind and
esbuild by default). Kiln only knows their argument templates and checks the
exit status; their output streams are passed through untouched.

Key functions:
- find_executable: Locate a program in PATH or local node_modules.
- expand_command: Fill ``{input}``/``{output}`` placeholders in a template.

Key classes:
- SubprocessToolRunner: ToolRunner backed by ``subprocess.run``.
- ExternalTransform: A named tool plus its argument template.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import ExternalToolFailure

CSS_COMMAND = ["npx", "tailwindcss", "-i", "{input}", "-o", "{output}"]
JS_COMMAND = [
    "npx",
    "esbuild",
    "{input}",
    "--outfile={output}",
    "--bundle",
    "--minify",
    "--target=chrome58,firefox57,safari11,edge16",
    "--external:../node_modules/*",
]

# Exit status reported when the program itself cannot be found, as a shell would.
NOT_FOUND_STATUS = 127


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or local node_modules.

    Args:
        name: Name of the executable (e.g. 'npx', 'esbuild').
        project_root: Optional project root to search ``node_modules/.bin``.

    Returns:
        Full path to the executable if found, None otherwise.
    """
    found = shutil.which(name)
    if found:
        return found
    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)
    return None


def expand_command(template: list[str], source: Path, dest: Path) -> list[str]:
    """Substitute ``{input}`` and ``{output}`` in an argument template."""
    return [
        arg.replace("{input}", str(source)).replace("{output}", str(dest))
        for arg in template
    ]


class SubprocessToolRunner:
    """Run tools as child processes of the current process.

    Attributes:
        project_root: Used to resolve programs from ``node_modules/.bin``.
    """

    def __init__(self, project_root: Path | None = None):
        self.project_root = project_root

    def run(self, tool: str, args: list[str], cwd: Path) -> int:
        program = find_executable(args[0], self.project_root)
        if not program:
            print(f"{tool}: '{args[0]}' not found in PATH or node_modules/.bin")
            return NOT_FOUND_STATUS
        result = subprocess.run([program, *args[1:]], cwd=cwd)
        return result.returncode


@dataclass
class ExternalTransform:
    """A tool applied to one input file producing one output file.

    Attributes:
        tool: Short name reported in failures.
        command: Argument template with ``{input}``/``{output}`` placeholders.
    """

    tool: str
    command: list[str]

    def apply(self, runner, source: Path, dest: Path, cwd: Path) -> None:
        """Run the transform and raise on a non-zero exit.

        Args:
            runner: A ToolRunner implementation.
            source: Input file.
            dest: Output file, absolute or relative to ``cwd``; its parent
                directory is created first.
            cwd: Working directory for the tool.

        Raises:
            ExternalToolFailure: If the tool exits non-zero.
        """
        (cwd / dest).parent.mkdir(parents=True, exist_ok=True)
        status = runner.run(self.tool, expand_command(self.command, source, dest), cwd)
        if status != 0:
            raise ExternalToolFailure(self.tool, status, source)
