"""Branch resolution via the git command line."""

import subprocess
from pathlib import Path

from branchlog.errors import GitError


def _run_git(args: list[str], cwd: Path | None) -> str:
    """Run a git command and return its stripped stdout."""
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=cwd,
            text=True,
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        raise GitError(f"failed to run git: {exc}") from exc
    if proc.returncode != 0:
        detail = proc.stderr.strip() or proc.stdout.strip() or "git command failed"
        raise GitError(f"git {' '.join(args)}: {detail}")
    return proc.stdout.strip()


def repo_root(cwd: Path | None = None) -> Path:
    """Return the top-level directory of the enclosing git repository."""
    root = _run_git(["rev-parse", "--show-toplevel"], cwd)
    if not root:
        raise GitError("could not determine the repository root")
    return Path(root)


def current_branch(cwd: Path | None = None) -> str:
    """Return the checked-out branch name.

    A detached HEAD has no branch and is reported as a GitError.
    """
    branch = _run_git(["branch", "--show-current"], cwd)
    if not branch:
        raise GitError("no branch is checked out (detached HEAD?)")
    return branch
