import subprocess
from pathlib import Path

from matrix_ci.exceptions import JobTimeout
from matrix_ci.interfaces import Repo
from matrix_ci.logging import logger


def _git(*args: str, cwd: Path = None, timeout: float = None) -> str:
    try:
        return (
            subprocess.check_output(("git",) + args, cwd=cwd, timeout=timeout)
            .decode()
            .strip()
        )
    except subprocess.TimeoutExpired as e:
        raise JobTimeout(f"git {args[0]} exceeded {timeout}s") from e


class Git(Repo):
    """
    A branch checked out on disk at `root`. Jobs get their own clone of it
    at the commit under test.

    The clone borrows objects from `root` but its `origin` is `remote`, so
    fetching other branches or pushing from a job talks to the real remote.
    """

    def __init__(self, *, root: Path = None, **kwargs):
        super().__init__(**kwargs)
        self.root = Path(".") if root is None else Path(root)

    def checkout(self, dest: Path, timeout: float = None) -> None:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Checkout", sha=self.sha, dest=str(dest), remote=self.remote)
        _git("clone", "--quiet", str(self.root.resolve()), str(dest), timeout=timeout)
        _git("remote", "set-url", "origin", self.remote, cwd=dest, timeout=timeout)
        _git("checkout", "--quiet", self.sha, cwd=dest, timeout=timeout)

    @classmethod
    def from_env(cls, root: Path = None) -> "Git":
        """
        Gets repo status from the environment and git repo on disk.
        """
        root = Path(".") if root is None else Path(root)
        remote = _git("remote", "get-url", "--push", "origin", cwd=root)
        branch = _git("rev-parse", "--abbrev-ref", "HEAD", cwd=root)
        sha = _git("rev-parse", "HEAD", cwd=root)
        return cls(sha=sha, branch=branch, remote=remote, root=root)
