"""
Defines interfaces for repos, executors, remotes and reporters along with the
structured command description that executors run.
"""
import shlex
import shutil
import subprocess
from enum import Enum
from pathlib import Path
from contextlib import contextmanager
from urllib.parse import urlparse
from typing import NamedTuple, Dict, Iterator, Tuple

from matrix_ci import clean


class Status(Enum):
    "States understood by the change tracking system"
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class Step(NamedTuple):
    """
    A single command. When `if_exists` is set the command only runs if that
    path exists in the working directory.
    """

    argv: Tuple[str, ...]
    if_exists: str = None


class ScriptFile(NamedTuple):
    "A file that must exist in the working directory before steps run"
    path: str
    content: str
    executable: bool = False


class Script(NamedTuple):
    """
    What to run, kept apart from where and how it runs.

    Steps run in order and the script stops at the first failing step.
    Arguments are never interpolated into shell text; they are quoted when
    the script is rendered for a given shell.
    """

    steps: Tuple[Step, ...]
    env: Tuple[Tuple[str, str], ...] = ()
    files: Tuple[ScriptFile, ...] = ()
    path_prepend: Tuple[str, ...] = ()

    @classmethod
    def of(cls, *argvs, env: Dict[str, str] = None, **kwargs) -> "Script":
        """
        Shorthand to build a script from argv tuples or :class:`Step`
        instances.
        """
        steps = tuple(
            argv if isinstance(argv, Step) else Step(tuple(argv)) for argv in argvs
        )
        return cls(steps=steps, env=tuple((env or {}).items()), **kwargs)

    def __add__(self, other: "Script") -> "Script":
        return Script(
            steps=self.steps + other.steps,
            env=self.env + other.env,
            files=self.files + other.files,
            path_prepend=self.path_prepend + other.path_prepend,
        )

    def render_sh(self) -> str:
        "Render as a POSIX shell script"
        lines = ["#!/bin/sh", "set -eux"]
        for path in self.path_prepend:
            lines.append(f'PATH="$PWD/{shlex.quote(path)}:$PATH"')
        if self.path_prepend:
            lines.append("export PATH")
        for key, value in self.env:
            lines.append(f"export {key}={shlex.quote(value)}")
        for step in self.steps:
            cmd = shlex.join(step.argv)
            if step.if_exists is not None:
                cmd = f"if [ -e {shlex.quote(step.if_exists)} ]; then {cmd}; fi"
            lines.append(cmd)
        return "\n".join(lines) + "\n"

    def render_bat(self) -> str:
        "Render as a Windows batch file"
        lines = ["@echo on"]
        for path in self.path_prepend:
            lines.append(f'set "PATH=%CD%\\{path};%PATH%"')
        for key, value in self.env:
            lines.append(f'set "{key}={value}"')
        for step in self.steps:
            cmd = subprocess.list2cmdline(step.argv)
            if step.if_exists is not None:
                cmd = f"if exist {subprocess.list2cmdline([step.if_exists])} {cmd}"
            lines.append(f"{cmd} || exit /b 1")
        return "\r\n".join(lines) + "\r\n"


class CommandResult(NamedTuple):
    exit_code: int
    stdout: str
    logs: str


class RemoteInfo(NamedTuple):
    """
    Holds information about the remote irrespective of if the remote was ssh or
    https.
    """

    netloc: str
    owner: str
    repo: str
    original: str

    @classmethod
    def parse(cls, remote: str) -> "RemoteInfo":
        """
        Given a git remote url string, parses and breaks down information
        contained in the url.

        Works with the following formats:

            ssh://git@github.com:Mbed-TLS/mbedtls.git
            git@github.com:Mbed-TLS/mbedtls.git
            https://github.com/Mbed-TLS/mbedtls.git
        """
        original = remote
        if (
            ("ssh://" in remote or "ssh+git://" in remote or "://" not in remote)
            and "@" in remote
            and remote.endswith(".git")
        ):
            _, remote = remote.split("@")
            netloc, path = remote.split(":")
            owner, repo = path.split("/")
            return RemoteInfo(
                netloc=netloc,
                owner=owner,
                repo=repo.replace(".git", ""),
                original=original,
            )
        url = urlparse(remote)
        return RemoteInfo(
            netloc=url.netloc,
            owner=Path(url.path).parts[1],
            repo=Path(url.path).parts[2].replace(".git", ""),
            original=original,
        )


class Repo:
    """
    Contains information about the branch under test.
    """

    def __init__(self, sha: str, branch: str, remote: str):
        self.sha: str = sha
        self.branch: str = branch
        self.remote: str = remote

    def checkout(self, dest: Path, timeout: float = None) -> None:
        """
        Places a copy of the branch under test at `dest`.

        Raises :class:`~matrix_ci.exceptions.JobTimeout` if it takes longer
        than `timeout` seconds.
        """
        raise NotImplementedError()

    @classmethod
    def from_env(cls) -> "Repo":
        """
        Creates a :class:`~matrix_ci.interfaces.Repo` instance
        from the environment and git repo on disk.
        """
        raise NotImplementedError()


class Executor:
    """
    An executor runs scripts on a worker of a given kind (container host,
    FreeBSD machine, Windows machine ...).
    """

    def __init__(self, root: Path = None):
        self.root = Path("workspaces") if root is None else Path(root)

    @contextmanager
    def workspace(self, job_name: str) -> Iterator[Path]:
        """
        A private directory for a job. It is discarded once the job is done,
        whatever the outcome.
        """
        path = self.root / clean.name(job_name)
        shutil.rmtree(path, ignore_errors=True)
        path.mkdir(parents=True)
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)

    def run(
        self,
        script: Script,
        *,
        workdir: Path,
        image: str = None,
        timeout: float = None,
    ) -> CommandResult:
        """
        Run the script in `workdir`, inside `image` if one is given.

        Raises :class:`~matrix_ci.exceptions.CommandFailed` if the script
        fails and :class:`~matrix_ci.exceptions.JobTimeout` if it does not
        finish within `timeout` seconds.
        """
        raise NotImplementedError()


class Remote:
    """
    Something that allows us to show other people the status of the CI run.
    """

    def notify(self, state: Status, description: str, context: str = None) -> None:
        """
        Publish a status for a context.
        """
        raise NotImplementedError()


class Reporter:
    """
    Something that generates a summary of a finished run.
    """

    def render(self, report: "Report") -> str:
        """
        Render a run report.
        """
        raise NotImplementedError()
