"""
An executor that runs scripts as local processes.

This is what FreeBSD and Windows workers use: there is no container runtime,
scripts run directly in the job's workspace.
"""
import os
import signal
import stat
import subprocess
from pathlib import Path

from matrix_ci.exceptions import BadConfig, CommandFailed, JobTimeout
from matrix_ci.interfaces import Executor, Script, CommandResult
from matrix_ci.logging import logger


class Shell(Executor):
    """
    Run scripts with `/bin/sh` (or `cmd` on Windows workers).

    :param root:    Directory under which job workspaces are created.
    :param windows: Render scripts as batch files. Defaults to the OS this
                    process runs on.
    """

    def __init__(self, root: Path = None, *, windows: bool = None):
        super().__init__(root)
        self.windows = os.name == "nt" if windows is None else windows

    def logging(self):
        """
        Returns a logging instance that has executor specific
        information bound to it.
        """
        return logger.bind(executor=self.__class__.__name__, root=str(self.root))

    def materialize(self, script: Script, workdir: Path) -> str:
        """
        Write the script and the files it needs into `workdir`. Returns the
        name of the script file.
        """
        for fl in script.files:
            path = workdir / fl.path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(fl.content, encoding="utf-8")
            if fl.executable:
                path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP)
        if self.windows:
            name = "steps.bat"
            (workdir / name).write_text(script.render_bat(), encoding="utf-8")
        else:
            name = "steps.sh"
            path = workdir / name
            path.write_text(script.render_sh(), encoding="utf-8")
            path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP)
        return name

    def run(
        self,
        script: Script,
        *,
        workdir: Path,
        image: str = None,
        timeout: float = None,
    ) -> CommandResult:
        if image is not None:
            raise BadConfig(f"{self.__class__.__name__} cannot run images: {image}")
        name = self.materialize(script, workdir)
        argv = ["cmd", "/c", name] if self.windows else ["/bin/sh", f"./{name}"]
        self.logging().info("Run script", workdir=str(workdir), steps=len(script.steps))
        if os.name == "nt":
            group = {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        else:
            group = {"start_new_session": True}
        with subprocess.Popen(
            argv,
            cwd=workdir,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            **group,
        ) as proc:
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired as e:
                self.kill_group(proc)
                proc.communicate()
                raise JobTimeout(f"Script in {workdir} exceeded {timeout}s") from e
        logs = stdout + stderr
        if proc.returncode != 0:
            raise CommandFailed(proc.returncode, logs)
        return CommandResult(exit_code=proc.returncode, stdout=stdout, logs=logs)

    def kill_group(self, proc: subprocess.Popen) -> None:
        """
        Kill a script along with everything it started.
        """
        self.logging().warning("Killing script process group", pid=proc.pid)
        if os.name == "nt":
            subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
            return
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
