"""
A docker executor for the container host.

Scripts that name an image are run inside a fresh container of that image
with the job's workspace mounted. Everything else runs on the host.
"""
import os

import docker
import requests

from matrix_ci.exceptions import CommandFailed, JobTimeout
from matrix_ci.executors.shell import Shell
from matrix_ci.interfaces import Script, CommandResult

BUILD_DIR = "/var/lib/build"
# `ulimit -f 20971520`, in bytes
FILE_SIZE_LIMIT = 20971520 * 1024


class Docker(Shell):
    """
    Run scripts via docker. To communicate with docker we use the `Python
    docker sdk <https://docker-py.readthedocs.io/en/stable/client.html>`_.

    Containers run as the invoking user, with `SYS_PTRACE` (needed by the
    sanitizer builds) and a cap on the size of files they may write.
    """

    def __init__(self, root=None, *, client=None):
        super().__init__(root, windows=False)
        self.docker = client if client is not None else docker.from_env()

    def run(
        self,
        script: Script,
        *,
        workdir,
        image: str = None,
        timeout: float = None,
    ) -> CommandResult:
        if image is None:
            return super().run(script, workdir=workdir, timeout=timeout)
        name = self.materialize(script, workdir)
        trigger = {
            "image": image,
            "entrypoint": f"{BUILD_DIR}/{name}",
            "working_dir": BUILD_DIR,
            "volumes": {str(workdir.resolve()): {"bind": BUILD_DIR, "mode": "rw"}},
            "user": f"{os.getuid()}:{os.getgid()}",
            "environment": {"MAKEFLAGS": os.environ.get("MAKEFLAGS", "")},
            "cap_add": ["SYS_PTRACE"],
            "ulimits": [
                docker.types.Ulimit(
                    name="fsize", soft=FILE_SIZE_LIMIT, hard=FILE_SIZE_LIMIT
                )
            ],
            "detach": True,
        }
        self.logging().info("Run container", image=image, workdir=str(workdir))
        try:
            container = self.docker.containers.run(**trigger)
        except docker.errors.APIError as e:
            self.logging().exception(e)
            raise CommandFailed(-1, str(e)) from e
        try:
            try:
                exit_code = container.wait(timeout=timeout)["StatusCode"]
            except (
                requests.exceptions.ReadTimeout,
                requests.exceptions.ConnectionError,
            ) as e:
                try:
                    container.kill()
                except docker.errors.APIError as kill_error:
                    self.logging().warning("Kill failed", error=str(kill_error))
                raise JobTimeout(f"Container {image} exceeded {timeout}s") from e
            stdout = container.logs(stdout=True, stderr=False).decode()
            logs = container.logs(stdout=True, stderr=True).decode()
        finally:
            container.remove(force=True)
        if exit_code != 0:
            raise CommandFailed(exit_code, logs)
        return CommandResult(exit_code=exit_code, stdout=stdout, logs=logs)
