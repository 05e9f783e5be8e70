"""
Docker images for the Linux platforms.

Each platform's image is tagged with the git blob hash of its Dockerfile, so
an unchanged Dockerfile always maps to the same tag and is only built once.
"""
import hashlib
import os
import subprocess
import threading
from pathlib import Path
from typing import Dict

import docker
import requests

from matrix_ci.config import Const
from matrix_ci.exceptions import BadConfig, CommandFailed
from matrix_ci.logging import logger


def git_hash_object(content: str) -> str:
    """
    The git object ID of `content`, as `git hash-object` would print it.
    """
    data = content.encode()
    sha1 = hashlib.sha1()
    sha1.update(f"blob {len(data)}\0".encode())
    sha1.update(data)
    return sha1.hexdigest()


class Registry:
    """
    The docker registry that holds the platform images.

    On Open CI this is Docker Hub, otherwise an AWS ECR repository which needs
    a fresh login before each pull or push.
    """

    def __init__(self, *, const: Const, client=None, attempts: int = 3):
        self.const = const
        self.repo = const.docker_repo
        self.attempts = attempts
        self.docker = client if client is not None else docker.from_env()

    def logging(self):
        return logger.bind(registry=self.repo)

    def login(self) -> None:
        """
        Log in to the registry.
        """
        if self.const.uses_ecr:
            password = subprocess.run(
                ["aws", "ecr", "get-login-password"],
                stdout=subprocess.PIPE,
                text=True,
                check=True,
            ).stdout.strip()
            self.docker.login(
                username="AWS", password=password, registry=self.const.docker_registry
            )
        elif self.const.docker_auth_token:
            self.docker.login(
                username=self.const.docker_auth_user,
                password=self.const.docker_auth_token,
            )

    def exists(self, tag: str) -> bool:
        """
        Is there an image with this tag in the registry?
        """
        self.login()
        try:
            self.docker.images.get_registry_data(f"{self.repo}:{tag}")
        except docker.errors.NotFound:
            return False
        return True

    def pull(self, tag: str) -> None:
        """
        Pull an image.

        If it fails to do so in 3 attempts it will raise the last error.
        """
        for attempt in range(1, self.attempts + 1):
            try:
                self.login()
                self.docker.images.pull(self.repo, tag=tag)
                return
            except (
                docker.errors.APIError,
                requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
                subprocess.CalledProcessError,
            ) as e:
                self.logging().warning("Pull failed", tag=tag, attempt=attempt, error=str(e))
                if attempt == self.attempts:
                    raise

    def build_and_push(self, *, context: Path, tag: str, cache_tag: str) -> None:
        """
        Build with BuildKit, reusing layers from the last successful build of
        this platform, then push both the unique tag and the cache tag.
        """
        self.login()
        cmd = ["docker", "build", "--build-arg", "BUILDKIT_INLINE_CACHE=1"]
        cmd += ["--build-arg", f"DOCKER_REPO={self.repo}"]
        for key, value in self.const.docker_build_args.items():
            cmd += ["--build-arg", f"{key}={value}"]
        cmd += ["--cache-from", f"{self.repo}:{cache_tag}"]
        cmd += ["-t", f"{self.repo}:{tag}", "-t", f"{self.repo}:{cache_tag}", "."]
        self.logging().info("Build image", tag=tag, cmd=cmd)
        proc = subprocess.run(
            cmd,
            cwd=context,
            env={**os.environ, "DOCKER_BUILDKIT": "1"},
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
        if proc.returncode != 0:
            raise CommandFailed(proc.returncode, proc.stdout)
        for name in (tag, cache_tag):
            for line in self.docker.images.push(
                self.repo, tag=name, stream=True, decode=True
            ):
                if "error" in line:
                    raise CommandFailed(-1, line["error"])
            self.logging().info("Pushed image", tag=name)


class ImageCache:
    """
    Maps platforms to the tags of their images, building missing images.

    :param registry:        Where images live.
    :param dockerfiles:     Directory with one `<platform>/Dockerfile` each.
    :param workdir:         Scratch space used as the build context.
    :param overwrite:       Rebuild even if the tag already exists.
    """

    def __init__(
        self,
        *,
        registry: Registry,
        dockerfiles: Path,
        workdir: Path = None,
        overwrite: bool = False,
    ):
        self.registry = registry
        self.dockerfiles = Path(dockerfiles)
        self.workdir = Path("docker") if workdir is None else Path(workdir)
        self.overwrite = overwrite
        self.tags: Dict[str, str] = {}
        self.__locks__: Dict[str, threading.Lock] = {}
        self.__built__ = set()
        self.__lock__ = threading.Lock()

    def logging(self):
        return logger.bind(dockerfiles=str(self.dockerfiles))

    def dockerfile(self, platform: str) -> str:
        path = self.dockerfiles / platform / "Dockerfile"
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise BadConfig(f"No Dockerfile for {platform}: {path}") from e

    def tag_for(self, platform: str) -> str:
        """
        Compute (and remember) the tag of a platform's image.
        """
        tag = f"{platform}-{git_hash_object(self.dockerfile(platform))}"
        with self.__lock__:
            self.tags[platform] = tag
        return tag

    def get_tag(self, platform: str) -> str:
        with self.__lock__:
            try:
                return self.tags[platform]
            except KeyError as e:
                raise BadConfig(f"No docker image resolved for {platform}") from e

    def image(self, platform: str) -> str:
        "Full image reference to run for a platform"
        return f"{self.registry.repo}:{self.get_tag(platform)}"

    def __tag_lock__(self, tag: str) -> threading.Lock:
        with self.__lock__:
            return self.__locks__.setdefault(tag, threading.Lock())

    def resolve_or_build(self, platform: str) -> str:
        """
        Make sure the image for a platform exists in the registry and return
        its tag. Concurrent calls for the same tag build at most once.
        """
        tag = self.tag_for(platform)
        with self.__tag_lock__(tag):
            log = self.logging().bind(platform=platform, tag=tag)
            if tag in self.__built__ or (
                not self.overwrite and self.registry.exists(tag)
            ):
                log.info("Image exists")
                return tag
            context = self.workdir / platform
            context.mkdir(parents=True, exist_ok=True)
            (context / "Dockerfile").write_text(
                self.dockerfile(platform), encoding="utf-8"
            )
            log.info("Build image")
            self.registry.build_and_push(
                context=context, tag=tag, cache_tag=f"{platform}-cache"
            )
            self.__built__.add(tag)
            return tag

    def pull(self, platform: str) -> str:
        "Pull a platform's image so that it can be run"
        self.registry.pull(self.get_tag(platform))
        return self.image(platform)
