"""
Configuration obtained from the environment of the CI run.

Everything that used to be read from the job environment at random places is
collected once into :class:`Const` and handed around explicitly.
"""
import os
import re
import tomllib
import importlib.metadata
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Mapping


class Version(NamedTuple):
    major: int
    minor: int
    patch: int
    trail: str = None

    def __repr__(self):
        if self.trail:
            return f"{self.major}.{self.minor}.{self.patch}-{self.trail}"
        return f"{self.major}.{self.minor}.{self.patch}"

    def __str__(self):
        return self.__repr__()

    @classmethod
    def parse(cls, inp: str) -> "Version":
        if inp is None or inp == "":
            return None
        trail = None
        major, minor, patch = inp.split(".")
        major = major[1:] if major[0].lower() == "v" else major
        assert major.isdigit()
        assert minor.isdigit()
        if "-" in patch:
            patch, trail = patch.split("-", 1)
        assert patch.isdigit()
        return cls(major=int(major), minor=int(minor), patch=int(patch), trail=trail)


def get_version() -> Version:
    try:
        return Version.parse(importlib.metadata.version("matrix-ci"))
    except importlib.metadata.PackageNotFoundError:
        try:
            with open(
                (Path(__file__) / "../../pyproject.toml").resolve(),
                "rb",
            ) as fl:
                data = tomllib.load(fl)
            return Version.parse(data["project"]["version"])
        except FileNotFoundError:
            return None


class JobClass(Enum):
    "Kinds of jobs that get a different deadline"
    DEFAULT = "default"
    WINDOWS_TESTING = "windows-testing"
    HARDWARE = "hardware"


class Timeouts(NamedTuple):
    """
    How long (in minutes) a job may run. This does not count time spent in
    waiting queues and setting up the environment.

    Jobs that queue for remote hardware have their own resource queue of
    1000s, so they get `raas_offset` on top of the base time.
    """

    minutes: int = 120
    raas_offset: int = 17
    windows_testing_offset: int = 0

    def for_class(self, job_class: JobClass = JobClass.DEFAULT) -> int:
        "Deadline in seconds for a given job class"
        offset = {
            JobClass.DEFAULT: 0,
            JobClass.WINDOWS_TESTING: self.windows_testing_offset,
            JobClass.HARDWARE: self.raas_offset,
        }[job_class]
        return (self.minutes + offset) * 60


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name) == "true"


class Const(NamedTuple):  # pylint: disable=too-many-instance-attributes
    """
    Settings for one run.

    :param is_open_ci_env:      Running on the public Open CI instance
                                (recognized from `JENKINS_URL`).
    :param branch_name:         Set for runs triggered from a pull request
                                (`PR-123-head`, `PR-123-merge`). Status
                                reports are only sent when this is set.
    :param tested_branch:       The branch under test for release runs.
    """

    is_open_ci_env: bool = False
    branch_name: str = None
    change_target: str = None
    tested_branch: str = None
    build_url: str = ""
    github_org: str = None
    github_repo: str = None
    github_token: str = None
    # --- run mode switches
    run_all_sh: bool = False
    run_freebsd: bool = False
    run_windows_test: bool = False
    run_basic_build_test: bool = False
    push_coverity: bool = False
    # --- reporting
    test_fail_email_address: str = None
    test_pass_email_address: str = None
    email_host: str = "localhost"
    email_port: int = 25
    email_from: str = "ci@localhost"
    # --- docker registry
    docker_repo_name: str = "jenkins-mbedtls"
    docker_registry: str = "666618195821.dkr.ecr.eu-west-1.amazonaws.com"
    docker_auth_user: str = None
    docker_auth_token: str = None
    # --- paths
    dockerfiles_dir: Path = Path("resources/docker_files")
    artifacts_dir: Path = Path("artifacts")
    windows_testing_script: Path = Path("resources/windows/windows_testing.py")
    timeouts: Timeouts = Timeouts()
    version: Version = None

    @property
    def docker_repo(self) -> str:
        return f"{self.docker_registry}/{self.docker_repo_name}"

    @property
    def uses_ecr(self) -> bool:
        return not self.is_open_ci_env

    @property
    def ci_name(self) -> str:
        return "TF Open CI" if self.is_open_ci_env else "Internal CI"

    @property
    def docker_build_args(self) -> dict:
        if self.is_open_ci_env:
            return {"ARMLMD_LICENSE_FILE": "27000@flexnet.trustedfirmware.org"}
        return {}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = None) -> "Const":
        """
        Reads the settings for this run from the environment.
        """
        environ = os.environ if environ is None else environ
        is_open_ci_env = bool(
            re.fullmatch(r"\S+(trustedfirmware)\S+", environ.get("JENKINS_URL", ""))
        )
        return cls(
            is_open_ci_env=is_open_ci_env,
            branch_name=environ.get("BRANCH_NAME") or None,
            change_target=environ.get("CHANGE_TARGET") or None,
            tested_branch=environ.get("MBED_TLS_BRANCH") or None,
            build_url=environ.get("BUILD_URL", ""),
            github_org=environ.get("GITHUB_ORG"),
            github_repo=environ.get("GITHUB_REPO"),
            github_token=environ.get("GITHUB_TOKEN"),
            run_all_sh=_flag(environ, "RUN_ALL_SH"),
            run_freebsd=_flag(environ, "RUN_FREEBSD"),
            run_windows_test=_flag(environ, "RUN_WINDOWS_TEST"),
            run_basic_build_test=_flag(environ, "RUN_BASIC_BUILD_TEST"),
            push_coverity=_flag(environ, "PUSH_COVERITY"),
            test_fail_email_address=environ.get("TEST_FAIL_EMAIL_ADDRESS") or None,
            test_pass_email_address=environ.get("TEST_PASS_EMAIL_ADDRESS") or None,
            email_host=environ.get("MATRIX_CI_EMAIL_HOST", "localhost"),
            email_port=int(environ.get("MATRIX_CI_EMAIL_PORT", 25)),
            email_from=environ.get("MATRIX_CI_EMAIL_FROM", "ci@localhost"),
            docker_repo_name=(
                "ci-amd64-mbed-tls-ubuntu" if is_open_ci_env else "jenkins-mbedtls"
            ),
            docker_registry=(
                "trustedfirmware"
                if is_open_ci_env
                else "666618195821.dkr.ecr.eu-west-1.amazonaws.com"
            ),
            docker_auth_user=environ.get("DOCKER_AUTH_USER"),
            docker_auth_token=environ.get("DOCKER_AUTH_TOKEN"),
            dockerfiles_dir=Path(
                environ.get("MATRIX_CI_DOCKERFILES", "resources/docker_files")
            ),
            artifacts_dir=Path(environ.get("MATRIX_CI_ARTIFACTS", "artifacts")),
            windows_testing_script=Path(
                environ.get(
                    "MATRIX_CI_WINDOWS_TESTING", "resources/windows/windows_testing.py"
                )
            ),
            version=get_version(),
        )


const = Const.from_env()
