import subprocess

import pytest

from tests import docker_mock, requests_mock  # pylint: disable=unused-import
from matrix_ci import platforms as plat
from matrix_ci.artifacts import Artifacts
from matrix_ci.branch import BranchInfo
from matrix_ci.config import Const
from matrix_ci.engine import RunContext
from matrix_ci.executors import Mock as MockExecutor
from matrix_ci.images import ImageCache, Registry
from matrix_ci.remotes import Mock as MockRemote
from matrix_ci.repos import Mock as MockRepo

SHA = "76b59cd9808bb8ed536a64d7b07af0aac9d6a903"

HELP = """\
Usage: all.sh [OPTION]... [COMPONENT]...
     --list-components       List components supported on this platform.
     --list-all-components   List all available test components.
"""


def dockerfile(platform):
    return f"FROM ubuntu\nRUN echo {platform}\n"


@pytest.fixture(name="dockerfiles")
def fixture_dockerfiles(tmp_path):
    root = tmp_path / "dockerfiles"
    for platform in plat.LINUX_PLATFORMS:
        (root / platform).mkdir(parents=True)
        (root / platform / "Dockerfile").write_text(dockerfile(platform))
    return root


@pytest.fixture(name="const")
def fixture_const(tmp_path, dockerfiles):
    windows_testing = tmp_path / "windows_testing.py"
    windows_testing.write_text("print('windows testing')\n")
    return Const(
        is_open_ci_env=True,
        branch_name="PR-1234-head",
        tested_branch="development",
        build_url="https://ci.example.com/job/1/",
        docker_repo_name="ci-amd64-mbed-tls-ubuntu",
        docker_registry="trustedfirmware",
        dockerfiles_dir=dockerfiles,
        artifacts_dir=tmp_path / "artifacts",
        windows_testing_script=windows_testing,
    )


@pytest.fixture(name="fake_docker")
def fixture_fake_docker():
    return docker_mock.Docker()


@pytest.fixture(name="docker_builds")
def fixture_docker_builds(monkeypatch):
    "Every `docker build` command line run by the registry"
    builds = []

    def fake_run(cmd, **kwargs):
        builds.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, 0, stdout="built")

    monkeypatch.setattr("matrix_ci.images.subprocess.run", fake_run)
    return builds


@pytest.fixture(name="registry")
def fixture_registry(const, fake_docker, docker_builds):
    return Registry(const=const, client=fake_docker)


@pytest.fixture(name="images")
def fixture_images(registry, dockerfiles, tmp_path):
    return ImageCache(
        registry=registry, dockerfiles=dockerfiles, workdir=tmp_path / "docker"
    )


@pytest.fixture(name="resolved_images")
def fixture_resolved_images(images):
    for platform in plat.LINUX_PLATFORMS:
        images.resolve_or_build(platform)
    return images


@pytest.fixture(name="executor")
def fixture_executor(tmp_path):
    return MockExecutor(tmp_path / "workspaces")


@pytest.fixture(name="repo_files")
def fixture_repo_files():
    return {
        "CMakeLists.txt": "set(CMAKE_C_FLAGS \"-Wall\")\n",
        "scripts/min_requirements.py": "",
        "tests/scripts/all.sh": "",
    }


@pytest.fixture(name="repo")
def fixture_repo(repo_files):
    return MockRepo(
        sha=SHA,
        branch="development",
        remote="https://github.com/Mbed-TLS/mbedtls.git",
        files=repo_files,
    )


@pytest.fixture(name="remote")
def fixture_remote():
    return MockRemote()


@pytest.fixture(name="context")
def fixture_context(remote):
    return RunContext(remote=remote)


@pytest.fixture(name="artifacts")
def fixture_artifacts(const):
    return Artifacts(const.artifacts_dir)


@pytest.fixture(name="info")
def fixture_info():
    info = BranchInfo()
    info.has_min_requirements = True
    info.all_all_sh_components = {
        "test_default_out_of_box": "ubuntu-16.04",
        "build_armcc": "arm-compilers",
        "test_psa_crypto": "ubuntu-20.04",
    }
    return info


@pytest.fixture(autouse=True)
def reset_requests_mock():
    requests_mock.Mock.reset()
    yield
    requests_mock.Mock.reset()
