import threading

import docker
import pytest
import requests

from matrix_ci import platforms as plat
from matrix_ci.exceptions import BadConfig
from matrix_ci.images import ImageCache, Registry, git_hash_object

from tests.conftest import dockerfile

REPO = "trustedfirmware/ci-amd64-mbed-tls-ubuntu"


def test_git_hash_object_matches_git():
    assert git_hash_object("") == "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"
    assert git_hash_object("hello\n") == "ce013625030ba8dba906f756967f9e9ca394464a"


def test_tag_is_platform_and_dockerfile_hash(images):
    tag = images.tag_for("ubuntu-16.04")
    assert tag == f"ubuntu-16.04-{git_hash_object(dockerfile('ubuntu-16.04'))}"
    assert images.get_tag("ubuntu-16.04") == tag
    assert images.image("ubuntu-16.04") == f"{REPO}:{tag}"


def test_missing_dockerfile(images):
    with pytest.raises(BadConfig):
        images.tag_for("not-a-platform")


def test_unresolved_platform_has_no_tag(images):
    with pytest.raises(BadConfig):
        images.get_tag("ubuntu-22.04")


def test_missing_image_is_built_and_pushed(images, fake_docker, docker_builds):
    tag = images.resolve_or_build("ubuntu-18.04")
    assert len(docker_builds) == 1
    cmd, kwargs = docker_builds[0]
    assert cmd[:2] == ["docker", "build"]
    assert f"{REPO}:ubuntu-18.04-cache" in cmd
    assert kwargs["env"]["DOCKER_BUILDKIT"] == "1"
    assert fake_docker.images.pushed == [
        f"{REPO}:{tag}",
        f"{REPO}:ubuntu-18.04-cache",
    ]


def test_existing_image_is_not_rebuilt(images, fake_docker, docker_builds):
    tag = images.tag_for("ubuntu-18.04")
    fake_docker.images.registry.add(f"{REPO}:{tag}")
    assert images.resolve_or_build("ubuntu-18.04") == tag
    assert not docker_builds


def test_overwrite_rebuilds_each_platform_once(images, fake_docker, docker_builds):
    for platform in plat.LINUX_PLATFORMS:
        fake_docker.images.registry.add(f"{REPO}:{images.tag_for(platform)}")
    images.overwrite = True
    for platform in plat.LINUX_PLATFORMS:
        images.resolve_or_build(platform)
        images.resolve_or_build(platform)
    assert len(docker_builds) == len(plat.LINUX_PLATFORMS)


def test_concurrent_requests_build_once(images, docker_builds):
    threads = [
        threading.Thread(target=images.resolve_or_build, args=("ubuntu-20.04",))
        for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(docker_builds) == 1


def test_pull_retries(resolved_images, fake_docker):
    fake_docker.images.fail_pulls = 2
    image = resolved_images.pull("ubuntu-16.04")
    assert fake_docker.images.pulled == [image]


def test_pull_gives_up_after_three_attempts(resolved_images, fake_docker):
    fake_docker.images.fail_pulls = 3
    with pytest.raises(docker.errors.APIError):
        resolved_images.pull("ubuntu-16.04")
    assert not fake_docker.images.pulled


def test_open_ci_without_token_does_not_login(registry, fake_docker):
    registry.login()
    assert not fake_docker.logins


def test_exists(registry, fake_docker):
    assert not registry.exists("ubuntu-16.04-abc")
    fake_docker.images.registry.add(f"{REPO}:ubuntu-16.04-abc")
    assert registry.exists("ubuntu-16.04-abc")


def test_pull_retries_dropped_connections(resolved_images, fake_docker):
    fake_docker.images.fail_pulls = 2
    fake_docker.images.pull_error = requests.exceptions.ConnectionError
    image = resolved_images.pull("ubuntu-16.04")
    assert fake_docker.images.pulled == [image]


def test_ecr_logs_in_before_looking_up_tags(
    const, dockerfiles, fake_docker, docker_builds, tmp_path
):
    const = const._replace(
        is_open_ci_env=False,
        docker_registry="666.dkr.ecr.eu-west-1.amazonaws.com",
        docker_repo_name="jenkins-mbedtls",
    )
    fake_docker.images.require_login = True
    images = ImageCache(
        registry=Registry(const=const, client=fake_docker),
        dockerfiles=dockerfiles,
        workdir=tmp_path / "docker",
    )
    images.resolve_or_build("ubuntu-16.04")
    assert fake_docker.logins
    assert fake_docker.logins[0]["username"] == "AWS"
    builds = [cmd for cmd, _ in docker_builds if cmd[0] == "docker"]
    assert len(builds) == 1
