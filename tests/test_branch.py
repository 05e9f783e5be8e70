import pytest

from matrix_ci.branch import (
    BranchInfo,
    check_every_all_sh_component_will_be_run,
    checkout_repo,
    get_branch_information,
)
from matrix_ci.exceptions import PreTestCheckFailed

from tests.conftest import HELP

U16, U18 = "ubuntu-16.04", "ubuntu-18.04"


def on_platform(executor, platform, flag, stdout):
    executor.on(
        lambda text, image: flag in text and image is not None and platform in image,
        stdout=stdout,
    )


@pytest.fixture(name="all_sh")
def fixture_all_sh(executor):
    executor.on_text("--help", stdout=HELP)
    executor.on_text("--list-all-components", stdout="compA\ncompB\n")
    on_platform(executor, U16, "--list-components", "compA\n")
    on_platform(executor, U18, "--list-components", "compA\ncompB\n")
    return executor


def test_first_capable_platform_wins(repo, all_sh, resolved_images):
    info = get_branch_information(
        repo=repo, executor=all_sh, images=resolved_images, platforms=(U16, U18)
    )
    assert info.all_all_sh_components == {
        "compA": U16,
        "compB": U18,
        "build_armcc": "arm-compilers",
    }
    check_every_all_sh_component_will_be_run(info)


def test_all_components_are_listed_once(repo, all_sh, resolved_images):
    get_branch_information(
        repo=repo, executor=all_sh, images=resolved_images, platforms=(U16, U18)
    )
    texts = [call.text for call in all_sh.calls]
    assert sum("--list-all-components" in text for text in texts) == 1
    assert sum("--list-components" in text for text in texts) == 2


def test_branch_properties(repo, repo_files, all_sh, resolved_images):
    repo_files["CMakeLists.txt"] = 'set(FLAGS "-Wdeclaration-after-statement")\n'
    info = get_branch_information(
        repo=repo, executor=all_sh, images=resolved_images, platforms=(U16,)
    )
    assert info.code_is_c89
    assert info.has_min_requirements
    assert info.python_requirements_override_file == ""
    assert info.min_requirements_args() == []


def test_branch_without_min_requirements(repo, repo_files, all_sh, resolved_images):
    del repo_files["scripts/min_requirements.py"]
    info = get_branch_information(
        repo=repo, executor=all_sh, images=resolved_images, platforms=(U16,)
    )
    assert not info.has_min_requirements
    assert not info.code_is_c89


def test_outdated_branch_is_refused(repo, executor, resolved_images):
    executor.on_text("--help", stdout="Usage: all.sh [OPTION]...\n")
    with pytest.raises(PreTestCheckFailed, match="Please rebase"):
        get_branch_information(repo=repo, executor=executor, images=resolved_images)


def test_components_without_platform_are_reported():
    info = BranchInfo()
    info.seed_components(["compA", "compB", "compC"])
    info.assign(U16, ["compA"])
    with pytest.raises(PreTestCheckFailed) as e:
        check_every_all_sh_component_will_be_run(info)
    assert "compB,compC" in str(e.value)


def test_assign_keeps_first_platform():
    info = BranchInfo()
    info.seed_components(["compA"])
    info.assign(U16, ["compA"])
    info.assign(U18, ["compA", "compB"])
    assert info.all_all_sh_components == {"compA": U16, "compB": U18}


def test_checkout_writes_requirements_override(repo, tmp_path):
    info = BranchInfo()
    info.python_requirements_override_file = "override.requirements.txt"
    info.python_requirements_override_content = "-r scripts/ci.requirements.txt\n"
    checkout_repo(repo, tmp_path / "src", info)
    assert (tmp_path / "src" / "override.requirements.txt").read_text() == (
        "-r scripts/ci.requirements.txt\n"
    )
    assert (tmp_path / "src" / "CMakeLists.txt").exists()
