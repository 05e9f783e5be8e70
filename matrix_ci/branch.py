"""
Information about the branch under test.

The branch's own test driver (`tests/scripts/all.sh`) is asked which
components it has and which of them can run on each platform. The first
platform, in priority order, that can run a component gets it.
"""
from pathlib import Path
from typing import Dict, Iterable, List

from matrix_ci import platforms as plat
from matrix_ci.exceptions import PreTestCheckFailed
from matrix_ci.images import ImageCache
from matrix_ci.interfaces import Executor, Repo, Script
from matrix_ci.logging import logger

ALL_SH = "./tests/scripts/all.sh"
OVERRIDE_REQUIREMENTS_FILE = "override.requirements.txt"


class BranchInfo:  # pylint: disable=too-few-public-methods
    """
    Built once per run, read-only once jobs are generated.

    :param all_all_sh_components:   Component name to the platform chosen to
                                    run it, or None while no platform has
                                    been found.
    :param has_min_requirements:    `scripts/min_requirements.py` exists.
                                    Older branches only get what is
                                    hard-coded in the docker images.
    :param python_requirements_override_content:
                                    Ad hoc overrides for
                                    `scripts/ci.requirements.txt` on older
                                    branches that broke due to updates of
                                    the required packages.
    :param python_requirements_override_file:
                                    Name of the file holding the override,
                                    empty if there is none.
    :param code_is_c89:             The branch is written in C89, which adds
                                    an older Visual Studio to the Windows
                                    matrix.
    """

    def __init__(self):
        self.all_all_sh_components: Dict[str, str] = {}
        self.has_min_requirements = False
        self.python_requirements_override_content = ""
        self.python_requirements_override_file = ""
        self.code_is_c89 = False

    def __repr__(self):
        return (
            f"BranchInfo <{len(self.all_all_sh_components)} components,"
            f" min_requirements={self.has_min_requirements},"
            f" c89={self.code_is_c89}>"
        )

    def seed_components(self, components: Iterable[str]) -> None:
        "Record every known component, with no platform yet"
        for component in components:
            self.all_all_sh_components.setdefault(component, None)

    def assign(self, platform: str, available: Iterable[str]) -> None:
        """
        Give this platform every available component that does not have a
        platform yet.
        """
        for component in available:
            if not self.all_all_sh_components.get(component):
                self.all_all_sh_components[component] = platform

    def min_requirements_args(self) -> List[str]:
        if self.python_requirements_override_file:
            return [self.python_requirements_override_file]
        return []


def construct_python_requirements_override() -> str:
    """
    Requirements to use instead of `scripts/ci.requirements.txt`. Empty when
    the branch's own requirements can be used as they are.
    """
    overrides: List[str] = []
    if overrides:
        header = ["-r scripts/ci.requirements.txt"]
        footer = [""]
        return "\n".join(header + overrides + footer)
    return ""


def checkout_repo(
    repo: Repo, dest: Path, info: BranchInfo = None, timeout: float = None
) -> None:
    """
    Check out the branch under test, adding the requirements override if the
    branch needs one.
    """
    repo.checkout(dest, timeout=timeout)
    if info is not None and info.python_requirements_override_file:
        (dest / info.python_requirements_override_file).write_text(
            info.python_requirements_override_content, encoding="utf-8"
        )


def _lines(text: str) -> List[str]:
    return [line.strip() for line in text.strip().split("\n") if line.strip()]


def get_branch_information(
    *,
    repo: Repo,
    executor: Executor,
    images: ImageCache,
    platforms: Iterable[str] = plat.LINUX_PLATFORMS,
    overrides: Dict[str, str] = None,
) -> BranchInfo:
    """
    Gather information about the branch that determines how to set up the
    test environment. In particular, find which platform runs each all.sh
    component.

    Raises :class:`~matrix_ci.exceptions.PreTestCheckFailed` if the branch's
    all.sh cannot list its components.
    """
    overrides = plat.COMPONENT_OVERRIDES if overrides is None else overrides
    log = logger.bind(sha=repo.sha, branch=repo.branch)
    info = BranchInfo()
    with executor.workspace("branch-information") as workspace:
        src = workspace / "src"
        repo.checkout(src)
        info.has_min_requirements = (src / "scripts" / "min_requirements.py").exists()
        if info.has_min_requirements:
            info.python_requirements_override_content = (
                construct_python_requirements_override()
            )
            if info.python_requirements_override_content:
                info.python_requirements_override_file = OVERRIDE_REQUIREMENTS_FILE
        # C89 branches build with -Wdeclaration-after-statement.
        cmakelists = (src / "CMakeLists.txt").read_text(encoding="utf-8")
        info.code_is_c89 = "-Wdeclaration-after-statement" in cmakelists

        for name in platforms:
            platform = plat.get(name)
            image = images.pull(name) if platform.has_container_runtime else None

            def all_sh(*args, image=image):
                return executor.run(
                    Script.of((ALL_SH, *args)), workdir=src, image=image
                ).stdout

            if "list-components" not in all_sh("--help"):
                raise PreTestCheckFailed(
                    "Pre Test Checks failed: Base branch out of date. Please rebase"
                )
            if not info.all_all_sh_components:
                info.seed_components(_lines(all_sh("--list-all-components")))
            available = _lines(all_sh("--list-components"))
            log.info(
                "Available all.sh components",
                platform=name,
                components=" ".join(available),
            )
            info.assign(name, available)

    for component, name in overrides.items():
        info.all_all_sh_components[component] = name
        log.info("Overriding component platform", component=component, platform=name)
    log.info("Branch information", info=repr(info))
    return info


def check_every_all_sh_component_will_be_run(info: BranchInfo) -> None:
    """
    Fail before any job starts if some component has no platform, rather
    than silently running a partial matrix.
    """
    untested = [
        name for name, platform in info.all_all_sh_components.items() if not platform
    ]
    if untested:
        raise PreTestCheckFailed(
            f"Pre-test checks failed: Unable to run all.sh components: {','.join(untested)}"
        )
