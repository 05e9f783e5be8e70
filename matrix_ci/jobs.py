"""
Generates the jobs of a run.

Every `gen_*` method returns a mapping of job name to
:class:`~matrix_ci.engine.Job`. Names are unique within a run, so the
mappings can be merged without losing anything.
"""
import json
import shutil
from enum import Enum
from itertools import product
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple

from matrix_ci import platforms as plat
from matrix_ci.artifacts import Artifacts
from matrix_ci.branch import ALL_SH, BranchInfo, checkout_repo
from matrix_ci.config import Const, JobClass
from matrix_ci.engine import Deadline, Job, RunContext, report_errors
from matrix_ci.exceptions import BadConfig
from matrix_ci.images import ImageCache
from matrix_ci.interfaces import (
    CommandResult,
    Executor,
    Repo,
    Script,
    ScriptFile,
    Step,
)
from matrix_ci.logging import logger

Jobs = Dict[str, Job]


class RunMode(Enum):
    "What kind of run this is"
    PR_HEAD = "pr-head"
    PR_MERGE = "pr-merge"
    RELEASE = "release"

    @classmethod
    def parse(cls, value: str) -> "RunMode":
        try:
            return cls(value)
        except ValueError as e:
            raise BadConfig(f"Unknown run mode: {value}") from e


# --- Windows
WIN32_MINGW_TEST = Script.of(
    ("cmake", ".", "-G", "MinGW Makefiles", "-DCMAKE_C_COMPILER=gcc"),
    ("mingw32-make",),
    ("ctest", "-VV"),
    ("programs\\test\\selftest.exe",),
)


def _msvc12_test(generator: str) -> Script:
    return Script.of(
        Step(
            ("python", "scripts\\generate_psa_constants.py"),
            if_exists="scripts\\generate_psa_constants.py",
        ),
        (
            "call",
            "C:\\Program Files (x86)\\Microsoft Visual Studio 12.0\\VC\\vcvarsall.bat",
        ),
        ("cmake", ".", "-G", generator),
        ("MSBuild", "ALL_BUILD.vcxproj"),
        ("programs\\test\\Debug\\selftest.exe",),
    )


WIN32_MSVC12_32_TEST = _msvc12_test("Visual Studio 12")
WIN32_MSVC12_64_TEST = _msvc12_test("Visual Studio 12 Win64")

CLANG_WRAPPER = """\
#!/bin/sh
exec /usr/bin/clang -Wno-error=c11-extensions "$@"
"""


class WindowsTestConfig(NamedTuple):
    build_config: str
    arch: str
    build_system: str
    retarget: bool

    def as_json(self) -> str:
        "The configuration file understood by windows_testing.py"
        return json.dumps(
            {
                "visual_studio_configurations": [self.build_config],
                "visual_studio_architectures": [self.arch],
                "visual_studio_solution_types": [self.build_system],
                "visual_studio_retarget_solution": [self.retarget],
            }
        )


class WindowsTestItem(NamedTuple):
    group: str
    job_name: str
    config: WindowsTestConfig


def windows_test_items(toolchain: str, prefix: str) -> List[WindowsTestItem]:
    """
    Every configuration tested for a toolchain, tagged with the work-group
    it runs in.

    Debug builds with the cmake build system are by far the slowest, so each
    gets a group of its own. Everything else shares one group per toolchain.
    """
    if toolchain == "mingw":
        combinations = [("mingw", "x64", "shipped", False)]
    else:
        combinations = product(
            ["Release", "Debug"],
            ["Win32", "x64"],
            ["shipped", "cmake"],
            [False, True],
        )
    items = []
    for build_config, arch, build_system, retarget in combinations:
        if toolchain == "mingw":
            job_name = prefix
        else:
            job_name = f"{prefix}-{build_config}-{arch}-{build_system}"
            job_name += "-retarget" if retarget else ""
        group = (
            job_name if build_config == "Debug" and build_system == "cmake" else prefix
        )
        items.append(
            WindowsTestItem(
                group=group,
                job_name=job_name,
                config=WindowsTestConfig(build_config, arch, build_system, retarget),
            )
        )
    return items


def group_windows_test_items(
    items: List[WindowsTestItem],
) -> Dict[str, List[WindowsTestItem]]:
    "Group items, keeping their order within each group"
    groups: Dict[str, List[WindowsTestItem]] = {}
    for item in items:
        groups.setdefault(item.group, []).append(item)
    return groups


def merge(jobs: Jobs, new: Jobs) -> Jobs:
    for name in new:
        assert name not in jobs, f"{name} already defined"
    jobs.update(new)
    return jobs


class JobGenerator:  # pylint: disable=too-many-instance-attributes
    """
    Builds job closures for one run.

    :param info:            What the branch under test supports.
    :param executors:       Worker for each node label.
    :param images:          Resolved docker images of the Linux platforms.
    :param context:         Shared state of the run.
    :param label_prefix:    Prepended to the names of generated jobs.
    """

    def __init__(
        self,
        *,
        info: BranchInfo,
        const: Const,
        executors: Dict[str, Executor],
        images: ImageCache,
        repo: Repo,
        artifacts: Artifacts,
        context: RunContext,
        label_prefix: str = "",
    ):  # pylint: disable=too-many-arguments
        self.info = info
        self.const = const
        self.executors = executors
        self.images = images
        self.repo = repo
        self.artifacts = artifacts
        self.context = context
        self.label_prefix = label_prefix

    def logging(self):
        return logger.bind(sha=self.repo.sha, label_prefix=self.label_prefix)

    def executor_for(self, node_label: str) -> Executor:
        try:
            return self.executors[node_label]
        except KeyError as e:
            raise BadConfig(f"No executor for node label: {node_label}") from e

    def deadline(self, job_class: JobClass = JobClass.DEFAULT) -> Deadline:
        return Deadline(self.const.timeouts.for_class(job_class))

    # --- scripts

    def min_requirements(self) -> Script:
        if not self.info.has_min_requirements:
            return Script.of()
        return Script.of(
            ("scripts/min_requirements.py", "--user", *self.info.min_requirements_args())
        )

    def windows_min_requirements(self) -> Script:
        if not self.info.has_min_requirements:
            return Script.of()
        return Script.of(
            (
                "python",
                "scripts\\min_requirements.py",
                *self.info.min_requirements_args(),
            )
        )

    def platform_setup(self, platform: plat.Platform) -> Script:
        """
        Adjustments that let all.sh run on a platform.
        """
        setup = Script.of()
        if platform.lacks_tls_tools:
            # all.sh's check_tools insists on the TLS tools even if no test
            # uses them. 'false' pacifies it, and fails any test that does.
            setup += Script.of(
                env={"OPENSSL": "false", "GNUTLS_CLI": "false", "GNUTLS_SERV": "false"}
            )
        if not platform.make_is_gnu:
            # all.sh assumes make is GNU make.
            setup += Script.of(
                ("mkdir", "-p", "bin"),
                ("ln", "-sf", "/usr/local/bin/gmake", "bin/make"),
                path_prepend=("bin",),
            )
            if platform.family == plat.OsFamily.FREEBSD:
                # Clang on FreeBSD flags static_assert under -std=c99 as a C11
                # extension. The code checks for it, so only warn.
                setup += Script.of(
                    files=(ScriptFile("bin/clang", CLANG_WRAPPER, executable=True),)
                )
        return setup + self.min_requirements()

    # --- Linux / FreeBSD

    def gen_all_sh_jobs(self, platform_name: str, component: str) -> Jobs:
        platform = plat.get(platform_name)
        job_name = f"{self.label_prefix}all_{platform.shorthand}-{component}"
        script = (
            Script.of(env={"MBEDTLS_TEST_OUTCOME_FILE": f"{job_name}-outcome.csv"})
            + self.platform_setup(platform)
            + Script.of((ALL_SH, "--seed", "4", "--keep-going", component))
        )

        def body():
            executor = self.executor_for(platform.node_label)
            deadline = self.deadline()
            with executor.workspace(job_name) as workspace:
                image = None
                if platform.has_container_runtime:
                    deadline.check()
                    image = self.images.pull(platform.name)
                src = workspace / "src"
                checkout_repo(self.repo, src, self.info, timeout=deadline.remaining())
                try:
                    executor.run(
                        script, workdir=src, image=image, timeout=deadline.remaining()
                    )
                finally:
                    self.artifacts.stash_outcomes(job_name, src)
                    self.artifacts.archive_zipped_log_files(job_name, src / "tests")

        return {job_name: Job(job_name, platform.node_label, body)}

    def gen_docker_job(
        self,
        job_name: str,
        platform_name: str,
        script: Script,
        *,
        post_checkout: Callable[[Executor, Path, float], None] = None,
        post_success: Callable[[Path, CommandResult], None] = None,
    ) -> Jobs:
        platform = plat.get(platform_name)
        script = self.min_requirements() + script

        def body():
            executor = self.executor_for(platform.node_label)
            deadline = self.deadline()
            with executor.workspace(job_name) as workspace:
                deadline.check()
                image = self.images.pull(platform.name)
                src = workspace / "src"
                checkout_repo(self.repo, src, self.info, timeout=deadline.remaining())
                if post_checkout is not None:
                    post_checkout(executor, src, deadline.remaining())
                try:
                    result = executor.run(
                        script, workdir=src, image=image, timeout=deadline.remaining()
                    )
                    if post_success is not None:
                        post_success(src, result)
                finally:
                    self.artifacts.archive_zipped_log_files(job_name, src / "tests")

        return {job_name: Job(job_name, platform.node_label, body)}

    def gen_abi_api_checking_job(self, platform_name: str) -> Jobs:
        target = self.const.change_target
        if not target:
            raise BadConfig("ABI-API checking needs the change target (CHANGE_TARGET)")
        script = Script.of(
            ("tests/scripts/list-identifiers.sh", "--internal"),
            ("scripts/abi_check.py", "-o", "FETCH_HEAD", "-n", "HEAD")
            + ("-s", "identifiers", "--brief"),
        )

        def fetch_target(executor: Executor, src: Path, timeout: float) -> None:
            executor.run(
                Script.of(("git", "fetch", "origin", target)),
                workdir=src,
                timeout=timeout,
            )

        return self.gen_docker_job(
            "ABI-API-checking", platform_name, script, post_checkout=fetch_target
        )

    def gen_code_coverage_job(self, platform_name: str) -> Jobs:
        script = Script.of(("./tests/scripts/basic-build-test.sh",))

        def record_coverage(src: Path, result: CommandResult) -> None:
            summary = src / "coverage-summary.txt"
            if not summary.exists():
                # Older basic-build-test only prints its summary.
                output = result.stdout
                start = output.find("Test Report Summary")
                summary.write_text(
                    output[start:] if start >= 0 else "", encoding="utf-8"
                )
            coverage_log = summary.read_text(encoding="utf-8")
            self.context.set_coverage(
                coverage_log[coverage_log.find("\nCoverage\n") + 1 :]
            )

        return self.gen_docker_job(
            "code-coverage", platform_name, script, post_success=record_coverage
        )

    def gen_coverity_push_jobs(self) -> Jobs:
        job_name = "coverity-push"
        if self.const.tested_branch != "development":
            return {}

        def body():
            executor = self.executor_for("container-host")
            deadline = self.deadline()
            with executor.workspace(job_name) as workspace:
                src = workspace / "src"
                checkout_repo(self.repo, src, timeout=deadline.remaining())
                executor.run(
                    Script.of(("git", "push", "origin", "HEAD:coverity_scan")),
                    workdir=src,
                    timeout=deadline.remaining(),
                )

        return {job_name: Job(job_name, "container-host", body)}

    # --- Windows

    def get_supported_windows_builds(self, mode: RunMode) -> List[str]:
        if mode == RunMode.RELEASE:
            vs_builds = ["2013", "2015", "2017"]
        else:
            vs_builds = ["2013"]
        if self.info.code_is_c89:
            vs_builds = ["2010"] + vs_builds
        self.logging().info("Windows builds", vs_builds=vs_builds)
        return ["mingw"] + vs_builds

    def gen_simple_windows_jobs(self, label: str, script: Script) -> Jobs:
        script = self.windows_min_requirements() + script

        def body():
            executor = self.executor_for("windows")
            deadline = self.deadline()
            with executor.workspace(label) as workspace:
                src = workspace / "src"
                checkout_repo(self.repo, src, self.info, timeout=deadline.remaining())
                executor.run(script, workdir=src, timeout=deadline.remaining())

        return {label: Job(label, "windows", body)}

    def run_windows_test(
        self, executor: Executor, workspace: Path, toolchain: str, item: WindowsTestItem
    ) -> None:
        files = ()
        extra_args = ()
        if toolchain != "mingw":
            files = (ScriptFile("test_config.json", item.config.as_json()),)
            extra_args = ("-c", "test_config.json")
        script = Script.of(
            ("python", "windows_testing.py", "src", "logs", *extra_args)
            + ("-b", toolchain),
            files=files,
        )
        executor.run(
            script,
            workdir=workspace,
            timeout=self.deadline(JobClass.WINDOWS_TESTING).remaining(),
        )

    def gen_windows_testing_job(self, toolchain: str) -> Jobs:
        prefix = f"{self.label_prefix}Windows-{toolchain}"
        groups = group_windows_test_items(windows_test_items(toolchain, prefix))
        jobs = {}
        for group, items in groups.items():

            def body(group=group, items=items):
                executor = self.executor_for("windows")
                deadline = self.deadline()
                with executor.workspace(group) as workspace:
                    src = workspace / "src"
                    checkout_repo(
                        self.repo, src, self.info, timeout=deadline.remaining()
                    )
                    (workspace / "logs").mkdir()
                    (workspace / "worktrees").mkdir()
                    if self.info.has_min_requirements:
                        executor.run(
                            self.windows_min_requirements(),
                            workdir=src,
                            timeout=deadline.remaining(),
                        )
                    shutil.copyfile(
                        self.const.windows_testing_script,
                        workspace / "windows_testing.py",
                    )
                    # Run every config of the group, then raise the first
                    # error, so all of them get tested.
                    errors = []
                    for item in items:
                        try:
                            report_errors(
                                self.context,
                                item.job_name,
                                lambda item=item: self.run_windows_test(
                                    executor, workspace, toolchain, item
                                ),
                            )
                        except Exception as e:  # pylint: disable=broad-except
                            errors.append(e)
                    if errors:
                        raise errors[0]

            jobs[group] = Job(group, "windows", body)
        return jobs

    def gen_windows_jobs(self, mode: RunMode) -> Jobs:
        jobs: Jobs = {}
        merge(
            jobs,
            self.gen_simple_windows_jobs(
                self.label_prefix + "win32-mingw", WIN32_MINGW_TEST
            ),
        )
        merge(
            jobs,
            self.gen_simple_windows_jobs(
                self.label_prefix + "win32_msvc12_32", WIN32_MSVC12_32_TEST
            ),
        )
        merge(
            jobs,
            self.gen_simple_windows_jobs(
                self.label_prefix + "win32-msvc12_64", WIN32_MSVC12_64_TEST
            ),
        )
        for build in self.get_supported_windows_builds(mode):
            merge(jobs, self.gen_windows_testing_job(build))
        return jobs

    # --- runs

    def gen_all_sh_component_jobs(self) -> Jobs:
        jobs: Jobs = {}
        for component, platform in self.info.all_all_sh_components.items():
            merge(jobs, self.gen_all_sh_jobs(platform, component))
        return jobs

    def gen_freebsd_jobs(self) -> Jobs:
        jobs: Jobs = {}
        for platform in plat.BSD_PLATFORMS:
            for component in plat.FREEBSD_ALL_SH_COMPONENTS:
                merge(jobs, self.gen_all_sh_jobs(platform, component))
        return jobs

    def gen_release_jobs(self) -> Jobs:
        jobs: Jobs = {}
        if self.const.run_basic_build_test:
            merge(jobs, self.gen_code_coverage_job("ubuntu-16.04"))
        if self.const.run_all_sh:
            merge(jobs, self.gen_all_sh_component_jobs())
        if self.const.run_freebsd:
            merge(jobs, self.gen_freebsd_jobs())
        if self.const.run_windows_test:
            merge(jobs, self.gen_windows_jobs(RunMode.RELEASE))
        if self.const.push_coverity:
            merge(jobs, self.gen_coverity_push_jobs())
        return jobs

    def gen_pr_jobs(self) -> Jobs:
        jobs: Jobs = {}
        merge(jobs, self.gen_all_sh_component_jobs())
        merge(jobs, self.gen_freebsd_jobs())
        merge(jobs, self.gen_windows_jobs(RunMode.PR_HEAD))
        return jobs

    def gen_jobs(self, mode: RunMode) -> Jobs:
        """
        All jobs of a run of the given kind.
        """
        if mode == RunMode.PR_MERGE:
            jobs = self.gen_abi_api_checking_job("ubuntu-16.04")
        elif mode == RunMode.PR_HEAD:
            jobs = self.gen_pr_jobs()
        else:
            jobs = self.gen_release_jobs()
        self.logging().info("Generated jobs", mode=mode.value, n_jobs=len(jobs))
        return jobs
