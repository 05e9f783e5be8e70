"""
A run from start to end:

    1. Tell the change tracking system the run is pending.
    2. Make sure every Linux platform has an image in the registry.
    3. Find out what the branch under test supports and check that every
       component has a platform.
    4. Generate and execute the jobs of the run.
    5. Whatever happened, write timestamps, merge outcomes, report the final
       status and send the summary.
"""
from typing import Dict

from matrix_ci import platforms as plat
from matrix_ci.analysis import Report, analyze
from matrix_ci.artifacts import Artifacts
from matrix_ci.branch import (
    BranchInfo,
    check_every_all_sh_component_will_be_run,
    get_branch_information,
)
from matrix_ci.config import Const
from matrix_ci.engine import Job, RunContext, execute
from matrix_ci.images import ImageCache
from matrix_ci.interfaces import Executor, Remote, Reporter, Repo, Status
from matrix_ci.jobs import JobGenerator, RunMode
from matrix_ci.logging import logger
from matrix_ci.remotes.email import Email
from matrix_ci.reporters.text import Text

PRE_TEST_CHECKS = "pre-test-checks"


def gen_dockerfile_builder_jobs(images: ImageCache) -> Dict[str, Job]:
    "One job per Linux platform that resolves, or builds, its image"
    jobs = {}
    for platform in plat.LINUX_PLATFORMS:
        name = f"dockerfile-builder: {platform}"
        jobs[name] = Job(
            name,
            "container-host",
            lambda platform=platform: images.resolve_or_build(platform),
        )
    return jobs


class Pipeline:  # pylint: disable=too-many-instance-attributes
    """
    One CI run of a branch.

    :param executors:   Worker for each node label. `container-host` is
                        required, `freebsd` and `windows` when the run mode
                        generates jobs for them.
    :param email:       Sends the summary once the run is over. Optional.
    :param name:        Name of the run in the summary.
    """

    def __init__(
        self,
        *,
        const: Const,
        repo: Repo,
        remote: Remote,
        executors: Dict[str, Executor],
        images: ImageCache,
        artifacts: Artifacts,
        email: Email = None,
        reporter: Reporter = None,
        label_prefix: str = "",
        name: str = None,
    ):  # pylint: disable=too-many-arguments
        self.const = const
        self.repo = repo
        self.remote = remote
        self.executors = executors
        self.images = images
        self.artifacts = artifacts
        self.email = email
        self.reporter = reporter if reporter is not None else Text()
        self.label_prefix = label_prefix
        self.name = name
        self.context = RunContext(remote=remote)
        self.info: BranchInfo = None
        self.report: Report = None

    def logging(self):
        return logger.bind(sha=self.repo.sha, branch=self.repo.branch)

    def notify(self, state: Status, description: str) -> None:
        "Status reports are best effort, they never fail the run"
        try:
            self.remote.notify(state, description)
        except Exception as e:  # pylint: disable=broad-except
            self.logging().exception(
                "Notification failed", state=state.value, error=str(e)
            )

    def init_docker_images(self) -> None:
        "Resolve, and build where needed, the image of every Linux platform"
        execute(self.context, gen_dockerfile_builder_jobs(self.images))

    def prepare(self) -> BranchInfo:
        """
        Images and branch information. Any failure here aborts the run
        before a single test job starts.
        """
        self.init_docker_images()
        try:
            info = get_branch_information(
                repo=self.repo,
                executor=self.executors["container-host"],
                images=self.images,
            )
            check_every_all_sh_component_will_be_run(info)
        except Exception as e:
            self.logging().error("Pre-test checks failed", error=str(e))
            self.context.record_failure(PRE_TEST_CHECKS)
            self.notify(Status.FAILURE, str(e))
            raise
        return info

    def generator(self, info: BranchInfo) -> JobGenerator:
        return JobGenerator(
            info=info,
            const=self.const,
            executors=self.executors,
            images=self.images,
            repo=self.repo,
            artifacts=self.artifacts,
            context=self.context,
            label_prefix=self.label_prefix,
        )

    def run(self, mode: RunMode) -> Report:
        """
        Run the whole pipeline. Raises if the run failed, after it has been
        reported.
        """
        name = self.name or mode.value
        log = self.logging().bind(mode=mode.value)
        log.info("Run started")
        self.notify(Status.PENDING, "In progress")
        try:
            self.info = self.prepare()
            jobs = self.generator(self.info).gen_jobs(mode)
            execute(self.context, jobs)
        finally:
            self.report = self.finish(name)
        log.info("Run finished", failed=self.report.failed)
        return self.report

    def finish(self, name: str) -> Report:
        """
        Collect results and tell everyone about them.
        """
        context = self.context
        self.artifacts.write_timestamps(context.timestamps)
        report = analyze(
            self.artifacts,
            name=name,
            branch=self.const.tested_branch or self.repo.branch,
            failed_builds=context.failed_builds,
            timestamps=context.timestamps,
            coverage=context.coverage_details["coverage"],
        )
        (self.artifacts.root / "report.txt").write_text(
            self.reporter.render(report), encoding="utf-8"
        )
        if not report.failed:
            self.notify(Status.SUCCESS, "All tests passed")
        if self.email is not None:
            try:
                self.email.send_summary(
                    name,
                    report.branch,
                    report.failed_builds,
                    context.coverage_details,
                )
            except OSError as e:
                self.logging().exception("Could not send summary", error=str(e))
        return report
