"""
Runs a set of jobs in parallel and keeps track of what failed.

Every job runs to completion regardless of what happens to the others. Once
all of them have settled, :func:`execute` raises if any of them failed.
"""
import time
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, NamedTuple, Tuple

import pendulum

from matrix_ci.exceptions import JobTimeout, JobsFailed
from matrix_ci.interfaces import Remote, Status
from matrix_ci.logging import logger

TZ = "UTC"


class Job(NamedTuple):
    """
    A named unit of work. Nothing runs until the job is handed to
    :func:`execute`.

    :param name:        Unique within a run. Used as a key for failures,
                        artifacts and reports.
    :param node_label:  What kind of worker the job needs.
    :param body:        Does the work; raises on failure.
    """

    name: str
    node_label: str
    body: Callable[[], None]


class Deadline:
    """
    Time budget of one job. Executors are given whatever is left.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.started = time.monotonic()

    def remaining(self) -> float:
        left = self.seconds - (time.monotonic() - self.started)
        if left <= 0:
            raise JobTimeout(f"Deadline of {self.seconds}s exceeded")
        return left

    def check(self) -> None:
        "Raise :class:`~matrix_ci.exceptions.JobTimeout` if no time is left"
        self.remaining()


class RunContext:
    """
    State shared by every job of one run.

    Jobs only write to it through its methods, which hold a lock. It is read
    for reporting once all jobs have joined.
    """

    def __init__(self, *, remote: Remote = None):
        self.remote = remote
        self.failed_builds: Dict[str, bool] = {}
        self.coverage_details = {"coverage": "Code coverage job did not run"}
        self.timestamps: Dict[str, Tuple[pendulum.DateTime, pendulum.DateTime]] = {}
        self.__failed__ = False
        self.__lock__ = threading.Lock()

    def logging(self):
        return logger.bind(failed=len(self.failed_builds))

    @property
    def failed(self) -> bool:
        with self.__lock__:
            return self.__failed__

    def record_failure(self, name: str) -> bool:
        """
        Mark a job as failed. Returns True only for the first failure of the
        run.
        """
        with self.__lock__:
            self.failed_builds[name] = True
            first = not self.__failed__
            self.__failed__ = True
            return first

    def report_failure(self, name: str) -> None:
        """
        Record a failure and, the first time only, tell the change tracking
        system about it. Never raises.
        """
        first = self.record_failure(name)
        if not first or self.remote is None:
            return
        try:
            self.remote.notify(Status.FAILURE, f"Failures: {name}…")
        except Exception as e:  # pylint: disable=broad-except
            self.logging().exception("Failure notification failed", error=str(e))

    def set_coverage(self, coverage: str) -> None:
        with self.__lock__:
            self.coverage_details["coverage"] = coverage

    def record_timestamps(self, name: str, start, end) -> None:
        with self.__lock__:
            self.timestamps[name] = (start, end)


def report_errors(context: RunContext, name: str, body: Callable[[], None]) -> None:
    """
    Run `body`. If it fails, record the failure with its stack trace and
    re-raise the original error.
    """
    start = pendulum.now(TZ)
    try:
        body()
    except Exception as e:
        logger.error(
            "Failed job",
            job_name=name,
            error=repr(e),
            stack_trace="".join(traceback.format_exception(e)),
        )
        context.report_failure(name)
        raise
    finally:
        context.record_timestamps(name, start, pendulum.now(TZ))


def wrap_report_errors(context: RunContext, jobs: Dict[str, Job]) -> Dict[str, Job]:
    "Wrap every job's body with :func:`report_errors`"
    return {
        name: job._replace(
            body=lambda name=name, body=job.body: report_errors(context, name, body)
        )
        for name, job in jobs.items()
    }


def execute(context: RunContext, jobs: Dict[str, Job]) -> None:
    """
    Run all jobs concurrently. A failing job never cancels the others.

    Raises :class:`~matrix_ci.exceptions.JobsFailed` naming every failed job
    once all jobs have finished.
    """
    if not jobs:
        return
    jobs = wrap_report_errors(context, jobs)
    log = context.logging().bind(n_jobs=len(jobs))
    log.info("Starting jobs", jobs=sorted(jobs))
    with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
        futures = {pool.submit(job.body): name for name, job in jobs.items()}
        done, _ = wait(futures)
    failed = [futures[future] for future in done if future.exception() is not None]
    if failed:
        log.error("Jobs failed", jobs=sorted(failed))
        raise JobsFailed(failed)
    log.info("All jobs passed")
