import pytest

from matrix_ci.exceptions import JobsFailed, PreTestCheckFailed
from matrix_ci.interfaces import Status
from matrix_ci.jobs import RunMode
from matrix_ci.pipeline import PRE_TEST_CHECKS, Pipeline

from tests.conftest import HELP
from tests.test_remotes import RecordingEmail

COMPONENTS = "test_default_out_of_box\ntest_psa_crypto\n"


@pytest.fixture(name="email")
def fixture_email():
    return RecordingEmail(
        host="localhost",
        port=25,
        email_from="ci@example.com",
        fail_to="fail@example.com",
        pass_to="pass@example.com",
    )


@pytest.fixture(name="pipeline")
def fixture_pipeline(const, repo, remote, executor, images, artifacts, email):
    def make(label_prefix=""):
        return Pipeline(
            const=const,
            repo=repo,
            remote=remote,
            executors={
                "container-host": executor,
                "freebsd": executor,
                "windows": executor,
            },
            images=images,
            artifacts=artifacts,
            email=email,
            label_prefix=label_prefix,
            name="mbedtls-pr",
        )

    return make


def answer_all_sh(executor, help_text=HELP):
    executor.on_text("--help", stdout=help_text)
    executor.on_text("--list-all-components", stdout=COMPONENTS)
    executor.on_text("--list-components", stdout=COMPONENTS)


def test_passing_run(pipeline, executor, remote, email, artifacts):
    answer_all_sh(executor)
    p = pipeline()
    report = p.run(RunMode.PR_HEAD)
    assert not report.failed
    assert remote.notifications[0][0] == Status.PENDING
    assert remote.notifications[-1][0] == Status.SUCCESS
    assert Status.FAILURE not in [n[0] for n in remote.notifications]
    assert p.info.all_all_sh_components == {
        "test_default_out_of_box": "ubuntu-16.04",
        "test_psa_crypto": "ubuntu-16.04",
        "build_armcc": "arm-compilers",
    }
    assert "all_u16-test_psa_crypto" in report.timestamps
    assert "dockerfile-builder: ubuntu-22.04" in report.timestamps
    (msg,) = email.outbox
    assert msg["To"] == "pass@example.com"
    assert (artifacts.root / "timestamps.csv").exists()
    assert (artifacts.root / "outcomes.csv").exists()
    assert (artifacts.root / "report.txt").exists()


def test_failing_run(pipeline, executor, remote, email):
    executor.on_text("--keep-going test_psa_crypto", exit_code=1)
    answer_all_sh(executor)
    p = pipeline(label_prefix="PR-")
    with pytest.raises(JobsFailed) as e:
        p.run(RunMode.PR_HEAD)
    assert e.value.names == ["PR-all_u16-test_psa_crypto"]
    assert p.report.failed_builds == ["PR-all_u16-test_psa_crypto"]
    states = [n[0] for n in remote.notifications]
    assert states.count(Status.FAILURE) == 1
    assert Status.SUCCESS not in states
    (msg,) = email.outbox
    assert msg["To"] == "fail@example.com"
    assert "Failures: PR-all_u16-test_psa_crypto" in msg.get_content()


def test_outdated_branch_aborts_before_jobs(pipeline, executor, remote, email):
    answer_all_sh(executor, help_text="Usage: all.sh\n")
    p = pipeline()
    with pytest.raises(PreTestCheckFailed):
        p.run(RunMode.PR_HEAD)
    state, description, _ = remote.notifications[-1]
    assert state == Status.FAILURE
    assert "Please rebase" in description
    assert p.report.failed_builds == [PRE_TEST_CHECKS]
    assert not any("--keep-going" in call.text for call in executor.calls)
    (msg,) = email.outbox
    assert msg["To"] == "fail@example.com"


def test_component_without_platform_aborts_before_jobs(pipeline, executor, remote):
    executor.on_text("--list-all-components", stdout=COMPONENTS + "test_orphan\n")
    answer_all_sh(executor)
    p = pipeline()
    with pytest.raises(PreTestCheckFailed):
        p.run(RunMode.PR_HEAD)
    assert not any("--keep-going" in call.text for call in executor.calls)
    state, description, _ = remote.notifications[-1]
    assert state == Status.FAILURE
    assert "test_orphan" in description
    assert p.report.failed_builds == [PRE_TEST_CHECKS]
