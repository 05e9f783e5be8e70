"""
An email summary of a finished run.

A single mail is sent once all jobs have settled. Failed runs go to
`TEST_FAIL_EMAIL_ADDRESS`, passed ones to `TEST_PASS_EMAIL_ADDRESS`. With no
address for the outcome, nothing is sent.
"""
import smtplib
from email.headerregistry import Address
from email.message import EmailMessage
from typing import Dict, Iterable

from matrix_ci.config import Const
from matrix_ci.logging import logger


def summary_subject(*, ci_name: str, name: str, branch: str, failed: bool) -> str:
    outcome = "failed" if failed else "passed"
    return f"{ci_name} {name} {outcome}! (branch: {branch})"


def summary_body(
    *, coverage_details: Dict[str, str], build_url: str, failed_builds: Iterable[str]
) -> str:
    body = f"{coverage_details['coverage']}\n\nLogs: {build_url}\n"
    failed_builds = sorted(failed_builds)
    if failed_builds:
        body += f"\nFailures: {', '.join(failed_builds)}\n"
    return body


class Email:
    """
    Sends run summaries over smtp.

    :param host: What smtp host to use.
    :param port: Smtp port to use.
    :param email_from: Which address should be the sender of this email.
    :param fail_to: Who learns about failed runs.
    :param pass_to: Who learns about passed runs.
    """

    @classmethod
    def from_env(cls, *, const: Const) -> "Email":
        return cls(
            host=const.email_host,
            port=const.email_port,
            email_from=const.email_from,
            fail_to=const.test_fail_email_address,
            pass_to=const.test_pass_email_address,
            ci_name=const.ci_name,
            build_url=const.build_url,
        )

    def __init__(
        self,
        *,
        host: str,
        port: int,
        email_from: str,
        fail_to: str = None,
        pass_to: str = None,
        ci_name: str = "Internal CI",
        build_url: str = "",
    ):  # pylint: disable=too-many-arguments
        self.host = host
        self.port = port
        self.email_from = email_from
        self.fail_to = fail_to
        self.pass_to = pass_to
        self.ci_name = ci_name
        self.build_url = build_url
        self.timeout = 10

    def logging(self):
        return logger.bind(host=self.host, port=self.port)

    def send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.send_message(msg)

    def send_summary(
        self,
        name: str,
        branch: str,
        failed_builds: Iterable[str],
        coverage_details: Dict[str, str],
    ) -> EmailMessage:
        """
        Send the summary of a run. Returns the message, or None if there was
        nobody to send it to.
        """
        failed_builds = list(failed_builds)
        failed = bool(failed_builds)
        email_to = self.fail_to if failed else self.pass_to
        if not email_to:
            self.logging().info("No recipients, summary not sent", failed=failed)
            return None
        msg = EmailMessage()
        msg["Subject"] = summary_subject(
            ci_name=self.ci_name, name=name, branch=branch, failed=failed
        )
        msg["From"] = Address("Matrix CI", addr_spec=self.email_from)
        msg["To"] = email_to
        msg.set_content(
            summary_body(
                coverage_details=coverage_details,
                build_url=self.build_url,
                failed_builds=failed_builds,
            )
        )
        self.send(msg)
        self.logging().info(
            "Summary sent", subject=msg["Subject"], email_to=email_to
        )
        return msg
