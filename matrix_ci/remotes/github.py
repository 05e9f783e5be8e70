"""
A github remote git host.

This is used to report the status of a run against the commit under test.
"""
import re

import requests

from matrix_ci.config import Const
from matrix_ci.exceptions import RemoteApiFailed
from matrix_ci.interfaces import Remote, RemoteInfo, Repo, Status
from matrix_ci.logging import logger

MAX_DESCRIPTION = 140


def truncate(description: str) -> str:
    """
    Github refuses descriptions longer than 140 characters. Longer ones are
    cut and end with an ellipsis.
    """
    if len(description) > MAX_DESCRIPTION:
        return description[: MAX_DESCRIPTION - 1] + "…"
    return description


def default_context(*, is_open_ci_env: bool, branch_name: str) -> str:
    """
    The status context of a run: which CI instance reports, and whether it
    tests the merge result (interface stability) or the head of a PR.
    """
    ci = "TF OpenCI" if is_open_ci_env else "Internal CI"
    if re.fullmatch(r"PR-\d+-merge", branch_name or ""):
        kind = "Interface stability tests"
    else:
        kind = "PR tests"
    return f"{ci}: {kind}"


class Github(Remote):  # pylint: disable=too-many-instance-attributes
    """
    The remote implementation for github.

    :param branch_name: Name of the branch as set by the CI system. Runs
                        without one are not tied to a pull request and
                        report nothing.
    """

    def __headers__(self):
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-Github-Api-Version": "2022-11-28",
        }

    @classmethod
    def from_env(cls, *, repo: Repo, const: Const) -> "Github":
        """
        Creates a remote instance from the environment. Owner and repo name
        come from the settings and fall back to the git remote.
        """
        rem = RemoteInfo.parse(repo.remote)
        return cls(
            root="https://api.github.com",
            owner=const.github_org or rem.owner,
            repo=const.github_repo or rem.repo,
            token=const.github_token,
            sha=repo.sha,
            branch_name=const.branch_name,
            is_open_ci_env=const.is_open_ci_env,
        )

    def __init__(
        self,
        *,
        root: str,
        owner: str,
        repo: str,
        token: str,
        sha: str,
        branch_name: str = None,
        is_open_ci_env: bool = False,
    ):  # pylint: disable=too-many-arguments
        self.root = root
        self.api = root
        self.owner = owner
        self.repo = repo
        self.token = token
        self.sha = sha
        self.branch_name = branch_name
        self.is_open_ci_env = is_open_ci_env
        self.timeout = 10

    def logging(self):
        """
        Return's a logging instance with information about github bound to it.
        """
        return logger.bind(
            root=self.root, owner=self.owner, repo=self.repo, sha=self.sha
        )

    def notify(self, state: Status, description: str, context: str = None) -> None:
        """
        Set the commit status.

        :param state: State of the dot/tick next to the commit.
        :param description: Shown next to the state. Truncated to what
                            github accepts.
        :param context: Defaults to one derived from the CI instance and
                        branch name.
        """
        if not self.branch_name:
            self.logging().debug("No branch name, not notifying", state=state.value)
            return
        if context is None:
            context = default_context(
                is_open_ci_env=self.is_open_ci_env, branch_name=self.branch_name
            )
        r = requests.post(
            f"{self.api}/repos/{self.owner}/{self.repo}/statuses/{self.sha}",
            json={
                "context": context,
                "description": truncate(description),
                "state": state.value,
            },
            timeout=self.timeout,
            headers=self.__headers__(),
        )
        self.logging().debug(
            "Published new status", state=state.value, status_code=r.status_code
        )
        if r.status_code != 201:
            self.logging().error(
                "Failed github api", status=r.status_code, response=r.text
            )
            raise RemoteApiFailed(r)
