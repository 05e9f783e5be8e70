"""
A mock remote.

This is used to test pipelines.
"""
from typing import List, Tuple

from matrix_ci.interfaces import Remote, Status
from matrix_ci.logging import logger


class Mock(Remote):
    """
    A mock remote implementation. Remembers every notification.

    :param fail: Raise on every notification.
    """

    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.notifications: List[Tuple[Status, str, str]] = []

    def logging(self):
        return logger.bind(remote="mock")

    def notify(self, state: Status, description: str, context: str = None) -> None:
        self.notifications.append((state, description, context))
        self.logging().debug("Notified", state=state.value, description=description)
        if self.fail:
            raise ConnectionError("Mock remote is down")
