class BadConfig(Exception):
    """
    Raised when a given configuration for a run will cause errors /
    unexpected behaviour if it is allowed to run.
    """


class PreTestCheckFailed(Exception):
    """
    Raised before any job is launched when the branch under test cannot be
    tested completely. The whole run is aborted.
    """


class CommandFailed(Exception):
    "A command run by an executor exited with a non-zero code"

    def __init__(self, exit_code: int, logs: str = ""):
        super().__init__(f"Command exited with code {exit_code}")
        self.exit_code = exit_code
        self.logs = logs


class JobTimeout(Exception):
    "A job did not finish before its deadline"


class JobsFailed(Exception):
    "Raised once every job has settled and at least one of them failed"

    def __init__(self, names):
        self.names = sorted(names)
        super().__init__(f"Failed jobs: {', '.join(self.names)}")


class RemoteApiFailed(Exception):
    "Failure while working with a remote"
