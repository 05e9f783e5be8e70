import random

import docker
import requests


def cid(short=False):
    n_chars = 12 if short else 64
    return "".join(random.sample("0123456789abcdef" * 10, n_chars))


class Images:
    def __init__(self, client=None):
        self.client = client
        self.registry = set()
        self.pulled = []
        self.pushed = []
        self.fail_pulls = 0
        self.pull_error = docker.errors.APIError
        self.require_login = False

    def check_auth(self):
        if self.require_login and not self.client.logins:
            raise docker.errors.APIError("no basic auth credentials")

    def get_registry_data(self, name):
        self.check_auth()
        if name not in self.registry:
            raise docker.errors.NotFound(f"{name} not found")
        return {"name": name}

    def pull(self, repository, tag=None, **_):
        if self.fail_pulls:
            self.fail_pulls -= 1
            raise self.pull_error("pull failed")
        self.pulled.append(f"{repository}:{tag}")

    def push(self, repository, tag=None, **_):
        self.pushed.append(f"{repository}:{tag}")
        self.registry.add(f"{repository}:{tag}")
        return iter([{"status": "Preparing"}, {"status": "Pushed"}])


class Container:
    def __init__(self, *, exit_code=0, stdout=b"", stderr=b"", hang=False, **kwargs):
        self.id = cid()
        self.__dict__.update(kwargs)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.hang = hang
        self.killed = False
        self.removed = False

    def wait(self, timeout=None):
        if self.hang:
            raise requests.exceptions.ReadTimeout(f"waited {timeout}")
        return {"StatusCode": self.exit_code, "Error": None}

    def logs(self, stdout=True, stderr=True):
        return (self.stdout if stdout else b"") + (self.stderr if stderr else b"")

    def kill(self):
        self.killed = True

    def remove(self, **_):
        self.removed = True


class Containers:
    def __init__(self):
        self.started = []
        self.exit_code = 0
        self.stdout = b""
        self.stderr = b""
        self.hang = False

    def run(self, **kwargs):
        c = Container(
            exit_code=self.exit_code,
            stdout=self.stdout,
            stderr=self.stderr,
            hang=self.hang,
            **kwargs,
        )
        self.started.append(c)
        return c


class Docker:
    def __init__(self):
        self.images = Images(self)
        self.containers = Containers()
        self.logins = []

    def login(self, **kwargs):
        self.logins.append(kwargs)


def from_env():
    return Docker()


docker.from_env = from_env
