"""
A mock executor that does not run anything.

Responses are registered against a predicate on the command text (and image)
so tests can script what workers answer.
"""
import threading
from typing import Callable, List, NamedTuple

from matrix_ci.exceptions import CommandFailed
from matrix_ci.interfaces import Executor, Script, CommandResult
from matrix_ci.logging import logger


class Call(NamedTuple):
    text: str
    image: str
    workdir: str
    timeout: float
    script: Script


class Response(NamedTuple):
    predicate: Callable[[str, str], bool]
    stdout: str
    exit_code: int
    raises: Exception


def command_text(script: Script) -> str:
    "All the commands of a script, one per line"
    return "\n".join(" ".join(step.argv) for step in script.steps)


class Mock(Executor):
    """
    Records every script it is asked to run and answers with the first
    registered response whose predicate matches.
    """

    def __init__(self, root=None):
        super().__init__(root)
        self.__log__: List[Call] = []
        self.__responses__: List[Response] = []
        self.__lock__ = threading.Lock()

    def logging(self):
        return logger.bind(executor="mock")

    def on(
        self,
        predicate: Callable[[str, str], bool],
        *,
        stdout: str = "",
        exit_code: int = 0,
        raises: Exception = None,
    ) -> "Mock":
        "Register a response"
        self.__responses__.append(Response(predicate, stdout, exit_code, raises))
        return self

    def on_text(self, fragment: str, **kwargs) -> "Mock":
        "Register a response for every command containing `fragment`"
        return self.on(lambda text, image: fragment in text, **kwargs)

    def run(
        self,
        script: Script,
        *,
        workdir,
        image: str = None,
        timeout: float = None,
    ) -> CommandResult:
        text = command_text(script)
        with self.__lock__:
            self.__log__.append(Call(text, image, str(workdir), timeout, script))
        self.logging().info("Run script", text=text, image=image)
        for response in self.__responses__:
            if not response.predicate(text, image):
                continue
            if response.raises is not None:
                raise response.raises
            if response.exit_code != 0:
                raise CommandFailed(response.exit_code, response.stdout)
            return CommandResult(response.exit_code, response.stdout, response.stdout)
        return CommandResult(0, "", "")

    @property
    def calls(self) -> List[Call]:
        with self.__lock__:
            return list(self.__log__)

