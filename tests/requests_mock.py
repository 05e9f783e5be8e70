import json
import requests

from typing import NamedTuple, Callable
from collections import defaultdict


class MockResponse(NamedTuple):
    status_code: int
    body: str
    content_type: str

    def json(self) -> str:
        return json.loads(self.body)

    @property
    def text(self) -> str:
        return self.body


class Mock:
    registry = defaultdict(list)
    index = defaultdict(int)
    sent = []

    @classmethod
    def reset(cls) -> None:
        cls.registry.clear()
        cls.index.clear()
        cls.sent.clear()

    @classmethod
    def post(
        cls,
        url: str,
        status: int = 201,
        body: str = "",
        content_type: str = "application/json",
    ) -> None:
        cls.registry["post", url].append(
            MockResponse(status_code=status, body=body, content_type=content_type)
        )

    @classmethod
    def handle(cls, method: str) -> Callable:
        def handler(url: str, **kwargs):
            cls.sent.append((method, url, kwargs.get("json")))
            options = cls.registry[method, url]
            index = cls.index[method, url]
            resp = options[index]
            cls.index[method, url] = (cls.index[method, url] + 1) % len(options)
            return resp

        return handler


requests.post = Mock.handle("post")
