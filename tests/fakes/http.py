"""FakeHttpSession: scripted aiohttp-style responses for HTTP clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class FakeResponse:
    status: int = 200
    body: str = "ok"
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    async def text(self) -> str:
        return self.body

    async def json(self) -> Any:  # noqa: ANN401
        return self.data


class _RequestContext:
    def __init__(self, outcome: FakeResponse | Exception) -> None:
        self._outcome = outcome

    async def __aenter__(self) -> FakeResponse:
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *exc_info: object) -> None:
        return None


@dataclass
class FakeHttpSession:
    """Stands in for aiohttp.ClientSession.

    Each request consumes the next scripted outcome: a FakeResponse, or an
    exception raised when the request is entered. The last outcome repeats.
    """

    outcomes: list[FakeResponse | Exception] = field(default_factory=list)
    requests: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)

    def _next(self) -> FakeResponse | Exception:
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0] if self.outcomes else FakeResponse()

    def post(self, url: str, **kwargs: Any) -> _RequestContext:  # noqa: ANN401
        self.requests.append(("POST", url, kwargs))
        return _RequestContext(self._next())

    def get(self, url: str, **kwargs: Any) -> _RequestContext:  # noqa: ANN401
        self.requests.append(("GET", url, kwargs))
        return _RequestContext(self._next())
