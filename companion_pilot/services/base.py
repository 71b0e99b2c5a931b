from __future__ import annotations

from typing import Protocol

from ..types import ModelRequest

# HTTP statuses that mean "try again later" rather than "the request is wrong".
TRANSIENT_HTTP_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504})
AUTH_HTTP_STATUSES = frozenset({401, 403})


class ModelInvoker(Protocol):
    name: str

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def complete(self, request: ModelRequest) -> str: ...
