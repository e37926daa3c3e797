import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import httpx
import pytest
import pytest_asyncio


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from quota_rotator.client import RequestDispatcher
from quota_rotator.credential_pool import CredentialPool
from quota_rotator.rotation import RotationPolicy
from quota_rotator.usage import InMemoryStore, UsageLedger


TODAY = date(2026, 10, 19)

OK_PAYLOAD = {
    "id": "chatcmpl-mock",
    "object": "chat.completion",
    "model": "meta-llama/llama-3.2-3b-instruct:free",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "Hello world!"},
            "finish_reason": "stop",
        }
    ],
}

# Status per secret, or a callable producing the response
Behaviour = Union[int, Callable[[httpx.Request], httpx.Response]]


@dataclass
class FakeProvider:
    """Answers each request according to the bearer token it carries."""

    behaviour: Dict[str, Behaviour]
    seen: List[httpx.Request] = field(default_factory=list)

    @property
    def tokens(self) -> List[str]:
        return [r.headers["Authorization"].removeprefix("Bearer ") for r in self.seen]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.seen.append(request)
        token = request.headers["Authorization"].removeprefix("Bearer ")
        rule = self.behaviour.get(token, 200)
        if callable(rule):
            return rule(request)
        if rule == 200:
            return httpx.Response(200, json=OK_PAYLOAD)
        return httpx.Response(rule, json={"error": {"code": rule, "message": "mock"}})


@dataclass
class Stack:
    pool: CredentialPool
    ledger: UsageLedger
    dispatcher: RequestDispatcher
    store: InMemoryStore
    provider: FakeProvider
    http_client: httpx.AsyncClient


class SSEStream(httpx.AsyncByteStream):
    """Response body delivered chunk by chunk, so httpx cannot pre-read it."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


SSE_CHUNKS = [
    b'data: {"choices": [{"delta": {"content": "Hi"}}]}\n\n',
    b"data: [DONE]\n\n",
]


def sse_response(stream: Optional[SSEStream] = None) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"Content-Type": "text/event-stream"},
        stream=stream or SSEStream(SSE_CHUNKS),
    )


@pytest_asyncio.fixture
async def make_stack():
    clients: List[httpx.AsyncClient] = []

    def factory(
        secrets: List[str],
        behaviour: Optional[Dict[str, Behaviour]] = None,
        store: Optional[InMemoryStore] = None,
        daily_ceiling: Optional[int] = 200,
        today: Callable[[], date] = lambda: TODAY,
        transport: Optional[Callable[[FakeProvider], httpx.AsyncBaseTransport]] = None,
    ) -> Stack:
        provider = FakeProvider(behaviour or {})
        http_client = httpx.AsyncClient(
            transport=transport(provider) if transport else httpx.MockTransport(provider)
        )
        clients.append(http_client)
        store = store if store is not None else InMemoryStore()
        pool = CredentialPool(secrets)
        ledger = UsageLedger(
            store, RotationPolicy(pool.size()), daily_ceiling=daily_ceiling, today=today
        )
        dispatcher = RequestDispatcher(
            pool,
            ledger,
            http_client=http_client,
            base_url="https://api.test/v1",
            extra_headers={"HTTP-Referer": "https://app.test", "X-Title": "Test App"},
        )
        return Stack(pool, ledger, dispatcher, store, provider, http_client)

    try:
        yield factory
    finally:
        for client in clients:
            await client.aclose()
