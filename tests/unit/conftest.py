"""In-process Ollama servers shared by backend and command tests."""

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from guardian.core.config import Backend


class FakeOllama:
    """Minimal /api/tags and /api/generate server.

    `replies` are returned by successive generate calls; the last
    one repeats. `tags_delay` stalls the listing call.
    """

    def __init__(self):
        self.models = ["llama3:latest", "qwen2.5-coder:7b"]
        self.replies = ["hello"]
        self.tags_delay = 0.0
        self.tags_status = 200
        self.generate_status = 200
        self.requests: list[dict] = []

    async def tags(self, request):
        await asyncio.sleep(self.tags_delay)
        if self.tags_status != 200:
            return web.Response(status=self.tags_status, text="nope")
        return web.json_response({
            "models": [{"name": name, "size": 1} for name in self.models]
        })

    async def generate(self, request):
        body = await request.json()
        self.requests.append(body)
        if self.generate_status != 200:
            return web.Response(status=self.generate_status, text="model exploded")
        index = min(len(self.requests), len(self.replies)) - 1
        return web.json_response({
            "model": body["model"],
            "response": self.replies[index],
            "done": True,
        })

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/tags", self.tags)
        app.router.add_post("/api/generate", self.generate)
        return app


@pytest.fixture
async def ollama():
    """Running fake server plus a Backend pointing at it."""
    fake = FakeOllama()
    server = TestServer(fake.app())
    await server.start_server()
    fake.backend = Backend(
        name="fake", base_url=str(server.make_url("")).rstrip("/")
    )
    yield fake
    await server.close()


@pytest.fixture
def refused_backend(unused_tcp_port):
    """Backend on a local port nothing listens on."""
    return Backend(name="down", base_url=f"http://127.0.0.1:{unused_tcp_port}")

