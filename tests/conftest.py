import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from clipvault.config.schema import LocalDownloadConfig, SaveConfig, WebDAVConfig
from tests.fakes import JPG_BYTES, PNG_BYTES, FakeWebDAV


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "WEBDAV_URL",
        "WEBDAV_USERNAME",
        "WEBDAV_PASSWORD",
        "WEBDAV_PATH",
        "WEBDAV_AUTH_TYPE",
        "DOWNLOAD_DIRECTORY",
        "CUSTOM_DOWNLOAD_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def save_config(tmp_path_factory) -> SaveConfig:
    # mktemp instead of tmp_path: tmp_path embeds the test name into the serialized root_dir
    root = tmp_path_factory.mktemp("cfg") / "downloads"
    return SaveConfig(downloads=LocalDownloadConfig(root_dir=str(root), timeout_ms=5000))


async def _serve(app: web.Application) -> TestServer:
    server = TestServer(app)
    await server.start_server()
    return server


@pytest_asyncio.fixture
async def image_server():
    """Serves /img/<name>; /missing/* answers 404 and /broken/* 500."""

    hits: list[str] = []

    async def image(request: web.Request) -> web.Response:
        name = request.match_info["name"]
        hits.append(name)
        body = JPG_BYTES if name.endswith(".jpg") else PNG_BYTES
        return web.Response(body=body, content_type="image/png")

    async def missing(request: web.Request) -> web.Response:
        return web.Response(status=404)

    async def broken(request: web.Request) -> web.Response:
        return web.Response(status=500)

    app = web.Application()
    app.router.add_get("/img/{name}", image)
    app.router.add_get("/missing/{name}", missing)
    app.router.add_get("/broken/{name}", broken)

    server = await _serve(app)
    server.hits = hits
    try:
        yield server
    finally:
        await server.close()


async def _serve_dav(dav: FakeWebDAV) -> TestServer:
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", dav.handle)
    server = await _serve(app)
    server.dav = dav
    return server


@pytest_asyncio.fixture
async def webdav_server():
    server = await _serve_dav(FakeWebDAV(username="alice", password="secret"))
    try:
        yield server
    finally:
        await server.close()


@pytest_asyncio.fixture
async def digest_webdav_server():
    server = await _serve_dav(FakeWebDAV(username="alice", password="secret", scheme="digest"))
    try:
        yield server
    finally:
        await server.close()


@pytest.fixture
def webdav_config(webdav_server) -> WebDAVConfig:
    return WebDAVConfig(
        url=str(webdav_server.make_url("/")).rstrip("/"),
        username="alice",
        password="secret",
        path="/",
    )
