"""Shared test fixtures for ModUtil."""

from __future__ import annotations

import io
import zipfile
from typing import TYPE_CHECKING, Callable

import pytest
from aiohttp import web

from modutil.models import ModUtilConfig, PathsConfig, ServerConfig

if TYPE_CHECKING:
    from pathlib import Path

# Nothing listens on the discard port, so connections are refused immediately.
UNREACHABLE_SERVER = "http://127.0.0.1:9/"


@pytest.fixture
def config(tmp_path: Path) -> ModUtilConfig:
    return ModUtilConfig(
        server=ServerConfig(base_url=UNREACHABLE_SERVER, game_id="hdn"),
        paths=PathsConfig(
            state_file=str(tmp_path / "config.toml"),
            manifest_file=str(tmp_path / "manifest.json"),
            download_dir=str(tmp_path / "downloads"),
        ),
    )


@pytest.fixture
def game_dir(tmp_path: Path) -> Path:
    root = tmp_path / "game"
    (root / "Mods" / "sub").mkdir(parents=True)
    (root / "Localization.txt").write_text("hello\n")
    (root / "Localization - Quest.txt").write_text("quest\n")
    (root / "Mods" / "a.txt").write_text("mod a\n")
    (root / "Mods" / "sub" / "b.txt").write_text("mod b\n")
    return root


def build_zip(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def zip_bytes() -> Callable[[dict[str, bytes]], bytes]:
    return build_zip


@pytest.fixture
def http_app() -> Callable[[dict[str, bytes], list[str]], web.Application]:
    """Build an aiohttp app serving fixed bodies by path and recording hits."""

    def factory(routes: dict[str, bytes], hits: list[str]) -> web.Application:
        async def handler(request: web.Request) -> web.Response:
            hits.append(request.path)
            body = routes.get(request.path)
            if body is None:
                raise web.HTTPNotFound()
            return web.Response(body=body)

        app = web.Application()
        app.router.add_get("/{tail:.*}", handler)
        return app

    return factory
