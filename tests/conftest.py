"""Shared test fixtures for codesync."""

from __future__ import annotations

from pathlib import Path

import pytest

from codesync.models import ConfigRoot
from codesync.server import SyncServer


def make_tree(root: Path, files: dict[str, bytes | str]) -> Path:
    """Create files under root from a {relative path: content} mapping."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        target.write_bytes(content)
    return root


def read_tree(root: Path) -> dict[str, bytes]:
    """Map every file under root to its content, keyed by posix relative path."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


SERVER_USER_FILES = {
    "settings.json": '{"editor.fontSize": 14}',
    "keybindings.json": "[]",
    "snippets/python.json": '{"main": {}}',
    "workspaceStorage/ws1/state.json": '{"open": ["a.py"]}',
    "globalStorage/storage.json": '{"theme": "dark"}',
    "globalStorage/state.vscdb-journal": "journal",
    "Cache/tmp.bin": b"\x00" * 1000,
    "CachedData/abc/chunk.bin": b"\x01" * 64,
    "logs/20261019/main.log": "log line",
    "clp/pack/strings.json": "{}",
    "Local Storage/leveldb/000.ldb": "x",
}

SERVER_EXTENSION_FILES = {
    "ms-python.python-2026.1.0/package.json": '{"name": "python"}',
    "ms-python.python-2026.1.0/out/extension.js": "module.exports = {};",
}


@pytest.fixture
def server_roots(tmp_path: Path) -> list[ConfigRoot]:
    """A populated User root and extensions root, as a server would see them."""
    user = make_tree(tmp_path / "server" / "User", SERVER_USER_FILES)
    ext = make_tree(tmp_path / "server" / "extensions", SERVER_EXTENSION_FILES)
    return [
        ConfigRoot(label="User", path=user),
        ConfigRoot(label="extensions", path=ext),
    ]


@pytest.fixture
def client_roots(tmp_path: Path) -> list[ConfigRoot]:
    """Client-side roots; User already holds older settings."""
    user = make_tree(tmp_path / "client" / "User", {
        "settings.json": '{"editor.fontSize": 11, "old": true}',
        "only-on-client.json": "{}",
    })
    return [
        ConfigRoot(label="User", path=user),
        ConfigRoot(label="extensions", path=tmp_path / "client" / "extensions"),
    ]


@pytest.fixture
def running_server(server_roots):
    """A SyncServer bound to a free localhost port."""
    srv = SyncServer(server_roots, host="127.0.0.1", port=0, grace_period=2.0)
    srv.start()
    try:
        yield srv
    finally:
        srv.stop()
