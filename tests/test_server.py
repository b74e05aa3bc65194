"""Tests for the sync HTTP server."""

from __future__ import annotations

import io
import threading
import time
import urllib.error
import urllib.request
import zipfile
from unittest.mock import patch

import pytest

from codesync.archive import ArchiveWriter, open_archive
from codesync.errors import ArchiveCorrupt, ConfigNotFound, EncodeIOError
from codesync.models import ConfigRoot
from codesync.server import SyncServer, usable_roots


def _url(srv: SyncServer, path: str = "/sync") -> str:
    host, port = srv.server_address
    return f"http://{host}:{port}{path}"


def _get(url: str, method: str = "GET"):
    req = urllib.request.Request(url, method=method)
    return urllib.request.urlopen(req, timeout=10)


class TestUsableRoots:
    """Root checks at startup."""

    def test_missing_user_root_raises(self, tmp_path):
        with pytest.raises(ConfigNotFound):
            usable_roots([ConfigRoot(label="User", path=tmp_path / "missing")])

    def test_missing_extensions_root_skipped(self, server_roots, tmp_path):
        roots = [server_roots[0], ConfigRoot(label="extensions", path=tmp_path / "none")]
        assert usable_roots(roots) == [server_roots[0]]

    def test_server_construction_checks_roots(self, tmp_path):
        with pytest.raises(ConfigNotFound):
            SyncServer([ConfigRoot(label="User", path=tmp_path / "missing")], port=0)


class TestSyncEndpoint:
    """GET /sync."""

    def test_streams_archive(self, running_server):
        with _get(_url(running_server)) as resp:
            assert resp.status == 200
            assert resp.headers["Content-Type"] == "application/zip"
            assert resp.headers["Content-Disposition"] == "attachment; filename=vscode_settings.zip"
            body = resp.read()

        with zipfile.ZipFile(io.BytesIO(body)) as zf:
            names = zf.namelist()
            assert zf.read("User/settings.json") == b'{"editor.fontSize": 14}'
        assert "User/workspaceStorage/ws1/state.json" in names
        assert "extensions/ms-python.python-2026.1.0/package.json" in names
        assert not any("/Cache/" in n or "/logs/" in n for n in names)

    def test_query_string_ignored(self, running_server):
        with _get(_url(running_server, "/sync?from=test")) as resp:
            assert resp.status == 200

    def test_each_request_sees_current_tree(self, running_server, server_roots):
        (server_roots[0].path / "added-later.json").write_text("{}")
        with _get(_url(running_server)) as resp:
            names = zipfile.ZipFile(io.BytesIO(resp.read())).namelist()
        assert "User/added-later.json" in names

    def test_concurrent_requests(self, running_server):
        bodies: list[bytes] = []
        errors: list[Exception] = []

        def fetch():
            try:
                with _get(_url(running_server)) as resp:
                    bodies.append(resp.read())
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=fetch) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert len(bodies) == 4
        for body in bodies:
            with open_archive(body) as reader:
                assert reader.labels == ["User", "extensions"]


class TestErrors:
    """Status codes for misuse and failures."""

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
    def test_non_get_rejected(self, running_server, method):
        with pytest.raises(urllib.error.HTTPError) as excinfo:
            _get(_url(running_server), method=method)
        assert excinfo.value.code == 405
        assert excinfo.value.headers["Allow"] == "GET"

    def test_unknown_path(self, running_server):
        with pytest.raises(urllib.error.HTTPError) as excinfo:
            _get(_url(running_server, "/other"))
        assert excinfo.value.code == 404

    def test_failure_before_first_byte_is_500(self, running_server):
        with patch.object(ArchiveWriter, "add_root", side_effect=EncodeIOError("Cannot read settings.json")):
            with pytest.raises(urllib.error.HTTPError) as excinfo:
                _get(_url(running_server))
        assert excinfo.value.code == 500
        assert "Cannot read settings.json" in excinfo.value.read().decode()

    def test_failure_mid_stream_truncates(self, running_server):
        real_add_root = ArchiveWriter.add_root

        def flaky(self, root, prefix=None):
            if prefix == "extensions":
                raise EncodeIOError("extension vanished")
            return real_add_root(self, root, prefix)

        with patch.object(ArchiveWriter, "add_root", flaky):
            with _get(_url(running_server)) as resp:
                assert resp.status == 200
                body = resp.read()

        assert body
        with pytest.raises(ArchiveCorrupt):
            open_archive(body)


class TestLifecycle:
    """Start, stop and the grace period."""

    def test_stop_releases_port(self, server_roots):
        srv = SyncServer(server_roots, host="127.0.0.1", port=0)
        srv.start()
        url = _url(srv)
        srv.stop()

        with pytest.raises(urllib.error.URLError):
            _get(url)

    def test_stop_is_idempotent(self, server_roots):
        srv = SyncServer(server_roots, host="127.0.0.1", port=0)
        srv.start()
        srv.stop()
        srv.stop()

    def test_in_flight_transfer_finishes_within_grace(self, server_roots):
        srv = SyncServer(server_roots, host="127.0.0.1", port=0, grace_period=5.0)
        srv.start()
        url = _url(srv)
        real_add_root = ArchiveWriter.add_root
        started = threading.Event()
        result: dict = {}

        def slow(self, root, prefix=None):
            started.set()
            time.sleep(0.5)
            return real_add_root(self, root, prefix)

        def fetch():
            with _get(url) as resp:
                result["body"] = resp.read()

        with patch.object(ArchiveWriter, "add_root", slow):
            t = threading.Thread(target=fetch)
            t.start()
            assert started.wait(timeout=5)
            srv.stop()
            t.join(timeout=10)

        with open_archive(result["body"]) as reader:
            assert any(e.name == "User/settings.json" for e in reader.entries)

    def test_run_forever_returns_on_request_stop(self, server_roots):
        srv = SyncServer(server_roots, host="127.0.0.1", port=0)
        srv.start()
        timer = threading.Timer(0.2, srv.request_stop)
        timer.start()
        srv.run_forever()
        timer.join()
        assert srv._httpd is None
