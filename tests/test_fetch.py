import io
import urllib.error
from pathlib import Path

import pytest

from buildprep import fetch
from buildprep.errors import RetrievalError
from buildprep.fetch import fetch_artifact, is_remote


def test_is_remote() -> None:
    assert is_remote("https://cdn.example.com/logo.png")
    assert is_remote("http://example.com/p.mobileprovision")
    assert not is_remote("/tmp/logo.png")
    assert not is_remote("file:///tmp/logo.png")


def test_fetch_local_path_and_file_url(tmp_path) -> None:
    src = tmp_path / "cert.p12"
    src.write_bytes(b"p12-bytes")

    a = fetch_artifact(str(src), str(tmp_path / "work" / "a.p12"))
    b = fetch_artifact(src.as_uri(), str(tmp_path / "work" / "b.p12"))

    assert Path(a).read_bytes() == b"p12-bytes"
    assert Path(b).read_bytes() == b"p12-bytes"


def test_fetch_missing_or_empty_local_file(tmp_path) -> None:
    with pytest.raises(RetrievalError):
        fetch_artifact(str(tmp_path / "nope.p12"), str(tmp_path / "out.p12"))

    empty = tmp_path / "empty.p12"
    empty.write_bytes(b"")
    with pytest.raises(RetrievalError) as e:
        fetch_artifact(str(empty), str(tmp_path / "out.p12"))
    assert "empty" in str(e.value)


def test_fetch_http_error_is_retrieval_error(monkeypatch, tmp_path) -> None:
    def fake_urlopen(req, timeout=None):
        raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, io.BytesIO(b""))

    monkeypatch.setattr(fetch.urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(RetrievalError) as e:
        fetch_artifact("https://example.com/profile.mobileprovision", str(tmp_path / "p.mobileprovision"))
    assert "HTTP 404" in str(e.value)


def test_fetch_timeout_is_retrieval_error(monkeypatch, tmp_path) -> None:
    def fake_urlopen(req, timeout=None):
        raise TimeoutError("timed out")

    monkeypatch.setattr(fetch.urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(RetrievalError):
        fetch_artifact("https://example.com/cert.p12", str(tmp_path / "c.p12"), timeout=0.1)


def test_fetch_http_success(monkeypatch, tmp_path) -> None:
    class _Resp(io.BytesIO):
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            self.close()

    seen: dict = {}

    def fake_urlopen(req, timeout=None):
        seen["timeout"] = timeout
        return _Resp(b"logo-bytes")

    monkeypatch.setattr(fetch.urllib.request, "urlopen", fake_urlopen)

    out = fetch_artifact("https://example.com/logo.png", str(tmp_path / "logo.png"), timeout=5)
    assert Path(out).read_bytes() == b"logo-bytes"
    assert seen["timeout"] == 5
