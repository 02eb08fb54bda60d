"""
远程/本地产物获取：源图与签名材料都通过这里取到工作目录。
"""

from __future__ import annotations

import os
import shutil
import urllib.error
import urllib.parse
import urllib.request

from .errors import RetrievalError


def is_remote(source: str) -> bool:
    return urllib.parse.urlparse(source).scheme in ("http", "https")


def fetch_artifact(source: str, dest: str, *, timeout: float = 60.0) -> str:
    """把 URL 或本地路径对应的文件取到 `dest`；任何失败都抛出 `RetrievalError`。"""
    if not source:
        raise RetrievalError("empty artifact source")
    os.makedirs(os.path.dirname(dest) or ".", exist_ok=True)
    parsed = urllib.parse.urlparse(source)
    if parsed.scheme in ("http", "https"):
        req = urllib.request.Request(source, headers={"User-Agent": "buildprep"})
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp, open(dest, "wb") as f:
                shutil.copyfileobj(resp, f)
        except urllib.error.HTTPError as e:
            raise RetrievalError(f"HTTP {e.code} fetching {source}") from e
        except OSError as e:
            # URLError 与超时都是 OSError 的子类。
            raise RetrievalError(f"failed to fetch {source}: {e}") from e
    else:
        path = urllib.request.url2pathname(parsed.path) if parsed.scheme == "file" else source
        path = os.path.expanduser(path)
        if not os.path.isfile(path):
            raise RetrievalError(f"artifact not found: {path}")
        try:
            shutil.copyfile(path, dest)
        except OSError as e:
            raise RetrievalError(f"failed to copy {path}: {e}") from e

    if os.path.getsize(dest) == 0:
        raise RetrievalError(f"artifact is empty: {source}")
    return dest
