from __future__ import annotations

PathElem = str | int


def parse_key_path(key_path: str) -> list[PathElem]:
    """
    将 PlistBuddy 风格路径解析为字典键/数组索引序列。

    语法说明：
    - `NSAppTransportSecurity:NSAllowsArbitraryLoads` 表示嵌套字典键。
    - `UIBackgroundModes:0` 表示数组索引。
    - 允许以前导 `:` 开头，兼容 PlistBuddy 的 `Print :Key` 写法。
    - 键名本身可以包含 `.` 与 `-`（如 `aps-environment`）。
    """
    s = key_path.strip()
    if s.startswith(":"):
        s = s[1:]
    if not s:
        raise ValueError("empty key path")
    out: list[PathElem] = []
    for part in s.split(":"):
        if part == "":
            raise ValueError(f"invalid key path: {key_path}")
        out.append(int(part) if part.isdigit() else part)
    return out


def format_key_path(path: list[PathElem]) -> str:
    """`parse_key_path` 的逆操作，用于报错信息。"""
    return ":".join(str(elem) for elem in path)
