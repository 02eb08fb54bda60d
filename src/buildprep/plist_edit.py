"""
plist 文档序列化与路径化修改工具。

所有写入都是“缺失则创建，存在则覆盖为同一确定值”，重复应用不会产生差异；
删除路径不存在时直接忽略。
"""

from __future__ import annotations

import plistlib
from typing import Any

from .plist_path import PathElem, format_key_path, parse_key_path


def dump_plist(obj: Any) -> bytes:
    """序列化为 XML plist，保留键的插入顺序，保证输出确定。"""
    return plistlib.dumps(obj, fmt=plistlib.FMT_XML, sort_keys=False)


def _empty_for(elem: PathElem) -> Any:
    return [] if isinstance(elem, int) else {}


def _check_container(node: Any, elem: PathElem, path: list[PathElem]) -> None:
    want = list if isinstance(elem, int) else dict
    if not isinstance(node, want):
        where = format_key_path(path) or "<root>"
        raise TypeError(f"expected {want.__name__} at {where}, found {type(node).__name__}")


def _slot(node: Any, elem: PathElem) -> Any:
    """读取子节点；缺失时返回 `None`。"""
    if isinstance(elem, int):
        return node[elem] if elem < len(node) else None
    return node.get(elem)


def _store(node: Any, elem: PathElem, value: Any) -> None:
    """写入子节点；数组只允许覆盖已有元素或在末尾追加。"""
    if isinstance(elem, int):
        if elem > len(node):
            raise TypeError(f"index {elem} is past the end of an array of length {len(node)}")
        if elem == len(node):
            node.append(value)
            return
    node[elem] = value


def _parent_for_write(root: Any, path: list[PathElem]) -> Any:
    """沿路径向下，按下一段的类型补齐缺失的中间容器，返回叶子的父容器。"""
    node = root
    for depth, elem in enumerate(path[:-1]):
        _check_container(node, elem, path[:depth])
        child = _slot(node, elem)
        if child is None:
            child = _empty_for(path[depth + 1])
            _store(node, elem, child)
        node = child
    _check_container(node, path[-1], path[:-1])
    return node


def _parent_if_present(root: Any, path: list[PathElem]) -> Any:
    """只读地沿路径向下，任何一段缺失或类型不符时返回 `None`。"""
    node = root
    for elem in path[:-1]:
        if isinstance(elem, int) != isinstance(node, list):
            return None
        if not isinstance(node, (dict, list)):
            return None
        node = _slot(node, elem)
        if node is None:
            return None
    return node


def set_value(root: Any, key_path: str, value: Any) -> None:
    path = parse_key_path(key_path)
    _store(_parent_for_write(root, path), path[-1], value)


def delete_value(root: Any, key_path: str) -> None:
    path = parse_key_path(key_path)
    parent = _parent_if_present(root, path)
    leaf = path[-1]
    if isinstance(leaf, int):
        if isinstance(parent, list) and leaf < len(parent):
            del parent[leaf]
    elif isinstance(parent, dict):
        parent.pop(leaf, None)


def _array_at(root: Any, key_path: str) -> list:
    """返回目标数组（必要时创建）；目标存在但不是数组时抛出 `TypeError`。"""
    path = parse_key_path(key_path)
    if isinstance(path[-1], int):
        raise TypeError(f"array path must end with a key: {key_path}")
    parent = _parent_for_write(root, path)
    arr = parent.get(path[-1])
    if arr is None:
        arr = parent[path[-1]] = []
    if not isinstance(arr, list):
        raise TypeError(f"target is not an array: {key_path}")
    return arr


def array_add_string(root: Any, key_path: str, value: str) -> None:
    """向目标数组添加字符串元素；已存在时不重复添加。"""
    arr = _array_at(root, key_path)
    if value not in arr:
        arr.append(value)


def array_remove_string(root: Any, key_path: str, value: str) -> None:
    """从目标数组中删除所有匹配字符串元素。"""
    arr = _array_at(root, key_path)
    arr[:] = [x for x in arr if x != value]
