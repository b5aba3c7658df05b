"""仓库索引

索引是 {包名, 版本, 文件名, 内容哈希} 记录的有序列表，以 YAML 列表持久化。
约定同名同版本唯一，但不强制。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dpm.core.exceptions import FormatError, PackageIOError
from dpm.core.package import is_content_hash, is_hex
from dpm.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)


@dataclass
class Entry:
    """索引中的一条记录"""

    package_name: str
    version: str
    filename: str
    hash: str

    def to_dict(self) -> dict[str, str]:
        return {
            "packagename": self.package_name,
            "version": self.version,
            "filename": self.filename,
            "hash": self.hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entry:
        return cls(
            package_name=str(data.get("packagename") or ""),
            version=str(data.get("version") or ""),
            filename=str(data.get("filename") or ""),
            hash=str(data.get("hash") or ""),
        )


class Entries(list[Entry]):
    """有序的索引条目列表，附带查找辅助方法"""

    def find_by_name(self, name: str) -> Entry | None:
        for e in self:
            if e.package_name == name:
                return e
        return None

    def find_by_name_and_version(self, name: str, version: str) -> Entry | None:
        for e in self:
            if e.package_name == name and e.version == version:
                return e
        return None

    def find_by_hash(self, pkg_hash: str) -> Entry | None:
        """完整哈希精确匹配，入参必须是 64 位十六进制"""
        if not is_content_hash(pkg_hash):
            return None
        for e in self:
            if e.hash == pkg_hash:
                return e
        return None

    def find_by_partial_hash(self, partial: str) -> Entry | None:
        """哈希后缀匹配，多条命中时返回索引顺序中的第一条"""
        if not partial or not is_hex(partial):
            return None
        partial = partial.lower()
        for e in self:
            if e.hash.endswith(partial):
                return e
        return None

    def save(self, path: str | Path) -> None:
        try:
            save_yaml(path, [e.to_dict() for e in self])
        except OSError as e:
            raise PackageIOError(f"保存索引失败: {path}: {e}") from e
        logger.info("索引已保存: %s (%d 条)", path, len(self))


def load_index(path: str | Path) -> Entries:
    """读取索引文件

    异常:
        PackageIOError: 文件不存在或无法读取
        FormatError: 内容不是记录列表
    """
    try:
        data = load_yaml(path)
    except OSError as e:
        raise PackageIOError(f"读取索引失败: {path}: {e}") from e
    if data is None:
        return Entries()
    if not isinstance(data, list):
        raise FormatError(f"索引内容必须是列表: {path}")

    entries = Entries()
    for item in data:
        if not isinstance(item, dict):
            raise FormatError(f"索引记录格式错误: {item!r}")
        entries.append(Entry.from_dict(item))
    return entries
