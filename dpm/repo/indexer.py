"""从目录中的 .dpm 文件生成仓库索引"""

from __future__ import annotations

import logging
from pathlib import Path

from dpm.core.exceptions import PackageIOError
from dpm.core.package import PACKAGE_SUFFIX, Package
from dpm.repo.index import Entries, Entry

logger = logging.getLogger(__name__)


def scan_packages(directory: str | Path) -> Entries:
    """按文件名顺序扫描目录下全部 .dpm，读取 spec 与内容哈希"""
    root = Path(directory)
    if not root.is_dir():
        raise PackageIOError(f"目录不存在: {root}")

    entries = Entries()
    for path in sorted(root.glob(f"*{PACKAGE_SUFFIX}")):
        pkg = Package.load_file(path)
        spec = pkg.spec()
        entries.append(Entry(
            package_name=spec.name,
            version=spec.version,
            filename=path.name,
            hash=pkg.sha256(),
        ))
        logger.debug("索引: %s %s %s", spec.name, spec.version, path.name)
    return entries


def write_index(directory: str | Path, index_name: str = "dpm.index") -> Path:
    """生成 <directory>/<index_name>，返回索引路径"""
    entries = scan_packages(directory)
    out = Path(directory) / index_name
    entries.save(out)
    return out
