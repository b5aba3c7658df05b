"""确定性 tar 归档写入器

相同的输入文件树必须产生相同的归档字节，因此每个成员的元数据都被归一化:
mtime=0、uid/gid=0、属主名为空，只保留权限位；目录内容按名称排序写入。
同名成员只写入第一次。
"""

from __future__ import annotations

import io
import logging
import os
import stat
import tarfile
from pathlib import Path, PurePosixPath

from dpm.core.exceptions import FormatError, PackageIOError

logger = logging.getLogger(__name__)


def archive_name(rel: str) -> str:
    """把 spec 中的相对路径规范化为归档成员名"""
    path = PurePosixPath(rel.replace(os.sep, "/"))
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise FormatError(f"路径必须位于源目录内: {rel!r}")
    return str(path)


class ArchiveWriter:
    """内存中的 tar 归档"""

    def __init__(self) -> None:
        self._buf = io.BytesIO()
        self._tar = tarfile.open(fileobj=self._buf, mode="w:", format=tarfile.GNU_FORMAT)
        self._seen: set[str] = set()
        self._closed = False

    @staticmethod
    def _info(name: str, mode: int) -> tarfile.TarInfo:
        ti = tarfile.TarInfo(name)
        ti.mode = mode
        ti.mtime = 0
        ti.uid = ti.gid = 0
        ti.uname = ti.gname = ""
        return ti

    def _claim(self, name: str) -> bool:
        if name in self._seen:
            logger.debug("重复成员已忽略: %s", name)
            return False
        self._seen.add(name)
        return True

    def add_bytes(self, name: str, data: bytes, mode: int = 0o644) -> None:
        if not self._claim(name):
            return
        ti = self._info(name, mode)
        ti.size = len(data)
        self._tar.addfile(ti, io.BytesIO(data))

    def add_file(self, path: Path, name: str) -> None:
        """添加单个文件或符号链接（不跟随链接）"""
        try:
            st = os.lstat(path)
        except OSError as e:
            raise PackageIOError(f"文件不存在: {path}") from e

        if stat.S_ISLNK(st.st_mode):
            if not self._claim(name):
                return
            ti = self._info(name, stat.S_IMODE(st.st_mode))
            ti.type = tarfile.SYMTYPE
            ti.linkname = os.readlink(path)
            self._tar.addfile(ti)
        elif stat.S_ISDIR(st.st_mode):
            self.add_tree(path, name)
        elif stat.S_ISREG(st.st_mode):
            try:
                data = path.read_bytes()
            except OSError as e:
                raise PackageIOError(f"读取失败: {path}: {e}") from e
            self.add_bytes(name, data, stat.S_IMODE(st.st_mode))
        else:
            logger.debug("跳过特殊文件: %s", path)

    def add_tree(self, root: Path, prefix: str) -> None:
        """递归添加目录，成员名以 prefix 开头；子项按名称排序"""
        if not root.is_dir() or root.is_symlink():
            raise PackageIOError(f"目录不存在: {root}")
        if self._claim(prefix):
            ti = self._info(prefix, stat.S_IMODE(root.stat().st_mode))
            ti.type = tarfile.DIRTYPE
            self._tar.addfile(ti)
        for child in sorted(root.iterdir(), key=lambda p: p.name):
            self.add_file(child, f"{prefix}/{child.name}")

    def close(self) -> bytes:
        if not self._closed:
            self._tar.close()
            self._closed = True
        return self._buf.getvalue()
