"""内容寻址包对象

一个 .dpm 包就是一段不可变的 tar 字节流，其身份是整段字节的 SHA-256。
哈希是包在依赖图和工作空间路径中的永久名字；任何改动都会产生新身份。

归档结构:
  SPEC.yml              必须是第一个成员
  DEPS                  可选，序列化的依赖图（``this`` 键代表本包）
  <provision/composition/内容目录>
  deps/<hash>/...       依赖闭包，解包时重定向到共享工作空间

所有访问器都是惰性的：load() 不做任何校验，首次结构化访问时才解析。
"""

from __future__ import annotations

import contextlib
import hashlib
import io
import logging
import os
import re
import shutil
import tarfile
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

from dpm.core import graph as depgraph
from dpm.core.exceptions import FormatError, PackageIOError, SizeMismatchError
from dpm.core.graph import DepGraph
from dpm.core.layout import commit_dir, staging_dir
from dpm.core.provision import ProvisionSpec
from dpm.core.spec import SPEC_FILENAME, Spec, load_root
from dpm.utils.yaml_io import atomic_write_bytes, parse_yaml

logger = logging.getLogger(__name__)

DEPS_FILENAME = "DEPS"
CLOSURE_PREFIX = "deps"
PACKAGE_SUFFIX = ".dpm"

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def is_content_hash(value: str) -> bool:
    """是否为完整的 64 位小写十六进制 SHA-256"""
    return bool(_HASH_RE.match(value))


def is_hex(value: str) -> bool:
    return bool(_HEX_RE.match(value))


def _safe_parts(name: str) -> tuple[str, ...]:
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        raise FormatError(f"归档成员路径不安全: {name}")
    return path.parts


def _dependency_of(parts: tuple[str, ...]) -> tuple[str, tuple[str, ...]] | None:
    """判断成员是否属于依赖闭包，返回 (哈希, 工作空间内相对路径)

    deps/<hash>/... 为显式闭包前缀；顶层 <hash>/... 为旧格式，
    仅在目录名是完整内容哈希时识别。
    """
    if len(parts) >= 2 and parts[0] == CLOSURE_PREFIX and is_content_hash(parts[1]):
        return parts[1], parts[2:]
    if parts and is_content_hash(parts[0]):
        return parts[0], parts[1:]
    return None


class Package:
    """不可变的 .dpm 归档"""

    def __init__(self, content: bytes) -> None:
        self._content = content
        self._hash: str | None = None

    @classmethod
    def load(cls, content: bytes) -> Package:
        return cls(content)

    @classmethod
    def load_file(cls, path: str | Path) -> Package:
        try:
            return cls(Path(path).read_bytes())
        except OSError as e:
            raise PackageIOError(f"读取包文件失败: {path}: {e}") from e

    @property
    def content(self) -> bytes:
        return self._content

    @property
    def size(self) -> int:
        return len(self._content)

    def sha256(self) -> str:
        """整段归档字节的 SHA-256（十六进制小写），计算一次后缓存"""
        if self._hash is None:
            self._hash = hashlib.sha256(self._content).hexdigest()
        return self._hash

    def __repr__(self) -> str:
        return f"Package({self.sha256()[:12]}, {self.size} bytes)"

    # ------------------------------------------------------------------
    # 归档读取
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _archive(self) -> Iterator[tarfile.TarFile]:
        try:
            with tarfile.open(fileobj=io.BytesIO(self._content), mode="r:") as tf:
                yield tf
        except tarfile.TarError as e:
            raise FormatError(f"归档损坏: {e}") from e

    @staticmethod
    def _read(tf: tarfile.TarFile, member: tarfile.TarInfo) -> bytes:
        """读取成员全部字节，实际长度必须等于声明大小"""
        f = tf.extractfile(member)
        if f is None:
            raise FormatError(f"成员 '{member.name}' 不是普通文件")
        buf = bytearray()
        try:
            while chunk := f.read(64 * 1024):
                buf += chunk
        except tarfile.ReadError as e:
            raise SizeMismatchError(member.name, member.size, len(buf)) from e
        if len(buf) != member.size:
            raise SizeMismatchError(member.name, member.size, len(buf))
        return bytes(buf)

    def read_member(self, name: str) -> bytes:
        """按成员名读取内容，不存在时抛出 FormatError"""
        with self._archive() as tf:
            for member in tf:
                if member.name == name:
                    return self._read(tf, member)
        raise FormatError(f"归档中缺少成员: {name}")

    def spec(self) -> Spec:
        """读取并校验首个成员 SPEC.yml"""
        with self._archive() as tf:
            first = tf.next()
            if first is None or first.name != SPEC_FILENAME:
                found = first.name if first is not None else "<空归档>"
                raise FormatError(
                    f"归档格式错误: 首个成员必须是 {SPEC_FILENAME}，实际为 {found}"
                )
            data = self._read(tf, first)
        return load_root(data, source=SPEC_FILENAME).spec

    def deps(self) -> DepGraph:
        """读取依赖图，``this`` 键提升为本包哈希

        没有 DEPS 成员时视为无依赖的叶子包：``{本包哈希: []}``。
        """
        data: bytes | None = None
        with self._archive() as tf:
            for member in tf:
                if member.name == DEPS_FILENAME:
                    data = self._read(tf, member)
                    break
        if data is None:
            return {self.sha256(): []}
        return depgraph.from_wire(parse_yaml(data, source=DEPS_FILENAME), self.sha256())

    def order(self, validate: bool = False) -> list[str]:
        """依赖闭包的安装顺序（依赖在前，本包最后）

        构建时已校验无环，默认不再重复校验；validate=True 时
        遇到环抛出 CyclicDependencyError。
        """
        g = self.deps()
        if validate:
            return depgraph.check_acyclic(g)
        order, _ = depgraph.toposort(g)
        return order

    def provision_spec(self) -> ProvisionSpec:
        spec = self.spec()
        return ProvisionSpec.read(self.read_member(spec.provision), source=spec.provision)

    def platforms(self) -> str:
        """由 provisioning 描述推导的平台标签，如 ``do+none``；不参与身份"""
        return self.provision_spec().platforms()

    def filename(self) -> str:
        spec = self.spec()
        return f"{spec.name}_{spec.version}-{self.platforms()}{PACKAGE_SUFFIX}"

    # ------------------------------------------------------------------
    # 保存
    # ------------------------------------------------------------------

    def save_to_file(self, path: str | Path) -> Path:
        p = Path(path)
        try:
            atomic_write_bytes(p, self._content)
        except OSError as e:
            raise PackageIOError(f"保存包失败: {p}: {e}") from e
        logger.info("已保存: %s", p, extra={"pkg_hash": self.sha256()})
        return p

    def save_to_dir(self, directory: str | Path = ".") -> Path:
        return self.save_to_file(Path(directory) / self.filename())

    # ------------------------------------------------------------------
    # 解包
    # ------------------------------------------------------------------

    def extract(self, dest: str | Path, workspace_root: str | Path) -> list[str]:
        """解包到 dest，依赖闭包重定向到共享工作空间

        - 跳过根标记 ``.`` 和 DEPS
        - 依赖成员写入 <workspace_root>/<hash>/；该目录在本次解包开始处理
          此哈希时已存在，则该哈希下的全部成员跳过
        - 新的依赖工作空间先写入临时目录，全部成功后再 rename 到位

        返回本次新建的依赖工作空间哈希列表。
        """
        dest = Path(dest)
        workspace_root = Path(workspace_root)
        dest.mkdir(parents=True, exist_ok=True)

        staged: dict[str, Path | None] = {}
        try:
            with self._archive() as tf:
                for member in tf:
                    if member.name in (".", "./", DEPS_FILENAME):
                        continue
                    parts = _safe_parts(member.name)
                    if not parts:
                        continue
                    dep = _dependency_of(parts)
                    if dep is None:
                        self._write_member(tf, member, dest, dest.joinpath(*parts))
                        continue

                    dep_hash, rel = dep
                    if dep_hash not in staged:
                        final = workspace_root / dep_hash
                        if final.exists():
                            logger.info("工作空间已存在，跳过: %s", dep_hash[:12])
                            staged[dep_hash] = None
                        else:
                            staged[dep_hash] = staging_dir(final)
                    target_root = staged[dep_hash]
                    if target_root is None or not rel:
                        continue
                    self._write_member(tf, member, target_root, target_root.joinpath(*rel))

            created = []
            for dep_hash, staging in staged.items():
                if staging is not None and commit_dir(staging, workspace_root / dep_hash):
                    created.append(dep_hash)
        except Exception:
            for staging in staged.values():
                if staging is not None:
                    shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info(
            "已解包 %s -> %s (新建依赖工作空间 %d 个)",
            self.sha256()[:12], dest, len(created),
            extra={"pkg_hash": self.sha256()},
        )
        return created

    def extract_if_not_exist(self, workspace_root: str | Path) -> Path:
        """确保本包的工作空间存在，已存在时不做任何事；返回工作空间路径"""
        workspace_root = Path(workspace_root)
        final = workspace_root / self.sha256()
        if final.exists():
            logger.debug("工作空间已存在: %s", final)
            return final

        staging = staging_dir(final)
        try:
            self.extract(staging, workspace_root)
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        commit_dir(staging, final)
        return final

    @staticmethod
    def _check_inside(root: Path, member: tarfile.TarInfo, target: Path) -> None:
        """解析符号链接后，写入位置必须仍位于 root 内

        符号链接成员会替换已有的 target，只需检查父目录；
        其他成员写入时会跟随已存在的链接，target 本身也要检查。
        """
        base = root.resolve()
        paths = [target.parent]
        if not member.issym() and target.is_symlink():
            paths.append(target)
        for p in paths:
            if not p.resolve().is_relative_to(base):
                raise FormatError(f"归档成员经由符号链接指向解包目录之外: {member.name}")

    def _write_member(
        self, tf: tarfile.TarFile, member: tarfile.TarInfo, root: Path, target: Path,
    ) -> None:
        self._check_inside(root, member, target)
        try:
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
                os.chmod(target, (member.mode & 0o7777) | 0o700)
                return

            target.parent.mkdir(parents=True, exist_ok=True)
            if member.issym():
                if target.is_symlink() or target.exists():
                    target.unlink()
                os.symlink(member.linkname, target)
                return
            if not (member.isfile() or member.islnk()):
                logger.debug("跳过特殊成员: %s", member.name)
                return

            src = tf.extractfile(member)
            if src is None:
                raise FormatError(f"无法读取成员: {member.name}")
            with src, open(target, "wb") as out:
                shutil.copyfileobj(src, out)
            os.chmod(target, member.mode & 0o7777)
        except tarfile.TarError as e:
            raise FormatError(f"读取成员失败: {member.name}: {e}") from e
        except OSError as e:
            raise PackageIOError(f"写入失败: {target}: {e}") from e
