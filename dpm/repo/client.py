"""仓库索引客户端

职责:
- 拉取远程索引到本地缓存并解析
- 把 名称 / 名称+版本 / 哈希 / 部分哈希 解析为唯一的索引条目
- 按需拉取制品到 <home>/cache/（已缓存则跳过，不重新校验）

仓库地址可以是 http(s) URL，也可以是本地目录（普通路径或 file:// URL）。
所有拉取都是阻塞调用，失败立即抛出 FetchError，不重试、不回退旧缓存。
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import urllib.error
import urllib.request
from pathlib import Path

from dpm.core.config import Config
from dpm.core.exceptions import FetchError, NotFoundError
from dpm.core.layout import Layout
from dpm.core.package import Package, is_content_hash, is_hex
from dpm.repo.index import Entries, Entry, load_index
from dpm.utils.net import join_url, local_repo_path, validate_url_scheme

logger = logging.getLogger(__name__)


class RepositoryClient:
    """远程 / 本地仓库客户端"""

    def __init__(
        self,
        layout: Layout,
        repo_url: str,
        index_name: str = "dpm.index",
    ) -> None:
        self.layout = layout
        self.repo_url = repo_url
        self.index_name = index_name

    @classmethod
    def from_config(cls, config: Config) -> RepositoryClient:
        return cls(
            layout=Layout.from_config(config),
            repo_url=config.repo_url,
            index_name=config.index_name,
        )

    @property
    def remote_index_path(self) -> Path:
        return self.layout.index_dir / f"{self.index_name}.remote"

    # ------------------------------------------------------------------
    # 索引
    # ------------------------------------------------------------------

    def get_index(self) -> Entries:
        """拉取远程索引并解析；远程不可达时直接失败"""
        self._fetch(self.index_name, self.remote_index_path)
        entries = load_index(self.remote_index_path)
        logger.info("索引已更新: %d 条 (%s)", len(entries), self.repo_url)
        return entries

    @staticmethod
    def resolve(entries: Entries, identifier: str, version: str = "") -> Entry:
        """在索引中解析标识符，优先级固定:

          1. 指定 version: 仅做 名称+版本 精确匹配
          2. 未指定 version: 名称匹配
          3. 名称未命中且为 64 位十六进制: 完整哈希匹配
          4. 仍未命中且为十六进制: 哈希后缀匹配（多条命中取第一条）
        """
        if version:
            entry = entries.find_by_name_and_version(identifier, version)
        else:
            entry = entries.find_by_name(identifier)
            if entry is None and is_content_hash(identifier):
                entry = entries.find_by_hash(identifier)
            if entry is None and is_hex(identifier):
                entry = entries.find_by_partial_hash(identifier)

        if entry is None:
            label = f"{identifier}@{version}" if version else identifier
            raise NotFoundError(f"索引中找不到包: {label}")
        return entry

    def get(self, identifier: str, version: str = "") -> Entry:
        """解析标识符并确保对应制品已缓存到本地"""
        entries = self.get_index()
        entry = self.resolve(entries, identifier, version)
        self.ensure_cached(entry)
        return entry

    def ensure_cached(self, entry: Entry) -> Path:
        """确保制品位于本地缓存，已存在时直接返回（不重新校验哈希）"""
        dest = self.layout.cached(entry.filename)
        if dest.exists():
            logger.info("缓存命中: %s", dest)
        else:
            self._fetch(entry.filename, dest)
        return dest

    def load_package(self, entry: Entry) -> Package:
        return Package.load_file(self.layout.cached(entry.filename))

    # ------------------------------------------------------------------
    # 拉取
    # ------------------------------------------------------------------

    def _fetch(self, name: str, dest: Path) -> None:
        """把仓库中的文件拉取到 dest，先写临时文件再 rename"""
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(dest.parent), suffix=".part")
        os.close(fd)
        try:
            local_root = local_repo_path(self.repo_url)
            if local_root is not None:
                src = local_root / name
                logger.info("  复制: %s", src)
                try:
                    shutil.copyfile(src, tmp)
                except OSError as e:
                    raise FetchError(f"拉取失败: {src} - {e}") from e
            else:
                url = join_url(self.repo_url, name)
                validate_url_scheme(url, context=f"repo fetch {name}")
                logger.info("  下载: %s", url)
                try:
                    urllib.request.urlretrieve(url, tmp)  # nosec B310
                except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
                    raise FetchError(f"下载失败: {url} - {e}") from e
            os.replace(tmp, dest)
        except Exception:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info("  已保存: %s", dest)
