"""基础目录布局

<home>/
  cache/       下载或构建得到的 .dpm 归档
  workspace/   以内容哈希命名的解包目录，被所有依赖方共享
  index/       本地与远程索引副本
  machines/    docker-machine 存储目录
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dpm.core.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Layout:
    """dpm 基础目录下各子目录的路径计算"""

    home: Path

    @classmethod
    def from_config(cls, config: Config) -> Layout:
        return cls(home=Path(config.home))

    @property
    def cache_dir(self) -> Path:
        return self.home / "cache"

    @property
    def workspace_root(self) -> Path:
        return self.home / "workspace"

    @property
    def index_dir(self) -> Path:
        return self.home / "index"

    @property
    def machines_dir(self) -> Path:
        return self.home / "machines"

    def workspace(self, pkg_hash: str) -> Path:
        return self.workspace_root / pkg_hash

    def cached(self, filename: str) -> Path:
        return self.cache_dir / filename

    def ensure(self) -> None:
        """创建全部子目录"""
        for d in (self.cache_dir, self.workspace_root, self.index_dir, self.machines_dir):
            d.mkdir(parents=True, exist_ok=True)


def staging_dir(final: Path) -> Path:
    """在目标目录旁创建临时目录，用于先写后 rename"""
    final.parent.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f".tmp-{final.name}-", dir=str(final.parent)))


def commit_dir(staging: Path, final: Path) -> bool:
    """把临时目录原子地移动到最终位置

    目标已存在（并发进程抢先完成）时丢弃临时目录，返回 False。
    """
    if final.exists():
        shutil.rmtree(staging, ignore_errors=True)
        logger.debug("目录已由其他进程创建，丢弃临时目录: %s", final)
        return False
    try:
        staging.rename(final)
    except OSError:
        if final.exists():
            shutil.rmtree(staging, ignore_errors=True)
            return False
        raise
    return True
