"""集中配置管理

dpm 的基础目录、仓库地址等配置统一在此定义。
核心组件只接收显式传入的 Config / Layout，不读取全局状态；
全局单例仅供 CLI 入口使用。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

from dpm.core.exceptions import ValidationError
from dpm.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_REPO_URL = "https://raw.githubusercontent.com/swasd/dpm-repo/master/"
SUPPORTED_SPEC_VERSION = "0.1.0"


def default_home() -> str:
    """$DPM_HOME，未设置时为 ~/.dpm"""
    return os.environ.get("DPM_HOME") or str(Path.home() / ".dpm")


@dataclass
class Config:
    """dpm 全局配置"""

    home: str = field(default_factory=default_home)
    repo_url: str = field(
        default_factory=lambda: os.environ.get("DPM_REPO") or DEFAULT_REPO_URL,
    )
    index_name: str = "dpm.index"
    spec_version: str = SUPPORTED_SPEC_VERSION

    # 安装时是否重新校验依赖图无环（构建时已校验，默认信任）
    validate_on_install: bool = False
    # docker-machine 存储目录，为空时使用 <home>/machines
    machine_storage: str = ""

    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        """从 YAML 文件加载配置，文件不存在时返回默认值"""
        p = Path(path)
        if not p.exists():
            return cls()
        data = load_yaml(p) or {}
        if not isinstance(data, dict):
            raise ValidationError(f"配置文件内容必须是映射: {p}")
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str | Path | None = None) -> Config:
    """从文件初始化全局配置，默认读取 <home>/config.yml"""
    global _current  # noqa: PLW0603
    if path is None:
        path = Path(default_home()) / "config.yml"
    _current = Config.from_file(path)
    logger.debug("配置已加载: %s", path)
    return _current
