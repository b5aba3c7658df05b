"""YAML / 文件统一读写工具

集中管理 SPEC.yml、DEPS、索引文件的序列化与反序列化：
统一 UTF-8 编码、空值保护、目录自动创建、原子写入。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from dpm.core.exceptions import FormatError

logger = logging.getLogger(__name__)

# YAML 文件最大大小限制 (10MB)，防止异常大文件导致内存耗尽
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write_bytes(path: Path, data: bytes, mode: int = 0o644) -> None:
    """原子写入二进制内容：同目录临时文件写完后 rename 到目标路径

    写入失败时清理临时文件并重新抛出原异常。
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, mode)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def atomic_write(path: Path, content: str) -> None:
    """原子写入文本文件（UTF-8）"""
    atomic_write_bytes(path, content.encode("utf-8"))


def parse_yaml(data: bytes | str, *, source: str = "<bytes>", text_only: bool = False) -> Any:
    """解析内存中的 YAML 内容，编码或格式错误统一转为 FormatError

    参数:
        data: 原始 YAML 字节或字符串
        source: 出错时在消息中标识来源（文件名或归档成员名）
        text_only: 为 True 时所有标量按原文保留为字符串（``1.10`` 不会变成 1.1）

    返回:
        解析结果；空文档返回 None
    """
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        if text_only:
            return yaml.load(data, Loader=yaml.BaseLoader)  # nosec B506
        return yaml.safe_load(data)
    except UnicodeDecodeError as e:
        raise FormatError(f"{source} 不是合法的 UTF-8: {e}") from e
    except yaml.YAMLError as e:
        raise FormatError(f"解析 YAML 失败: {source}: {e}") from e


def dump_yaml(data: Any, *, sort_keys: bool = False) -> str:
    """序列化为 YAML 文本，保持块格式并允许 Unicode"""
    return yaml.safe_dump(
        data, default_flow_style=False,
        allow_unicode=True, sort_keys=sort_keys,
    )


def load_yaml(path: str | Path) -> Any:
    """读取 YAML 文件

    参数:
        path: YAML 文件路径

    返回:
        解析结果；文件为空时返回 None

    异常:
        FileNotFoundError: 文件不存在
        FormatError: YAML 格式错误，或文件过大（超过 MAX_YAML_SIZE）
    """
    p = Path(path)
    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise FormatError(
            f"YAML 文件过大: {p} ({file_size} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )
    return parse_yaml(p.read_bytes(), source=str(p))


def save_yaml(path: str | Path, data: Any, *, sort_keys: bool = False) -> None:
    """原子写入 YAML 文件，自动创建父目录"""
    p = Path(path)
    try:
        atomic_write(p, dump_yaml(data, sort_keys=sort_keys))
    except (PermissionError, OSError) as e:
        logger.error("写入文件失败: %s, 错误: %s", path, e)
        raise
