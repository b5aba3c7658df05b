"""网络工具：仓库地址校验与分类"""

from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote, urlparse

from dpm.core.exceptions import ValidationError

_REMOTE_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验远程 URL 仅使用 http/https

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _REMOTE_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def local_repo_path(location: str) -> Path | None:
    """若仓库地址指向本地目录（普通路径或 file:// URL），返回该路径，否则返回 None"""
    parsed = urlparse(location)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme in _REMOTE_SCHEMES:
        return None
    # Windows 盘符会被解析为单字母 scheme
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ValidationError(f"不支持的仓库地址协议 '{parsed.scheme}': {location}")
    return Path(location)


def join_url(base: str, name: str) -> str:
    """拼接仓库根地址与文件名"""
    return f"{base.rstrip('/')}/{name}"
