"""包描述数据模型

数据类:
- Spec: SPEC.yml 中 ``spec`` 段，包的元信息、内容目录与依赖声明
- Root: SPEC.yml 顶层，格式版本 + Spec
- DependencyAttrs: 依赖属性串（如 ``version=1.0``）解析后的类型化记录
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Any

from dpm.core.config import SUPPORTED_SPEC_VERSION
from dpm.core.exceptions import FormatError, UnsupportedVersionError, ValidationError
from dpm.utils.yaml_io import dump_yaml, parse_yaml

SPEC_FILENAME = "SPEC.yml"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class Spec:
    """单个包的声明式描述，构建后不可变"""

    name: str
    version: str
    provision: str = ""
    composition: str = ""
    title: str = ""
    description: str = ""
    dirs: list[str] = field(default_factory=list)
    dependencies: dict[str, str] = field(default_factory=dict)  # name -> "version=1.0"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Spec:
        dirs = data.get("dirs") or []
        deps = data.get("dependencies") or {}
        if not isinstance(dirs, list):
            raise FormatError("spec.dirs 必须是列表")
        if not isinstance(deps, dict):
            raise FormatError("spec.dependencies 必须是映射")
        return cls(
            name=_text(data.get("name")),
            version=_text(data.get("version")),
            provision=_text(data.get("provision")),
            composition=_text(data.get("composition")),
            title=_text(data.get("title")),
            description=_text(data.get("description")),
            dirs=[_text(d) for d in dirs],
            dependencies={_text(k): _text(v) for k, v in deps.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "provision": self.provision,
            "composition": self.composition,
            "title": self.title,
            "description": self.description,
            "dirs": list(self.dirs),
            "dependencies": dict(self.dependencies),
        }


@dataclass
class Root:
    """SPEC.yml 顶层结构"""

    spec_version: str
    spec: Spec

    def to_yaml(self) -> str:
        return dump_yaml({"specVersion": self.spec_version, "spec": self.spec.to_dict()})


def load_root(
    data: bytes | str,
    *,
    source: str = SPEC_FILENAME,
    supported: str = SUPPORTED_SPEC_VERSION,
) -> Root:
    """解析 SPEC.yml 内容并校验格式版本

    标量一律按原文读取为字符串，``version: 1.10`` 保持为 "1.10"。

    异常:
        FormatError: 内容无法解码为 YAML 映射，或缺少 spec 段
        UnsupportedVersionError: specVersion 与支持的版本不一致
    """
    doc = parse_yaml(data, source=source, text_only=True)
    if not isinstance(doc, dict):
        raise FormatError(f"{source} 顶层必须是映射")

    version = _text(doc.get("specVersion"))
    if version != supported:
        raise UnsupportedVersionError(version, supported)

    body = doc.get("spec")
    if not isinstance(body, dict):
        raise FormatError(f"{source} 缺少 spec 段")
    return Root(spec_version=version, spec=Spec.from_dict(body))


# =========================================================================
# 依赖属性
# =========================================================================


def parse_attributes(attributes: str) -> dict[str, str]:
    """按 shell 词法切分属性串，提取 key=value 对

    引号内的空格会被保留，例如 ``x="x y"`` 得到 ``{"x": "x y"}``；
    不含 ``=`` 的词被忽略。
    """
    try:
        words = shlex.split(attributes)
    except ValueError as e:
        raise ValidationError(f"依赖属性解析失败: {attributes!r}: {e}") from e

    result: dict[str, str] = {}
    for word in words:
        if "=" in word:
            k, v = word.split("=", 1)
            result[k] = v
    return result


@dataclass(frozen=True)
class DependencyAttrs:
    """依赖约束：version 为空表示接受索引中的任意版本"""

    version: str = ""
    extra: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, attributes: str) -> DependencyAttrs:
        attrs = parse_attributes(attributes)
        version = attrs.pop("version", "")
        return cls(version=version, extra=attrs)
