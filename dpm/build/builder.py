"""包构建器

从源目录组装新的 .dpm 包:

  1. 读取并校验源目录下的 SPEC.yml
  2. 写入 SPEC.yml（第一个成员）、provision / composition 文件、声明的内容目录
  3. 逐个解析依赖：属性串 -> 索引解析 -> 拉取缓存 -> 解包到共享工作空间
     -> 合并该依赖自带的依赖图
  4. 把本包直接依赖写在 ``this`` 键下，序列化为 DEPS 成员
  5. 拓扑排序整个闭包，存在环则整个构建失败
  6. 按顺序把每个依赖的工作空间写入 deps/<hash>/，使包可离线安装

构建期间只写内存缓冲区，任何一步失败都不会产出归档文件。
依赖在构建时就被解析为确定的哈希，保证每次部署行为一致。
"""

from __future__ import annotations

import logging
from pathlib import Path

from dpm.build.archive import ArchiveWriter, archive_name
from dpm.core import graph as depgraph
from dpm.core.config import SUPPORTED_SPEC_VERSION, Config, get_config
from dpm.core.exceptions import PackageIOError
from dpm.core.graph import DepGraph
from dpm.core.layout import Layout
from dpm.core.package import CLOSURE_PREFIX, DEPS_FILENAME, Package
from dpm.core.spec import SPEC_FILENAME, DependencyAttrs, Root, Spec, load_root
from dpm.repo.client import RepositoryClient
from dpm.repo.index import Entries
from dpm.utils.yaml_io import dump_yaml

logger = logging.getLogger(__name__)


class PackageBuilder:
    """源目录 -> Package"""

    def __init__(
        self,
        layout: Layout,
        client: RepositoryClient,
        spec_version: str = SUPPORTED_SPEC_VERSION,
    ) -> None:
        self.layout = layout
        self.client = client
        self.spec_version = spec_version

    @classmethod
    def from_config(cls, config: Config) -> PackageBuilder:
        return cls(
            layout=Layout.from_config(config),
            client=RepositoryClient.from_config(config),
            spec_version=config.spec_version,
        )

    def read_root(self, source_dir: Path) -> Root:
        path = source_dir / SPEC_FILENAME
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PackageIOError(f"读取 {path} 失败: {e}") from e
        return load_root(data, source=str(path), supported=self.spec_version)

    def build(self, source_dir: str | Path) -> Package:
        src = Path(source_dir)
        spec = self.read_root(src).spec
        logger.info("开始构建: %s %s (%s)", spec.name, spec.version, src)

        writer = ArchiveWriter()
        writer.add_file(src / SPEC_FILENAME, SPEC_FILENAME)
        for rel in (spec.provision, spec.composition):
            if rel:
                writer.add_file(src / rel, archive_name(rel))
        for rel in spec.dirs:
            writer.add_tree(src / rel, archive_name(rel))

        graph, direct = self._resolve_dependencies(spec)

        deps_doc = dump_yaml(depgraph.to_wire(graph, direct), sort_keys=True)
        writer.add_bytes(DEPS_FILENAME, deps_doc.encode("utf-8"))

        order = depgraph.check_acyclic(graph)
        for pkg_hash in order:
            workspace = self.layout.workspace(pkg_hash)
            if not workspace.is_dir():
                raise PackageIOError(f"依赖工作空间缺失: {workspace}")
            writer.add_tree(workspace, f"{CLOSURE_PREFIX}/{pkg_hash}")

        pkg = Package.load(writer.close())
        logger.info(
            "构建完成: %s %s -> %s (闭包 %d 个包)",
            spec.name, spec.version, pkg.sha256()[:12], len(order),
            extra={"pkg_hash": pkg.sha256()},
        )
        return pkg

    def _resolve_dependencies(self, spec: Spec) -> tuple[DepGraph, list[str]]:
        """解析全部声明的依赖，返回 (合并后的闭包依赖图, 本包直接依赖哈希)"""
        graph: DepGraph = {}
        direct: list[str] = []
        if not spec.dependencies:
            return graph, direct

        entries: Entries = self.client.get_index()
        for name in sorted(spec.dependencies):
            attrs = DependencyAttrs.parse(spec.dependencies[name])
            entry = self.client.resolve(entries, name, attrs.version)
            self.client.ensure_cached(entry)

            dep = self.client.load_package(entry)
            dep.extract_if_not_exist(self.layout.workspace_root)
            graph = depgraph.merge(graph, dep.deps())
            direct.append(dep.sha256())
            logger.info("  依赖: %s@%s -> %s", name, entry.version, dep.sha256()[:12])
        return graph, direct


def build_package(source_dir: str | Path, config: Config | None = None) -> Package:
    """使用给定配置（默认全局配置）构建源目录"""
    return PackageBuilder.from_config(config or get_config()).build(source_dir)
