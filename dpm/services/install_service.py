"""安装服务：按依赖顺序编排 install / remove / info / init

install 流程:
  1. 定位包：本地 .dpm 文件复制进缓存，否则通过仓库索引解析并拉取
  2. extract_if_not_exist：本包与其依赖闭包解包到共享工作空间（去重）
  3. order()：依赖在前、本包在后
  4. 逐个包：读取工作空间中的 SPEC.yml -> 创建机器 -> 启动 composition

任何一步失败立即中止，已创建的缓存与工作空间保留原状。
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dpm.core.config import Config
from dpm.core.exceptions import InUseError, PackageIOError
from dpm.core.layout import Layout
from dpm.core.package import PACKAGE_SUFFIX, Package
from dpm.core.provision import ProvisionSpec
from dpm.core.spec import SPEC_FILENAME, Root, Spec, load_root
from dpm.repo.client import RepositoryClient
from dpm.services.provisioner import CompositionRunner, MachineProvisioner
from dpm.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """一次安装的结果"""

    pkg_hash: str
    workspace: Path
    order: list[str] = field(default_factory=list)
    provisioned: dict[str, list[str]] = field(default_factory=dict)  # hash -> 新建机器


class InstallService:
    """install / remove / info / init 的编排入口"""

    def __init__(
        self,
        config: Config,
        client: RepositoryClient | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.config = config
        self.layout = Layout.from_config(config)
        self.client = client or RepositoryClient.from_config(config)
        storage = config.machine_storage or str(self.layout.machines_dir)
        self.provisioner = MachineProvisioner(storage, executor=executor)
        self.composer = CompositionRunner(executor=executor)

    # ------------------------------------------------------------------
    # 定位包
    # ------------------------------------------------------------------

    def locate(self, target: str, version: str = "") -> Package:
        """本地 .dpm 文件优先，否则从仓库解析并缓存"""
        path = Path(target)
        if path.is_file():
            logger.info("从本地文件安装: %s", path)
            pkg = Package.load_file(path)
            name = path.name if path.suffix == PACKAGE_SUFFIX else f"{pkg.sha256()}{PACKAGE_SUFFIX}"
            cached = self.layout.cached(name)
            if not cached.exists():
                pkg.save_to_file(cached)
            return pkg

        logger.info("从仓库安装: %s", target)
        entry = self.client.get(target, version)
        return self.client.load_package(entry)

    def read_workspace_spec(self, pkg_hash: str) -> Spec:
        return self._read_workspace_root(pkg_hash).spec

    def _read_workspace_root(self, pkg_hash: str) -> Root:
        path = self.layout.workspace(pkg_hash) / SPEC_FILENAME
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PackageIOError(f"读取工作空间 spec 失败: {path}: {e}") from e
        return load_root(data, source=str(path), supported=self.config.spec_version)

    def _workspace_provision(self, pkg_hash: str, spec: Spec) -> ProvisionSpec | None:
        if not spec.provision:
            return None
        path = self.layout.workspace(pkg_hash) / spec.provision
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PackageIOError(f"读取 provisioning 描述失败: {path}: {e}") from e
        return ProvisionSpec.read(data, source=str(path))

    # ------------------------------------------------------------------
    # 操作
    # ------------------------------------------------------------------

    def install(self, target: str, version: str = "") -> InstallResult:
        pkg = self.locate(target, version)
        workspace = pkg.extract_if_not_exist(self.layout.workspace_root)
        order = pkg.order(validate=self.config.validate_on_install)
        result = InstallResult(pkg_hash=pkg.sha256(), workspace=workspace, order=order)

        for pkg_hash in order:
            spec = self.read_workspace_spec(pkg_hash)
            logger.info("部署: %s %s (%s)", spec.name, spec.version, pkg_hash[:12])
            prov = self._workspace_provision(pkg_hash, spec)
            if prov is None:
                continue
            result.provisioned[pkg_hash] = self.provisioner.provision(prov)

            if spec.composition:
                host = prov.exported_machine()
                host_env = self.provisioner.env(host.name) if host.name else {}
                self.composer.up(
                    self.layout.workspace(pkg_hash), spec.name,
                    spec.composition, host_env,
                )
        return result

    def dependents(self, pkg_hash: str) -> list[str]:
        """缓存中已安装（工作空间存在）且依赖闭包包含 pkg_hash 的包"""
        result: list[str] = []
        if not self.layout.cache_dir.is_dir():
            return result
        for path in sorted(self.layout.cache_dir.glob(f"*{PACKAGE_SUFFIX}")):
            other = Package.load_file(path)
            own = other.sha256()
            if own == pkg_hash or own in result:
                continue
            if not self.layout.workspace(own).exists():
                continue
            if pkg_hash in other.deps():
                result.append(own)
        return result

    def remove(self, target: str, version: str = "") -> bool:
        """删除本包的机器和工作空间；共享的依赖工作空间保留

        仍被其他已安装的包依赖时拒绝删除（InUseError）。
        """
        pkg = self.locate(target, version)
        workspace = self.layout.workspace(pkg.sha256())
        if not workspace.exists():
            logger.info("未安装: %s", pkg.sha256()[:12])
            return False

        users = self.dependents(pkg.sha256())
        if users:
            raise InUseError(pkg.sha256(), users)

        spec = self.read_workspace_spec(pkg.sha256())
        prov = self._workspace_provision(pkg.sha256(), spec)
        if prov is not None:
            self.provisioner.remove(prov)
        shutil.rmtree(workspace)
        logger.info("已删除工作空间: %s", workspace)
        return True

    def info(self, target: str, version: str = "") -> dict[str, Any]:
        pkg = self.locate(target, version)
        spec = pkg.spec()
        return {
            "name": spec.name,
            "version": spec.version,
            "title": spec.title,
            "description": spec.description,
            "hash": pkg.sha256(),
            "size": pkg.size,
            "platforms": pkg.platforms() if spec.provision else "",
            "dependencies": dict(spec.dependencies),
            "order": pkg.order(),
            "installed": self.layout.workspace(pkg.sha256()).exists(),
        }


def init_source(directory: str | Path, name: str, spec_version: str) -> list[Path]:
    """生成最小可构建的源目录骨架，已存在的文件不覆盖"""
    root = Path(directory)
    root.mkdir(parents=True, exist_ok=True)
    spec = Spec(
        name=name,
        version="0.1.0",
        provision="provision.yml",
        composition="composition.yml",
        title=name,
        description="",
    )
    files = {
        SPEC_FILENAME: Root(spec_version=spec_version, spec=spec).to_yaml(),
        "provision.yml": "machines:\n  local:\n    driver: none\n",
        "composition.yml": "",
    }
    written: list[Path] = []
    for filename, content in files.items():
        path = root / filename
        if path.exists():
            logger.info("已存在，跳过: %s", path)
            continue
        path.write_text(content, encoding="utf-8")
        written.append(path)
    return written
