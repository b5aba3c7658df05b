"""测试共享 fixture：源目录构造 + 本地目录仓库

整体结构:

  tmp_path/
    home/        dpm 基础目录（cache / workspace / index）
    repo/        本地目录仓库：*.dpm + dpm.index
    src/<name>/  待构建的源目录

所有测试都使用本地目录仓库，不访问网络。
"""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest
import yaml

import dpm.core.config as cfgmod
from dpm.build.builder import PackageBuilder
from dpm.core.config import Config
from dpm.core.package import Package
from dpm.repo.indexer import write_index
from dpm.utils.logger import reset_logging
from dpm.utils.shell import CommandResult


@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch: pytest.MonkeyPatch):
    """每个测试使用独立的全局配置与日志 handler"""
    monkeypatch.setattr(cfgmod, "_current", None)
    yield
    reset_logging()


def write_source(
    root: Path,
    name: str,
    version: str = "0.1.0.dev",
    *,
    dependencies: dict[str, str] | None = None,
    drivers: dict[str, str] | None = None,
    composition: str = "web:\n  build: web\n",
) -> Path:
    """写入一个可构建的源目录：SPEC.yml + provision + composition + web/back"""
    src = root / name
    (src / "web").mkdir(parents=True, exist_ok=True)
    (src / "back").mkdir(parents=True, exist_ok=True)
    (src / "web" / "Dockerfile").write_text("FROM nginx\n")
    (src / "back" / "Dockerfile").write_text("FROM redis\n")

    machines = {
        m: {"driver": d}
        for m, d in (drivers or {"ocean": "digitalocean", "local": "none"}).items()
    }
    (src / "provision.yml").write_text(yaml.safe_dump({"machines": machines}))
    (src / "composition.yml").write_text(composition)
    (src / "SPEC.yml").write_text(yaml.safe_dump({
        "specVersion": "0.1.0",
        "spec": {
            "name": name,
            "version": version,
            "provision": "provision.yml",
            "composition": "composition.yml",
            "title": f"{name.capitalize()} - dpm test package",
            "description": "This is a test package.\n",
            "dirs": ["web", "back"],
            "dependencies": dependencies or {},
        },
    }))
    return src


def make_archive(members: list[tuple[str, bytes]]) -> bytes:
    """按给定顺序生成 tar 字节，用于构造非常规归档"""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:", format=tarfile.GNU_FORMAT) as tf:
        for name, data in members:
            ti = tarfile.TarInfo(name)
            ti.size = len(data)
            ti.mode = 0o644
            tf.addfile(ti, io.BytesIO(data))
    return buf.getvalue()


def spec_yaml(name: str, version: str = "1.0", provision: str = "") -> bytes:
    return yaml.safe_dump({
        "specVersion": "0.1.0",
        "spec": {"name": name, "version": version, "provision": provision},
    }).encode()


def publish(pkg: Package, repo: Path, filename: str = "") -> Path:
    """把包放进本地仓库并重新生成索引"""
    repo.mkdir(parents=True, exist_ok=True)
    if filename:
        path = pkg.save_to_file(repo / filename)
    else:
        path = pkg.save_to_dir(repo)
    write_index(repo)
    return path


@pytest.fixture()
def repo_dir(tmp_path: Path) -> Path:
    d = tmp_path / "repo"
    d.mkdir()
    return d


@pytest.fixture()
def config(tmp_path: Path, repo_dir: Path) -> Config:
    return Config(home=str(tmp_path / "home"), repo_url=str(repo_dir))


@pytest.fixture()
def builder(config: Config) -> PackageBuilder:
    return PackageBuilder.from_config(config)


@pytest.fixture()
def src_root(tmp_path: Path) -> Path:
    d = tmp_path / "src"
    d.mkdir()
    return d


@pytest.fixture()
def published_deps(builder: PackageBuilder, src_root: Path, repo_dir: Path) -> dict[str, Package]:
    """仓库中已发布 pack1@1.0 与 pack2@2.0 两个叶子包"""
    p1 = builder.build(write_source(src_root, "pack1", "1.0", drivers={"m": "none"}))
    p2 = builder.build(write_source(src_root, "pack2", "2.0", drivers={"m": "virtualbox"}))
    publish(p1, repo_dir)
    publish(p2, repo_dir)
    return {"pack1": p1, "pack2": p2}


@pytest.fixture()
def make_source(src_root: Path):
    """工厂：make_source(name, version, **kw) -> 源目录"""
    def _make(name: str, version: str = "0.1.0.dev", **kw) -> Path:
        return write_source(src_root, name, version, **kw)
    return _make


@pytest.fixture()
def archive_factory():
    """工厂：archive_factory([(name, bytes), ...]) -> tar 字节"""
    return make_archive


@pytest.fixture()
def spec_bytes():
    """工厂：spec_bytes(name, version, provision) -> SPEC.yml 字节"""
    return spec_yaml


@pytest.fixture()
def publish_pkg(repo_dir: Path):
    """工厂：publish_pkg(pkg, filename="") -> 仓库中的路径（索引同步更新）"""
    def _publish(pkg: Package, filename: str = "") -> Path:
        return publish(pkg, repo_dir, filename)
    return _publish


class FakeExecutor:
    """记录调用的 CommandExecutor，模拟 docker-machine 的机器状态"""

    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str, dict[str, str] | None]] = []
        self.machines: set[str] = set()
        self.fail_create: set[str] = set()
        self.fail_rm: set[str] = set()

    def execute(
        self,
        args: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        self.calls.append((list(args), cwd, env))
        if args[0] != "docker-machine":
            return CommandResult(0, "", "")

        sub, name = args[3], args[-1]
        if sub == "ls":
            target = name.split("=", 1)[1]
            return CommandResult(0, f"{target}\n" if target in self.machines else "", "")
        if sub == "create":
            if name in self.fail_create:
                return CommandResult(1, "", "driver error")
            self.machines.add(name)
        elif sub == "rm":
            if args[4] == "-y" and name in self.fail_rm:
                return CommandResult(1, "", "still running")
            self.machines.discard(name)
        elif sub == "ip":
            return CommandResult(0, "10.0.0.7:2376\n", "")
        elif sub == "env":
            return CommandResult(
                0, 'export DOCKER_HOST="tcp://10.0.0.7:2376"\nexport DOCKER_TLS_VERIFY="1"\n', "",
            )
        return CommandResult(0, "", "")

    def commands(self, program: str, sub: str = "") -> list[list[str]]:
        return [
            args for args, _, _ in self.calls
            if args[0] == program and (not sub or sub in args)
        ]


@pytest.fixture()
def executor() -> FakeExecutor:
    return FakeExecutor()
