"""外部协作方适配：docker-machine 与 docker-compose

dpm 核心不管理机器生命周期，也不解释 composition 语义；
本模块只把 provisioning 描述翻译为命令行并通过 CommandExecutor 执行。
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from pathlib import Path

from dpm.core.exceptions import PackageIOError, ProvisionError
from dpm.core.provision import Machine, ProvisionSpec
from dpm.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


class MachineProvisioner:
    """基于 docker-machine 的机器创建与删除"""

    def __init__(self, storage_path: str | Path, executor: CommandExecutor | None = None) -> None:
        self.storage_path = str(storage_path)
        self.executor = executor or LocalExecutor()

    def _machine_cmd(self, *args: str) -> list[str]:
        return ["docker-machine", "-s", self.storage_path, *args]

    def exists(self, name: str) -> bool:
        r = self.executor.execute(
            self._machine_cmd("ls", "-f", "{{.Name}}", f"--filter=name={name}"),
        )
        return r.success and r.stdout.strip() == name

    def ip(self, name: str) -> str:
        """机器 IP，去掉可能附带的端口"""
        r = self.executor.execute(self._machine_cmd("ip", name))
        if not r.success:
            return ""
        return r.stdout.strip().split(":", 1)[0]

    def env(self, name: str) -> dict[str, str]:
        """解析 ``docker-machine env --shell sh`` 输出的 export 行"""
        r = self.executor.execute(self._machine_cmd("env", "--shell", "sh", name))
        if not r.success:
            return {}
        result: dict[str, str] = {}
        for line in r.stdout.splitlines():
            parts = line.split(" ", 1)
            if len(parts) == 2 and parts[0] == "export" and "=" in parts[1]:
                k, v = parts[1].split("=", 1)
                result[k] = v.strip('"')
        return result

    def expand(self, machine: Machine, template: str) -> str:
        """展开 post-provision 命令中的变量

        ``$self`` 为当前机器名；环境变量按原值替换；
        其他名字（或 ``${ip NAME}``）视为机器名并替换为其 IP。
        """
        def _lookup(m: re.Match[str]) -> str:
            key = m.group(1) or m.group(2)
            if key == "self":
                return machine.name
            val = os.environ.get(key, "")
            if val:
                return val
            parts = key.split(" ", 1)
            if len(parts) == 2 and parts[0] == "ip":
                return self.ip(parts[1])
            if len(parts) == 1:
                return self.ip(parts[0])
            return ""

        return _VAR_RE.sub(_lookup, template)

    def provision(self, spec: ProvisionSpec) -> list[str]:
        """创建尚不存在的机器并执行 post-provision 命令，返回新建的机器名"""
        created: list[str] = []
        for m in spec.machines():
            if self.exists(m.name):
                logger.info("机器已存在，跳过: %s", m.name)
                continue
            logger.info("创建机器: %s (driver=%s)", m.name, m.driver)
            self.executor.execute(
                self._machine_cmd("create", *m.cmd_line()),
            ).check(f"docker-machine create {m.name}")
            created.append(m.name)
            self._post_provision(m)
        return created

    def _post_provision(self, machine: Machine) -> None:
        for template in machine.post_provision:
            try:
                args = shlex.split(self.expand(machine, template))
            except ValueError as e:
                raise ProvisionError(f"post-provision 命令解析失败: {template!r}: {e}") from e
            if not args:
                continue
            env = None
            if args[0] == "docker":
                env = {**os.environ, **self.env(machine.name)}
            self.executor.execute(args, env=env).check(f"post-provision {machine.name}")

    def remove(self, spec: ProvisionSpec) -> list[str]:
        """删除已存在的机器，正常删除失败时强制删除"""
        removed: list[str] = []
        for m in spec.machines():
            if not self.exists(m.name):
                continue
            r = self.executor.execute(self._machine_cmd("rm", "-y", m.name))
            if not r.success:
                logger.warning("删除失败，尝试强制删除: %s", m.name)
                self.executor.execute(
                    self._machine_cmd("rm", "-f", m.name),
                ).check(f"docker-machine rm -f {m.name}")
            removed.append(m.name)
        return removed


class CompositionRunner:
    """在目标主机上执行 docker-compose"""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self.executor = executor or LocalExecutor()

    def up(
        self,
        workspace: Path,
        project: str,
        composition_file: str,
        host_env: dict[str, str] | None = None,
    ) -> bool:
        """启动 composition；文件为空时跳过，返回是否实际执行"""
        path = workspace / composition_file
        try:
            size = path.stat().st_size
        except OSError as e:
            raise PackageIOError(f"composition 文件不存在: {path}") from e
        if size == 0:
            logger.info("composition 为空，跳过: %s", path)
            return False

        env = {**os.environ, **(host_env or {})}
        self.executor.execute(
            ["docker-compose", "-p", project, "-f", composition_file, "up", "-d"],
            cwd=str(workspace), env=env,
        ).check(f"docker-compose up {project}")
        return True
