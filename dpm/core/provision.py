"""Provisioning 描述文件读取

只解析 ``machines:`` 段中与 dpm 相关的部分：机器名、驱动、实例数、
导出标记、驱动选项。实际创建机器由 services.provisioner 通过外部
docker-machine 完成。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from dpm.core.exceptions import FormatError
from dpm.utils.yaml_io import parse_yaml

# 驱动名 -> 归档文件名中的平台短码
PLATFORM_CODES: dict[str, str] = {
    "amazonec2": "aws",
    "azure": "az",
    "exoscale": "ex",
    "google": "gce",
    "generic": "ge",
    "hyperv": "hv",
    "openstack": "os",
    "rackspace": "rs",
    "softlayer": "sl",
    "virtualbox": "vbox",
    "vmwarevcloudair": "vca",
    "vmwarefusion": "vf",
    "vmwarevsphere": "vs",
    "digitalocean": "do",
    "none": "none",
}

STANDALONE = "standalone"
SWARM = "swarm"


@dataclass
class Machine:
    """展开实例数后的单台机器"""

    name: str
    driver: str
    export: bool = False
    options: dict[str, Any] = field(default_factory=dict)
    pre_provision: list[str] = field(default_factory=list)
    post_provision: list[str] = field(default_factory=list)

    def cmd_line(self) -> list[str]:
        """生成 ``docker-machine create`` 的参数（不含子命令本身）

        选项按键名排序：字符串 -> ``--k v``；映射 -> 每个子键一组
        ``--k kk=vv``；布尔 True -> ``--k``；其余类型忽略。
        """
        args = ["--driver", self.driver]
        for key in sorted(self.options):
            val = self.options[key]
            if isinstance(val, bool):
                if val:
                    args.append(f"--{key}")
            elif isinstance(val, dict):
                for sub in sorted(val):
                    args += [f"--{key}", f"{sub}={val[sub]}"]
            elif isinstance(val, (str, int, float)):
                args += [f"--{key}", str(val)]
        args.append(self.name)
        return args


@dataclass(frozen=True)
class ExportedMachine:
    name: str = ""
    mode: str = ""


@dataclass
class MachineSpec:
    """``machines:`` 段中单个条目的原始声明"""

    driver: str = ""
    instances: int = 1
    export: bool = False
    options: dict[str, Any] = field(default_factory=dict)
    pre_provision: list[str] = field(default_factory=list)
    post_provision: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any] | None) -> MachineSpec:
        data = data or {}
        instances = data.get("instances")
        try:
            count = 1 if instances is None else int(instances)
        except (TypeError, ValueError) as e:
            raise FormatError(f"机器 '{name}' 的 instances 必须是整数") from e
        return cls(
            driver=str(data.get("driver") or ""),
            instances=count,
            export=bool(data.get("export", False)),
            options=dict(data.get("options") or {}),
            pre_provision=list(data.get("pre-provision") or []),
            post_provision=list(data.get("post-provision") or []),
        )


@dataclass
class ProvisionSpec:
    machine_specs: dict[str, MachineSpec] = field(default_factory=dict)

    @classmethod
    def read(cls, data: bytes | str, *, source: str = "provision.yml") -> ProvisionSpec:
        doc = parse_yaml(data, source=source) or {}
        if not isinstance(doc, dict):
            raise FormatError(f"{source} 顶层必须是映射")
        machines = doc.get("machines") or {}
        if not isinstance(machines, dict):
            raise FormatError(f"{source} 中 machines 必须是映射")
        return cls(machine_specs={
            str(name): MachineSpec.from_dict(str(name), body)
            for name, body in machines.items()
        })

    def machines(self) -> list[Machine]:
        """按实例数展开为机器列表，按名称排序

        instances > 1 时机器名为 ``<name>-1`` .. ``<name>-N``，且不导出。
        """
        result: list[Machine] = []
        for name in sorted(self.machine_specs):
            ms = self.machine_specs[name]
            if ms.instances == 1:
                result.append(Machine(
                    name=name, driver=ms.driver, export=ms.export,
                    options=ms.options, pre_provision=ms.pre_provision,
                    post_provision=ms.post_provision,
                ))
                continue
            for i in range(1, ms.instances + 1):
                result.append(Machine(
                    name=f"{name}-{i}", driver=ms.driver, export=False,
                    options=ms.options, pre_provision=ms.pre_provision,
                    post_provision=ms.post_provision,
                ))
        return result

    def machine(self, name: str) -> Machine | None:
        for m in self.machines():
            if m.name == name:
                return m
        return None

    def exported_machine(self) -> ExportedMachine:
        """第一台导出的机器；带 swarm-master 选项时为 swarm 模式"""
        for m in self.machines():
            if m.export:
                mode = SWARM if "swarm-master" in m.options else STANDALONE
                return ExportedMachine(name=m.name, mode=mode)
        return ExportedMachine()

    def platforms(self) -> str:
        """所有机器驱动对应平台短码，去重排序后以 ``+`` 连接"""
        codes = {
            PLATFORM_CODES[m.driver]
            for m in self.machines()
            if m.driver in PLATFORM_CODES
        }
        return "+".join(sorted(codes))
