"""统一异常体系

所有业务异常继承 DpmError，每个子类携带稳定的 code，
CLI 层据此输出友好提示并以非零状态退出。
"""

from __future__ import annotations


class DpmError(Exception):
    """dpm 基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class FormatError(DpmError):
    """归档格式错误：缺少 SPEC.yml、成员名不符、tar 损坏或描述文件无法解析"""

    code = "FORMAT_ERROR"


class UnsupportedVersionError(DpmError):
    """spec 格式版本不受支持"""

    code = "UNSUPPORTED_VERSION"

    def __init__(self, version: str, supported: str) -> None:
        super().__init__(f"Spec 版本 '{version}' 不受支持 (仅支持 {supported})")
        self.version = version
        self.supported = supported


class SizeMismatchError(DpmError):
    """成员声明大小与实际读取字节数不一致（归档损坏）"""

    code = "SIZE_MISMATCH"

    def __init__(self, member: str, declared: int, actual: int) -> None:
        super().__init__(
            f"成员 '{member}' 大小不匹配: 声明 {declared} 字节, 实际 {actual} 字节"
        )
        self.member = member
        self.declared = declared
        self.actual = actual


class CyclicDependencyError(DpmError):
    """依赖图中存在环"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"检测到循环依赖: {', '.join(cycle)}")
        self.cycle = cycle


class NotFoundError(DpmError):
    """索引中找不到指定的包"""

    code = "NOT_FOUND"


class PackageIOError(DpmError, OSError):
    """文件系统读写失败"""

    code = "IO_ERROR"


class FetchError(PackageIOError):
    """远程索引或制品拉取失败"""

    code = "FETCH_ERROR"


class ValidationError(DpmError, ValueError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ProvisionError(DpmError):
    """外部 docker-machine / docker-compose 命令执行失败"""

    code = "PROVISION_ERROR"


class InUseError(DpmError):
    """工作空间仍被其他已安装的包依赖"""

    code = "IN_USE"

    def __init__(self, pkg_hash: str, dependents: list[str]) -> None:
        super().__init__(
            f"包 {pkg_hash[:12]} 仍被已安装的包依赖: "
            f"{', '.join(h[:12] for h in dependents)}"
        )
        self.pkg_hash = pkg_hash
        self.dependents = dependents
