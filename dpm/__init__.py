"""dpm - 基础设施软件包的内容寻址包管理器"""

__version__ = "0.1.0"
