"""dpm 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
命令只做参数解析与结果打印，逻辑全部委托给核心与服务层。
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import click

from dpm import __version__
from dpm.core.config import Config, init_config
from dpm.core.exceptions import DpmError
from dpm.utils.logger import setup_logging


class DpmGroup(click.Group):
    """把 DpmError 转为一行错误提示与退出码 1"""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except DpmError as e:
            click.echo(f"错误 [{e.code}]: {e}", err=True)
            ctx.exit(1)


def _config(ctx: click.Context) -> Config:
    """当前命令使用的配置（由 main 回调放入 ctx.obj）"""
    return ctx.ensure_object(dict)["config"]


@click.group(cls=DpmGroup)
@click.version_option(version=__version__)
@click.option("--home", default=None, help="dpm 基础目录（默认 $DPM_HOME 或 ~/.dpm）")
@click.option("--repo", default=None, help="仓库地址（URL 或本地目录）")
@click.pass_context
def main(ctx: click.Context, home: str | None, repo: str | None) -> None:
    """dpm - 基础设施软件包的内容寻址包管理器"""
    setup_logging(
        level=os.getenv("DPM_LOG_LEVEL", "INFO"),
        json_output=os.getenv("DPM_LOG_JSON", "") == "1",
    )
    cfg = init_config(Path(home) / "config.yml" if home else None)
    if home:
        cfg.home = home
    if repo:
        cfg.repo_url = repo
    ctx.ensure_object(dict)["config"] = cfg


# 注册各领域子命令
from dpm.cli.cmd_package import register as _reg_package  # noqa: E402
from dpm.cli.cmd_install import register as _reg_install  # noqa: E402

_reg_package(main)
_reg_install(main)
