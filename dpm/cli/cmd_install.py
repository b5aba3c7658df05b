"""CLI：安装与删除"""

from __future__ import annotations

import click

from dpm.cli import _config
from dpm.services.install_service import InstallService


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(remove)


@click.command()
@click.argument("target")
@click.option("--version", "pkg_version", default="", help="指定版本")
@click.pass_context
def install(ctx: click.Context, target: str, pkg_version: str) -> None:
    """安装包及其依赖闭包（本地 .dpm 文件、包名或哈希）"""
    result = InstallService(_config(ctx)).install(target, pkg_version)
    click.echo(f"已安装: {result.pkg_hash}")
    click.echo(f"  工作空间: {result.workspace}")
    for h in result.order:
        machines = result.provisioned.get(h, [])
        created = f"  新建机器: {', '.join(machines)}" if machines else ""
        click.echo(f"  - {h[:12]}{created}")


@click.command()
@click.argument("target")
@click.option("--version", "pkg_version", default="", help="指定版本")
@click.pass_context
def remove(ctx: click.Context, target: str, pkg_version: str) -> None:
    """删除包的机器与工作空间（共享依赖保留）"""
    if InstallService(_config(ctx)).remove(target, pkg_version):
        click.echo(f"已删除: {target}")
    else:
        click.echo(f"未安装: {target}")
