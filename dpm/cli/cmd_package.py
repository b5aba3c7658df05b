"""CLI：包构建、索引、信息查看、源目录初始化"""

from __future__ import annotations

from pathlib import Path

import click

from dpm.build.builder import PackageBuilder
from dpm.cli import _config
from dpm.repo.indexer import write_index
from dpm.services.install_service import InstallService, init_source


def register(group: click.Group) -> None:
    group.add_command(build)
    group.add_command(index)
    group.add_command(info)
    group.add_command(init)


@click.command()
@click.argument("source", default=".")
@click.option("--dir", "-d", "out_dir", default=".", help="输出目录")
@click.pass_context
def build(ctx: click.Context, source: str, out_dir: str) -> None:
    """从源目录构建 .dpm 包"""
    pkg = PackageBuilder.from_config(_config(ctx)).build(source)
    path = pkg.save_to_dir(out_dir)
    click.echo(f"构建完成: {path}")
    click.echo(f"  sha256: {pkg.sha256()}")


@click.command()
@click.argument("directory", default=".")
@click.pass_context
def index(ctx: click.Context, directory: str) -> None:
    """为目录中的 .dpm 文件生成索引"""
    out = write_index(directory, _config(ctx).index_name)
    click.echo(f"索引已生成: {out}")


@click.command()
@click.argument("target")
@click.option("--version", "pkg_version", default="", help="指定版本")
@click.pass_context
def info(ctx: click.Context, target: str, pkg_version: str) -> None:
    """查看包信息（本地文件、包名或哈希）"""
    data = InstallService(_config(ctx)).info(target, pkg_version)
    click.echo(f"{data['name']} {data['version']}  {data['title']}")
    click.echo(f"  sha256:    {data['hash']}")
    click.echo(f"  大小:      {data['size']} 字节")
    click.echo(f"  平台:      {data['platforms'] or '-'}")
    click.echo(f"  已安装:    {'是' if data['installed'] else '否'}")
    if data["description"]:
        click.echo(f"  描述:      {data['description'].strip()}")
    for name, attrs in sorted(data["dependencies"].items()):
        click.echo(f"  依赖:      {name} ({attrs})")
    click.echo("  安装顺序:")
    for h in data["order"]:
        marker = "  <- 本包" if h == data["hash"] else ""
        click.echo(f"    {h}{marker}")


@click.command()
@click.argument("directory", default=".")
@click.option("--name", default="", help="包名（默认取目录名）")
@click.pass_context
def init(ctx: click.Context, directory: str, name: str) -> None:
    """生成新包的源目录骨架"""
    pkg_name = name or Path(directory).resolve().name
    written = init_source(directory, pkg_name, _config(ctx).spec_version)
    for path in written:
        click.echo(f"已创建: {path}")
    if not written:
        click.echo("没有需要创建的文件。")
