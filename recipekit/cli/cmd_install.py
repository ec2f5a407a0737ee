"""CLI — 安装 / 卸载 / 查询命令"""

from __future__ import annotations

import signal
from contextlib import contextmanager
from typing import Iterator

import click

from recipekit.cli import _svc
from recipekit.utils.cancel import CancelToken


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(uninstall)
    group.add_command(list_installed)
    group.add_command(recipes)
    group.add_command(info)
    group.add_command(test)


@contextmanager
def _cancel_on_sigint() -> Iterator[CancelToken]:
    """Ctrl-C 转为取消信号：终止进行中的下载/子进程，配方进入 FAILED"""
    token = CancelToken()

    def handler(signum: int, frame: object) -> None:
        token.cancel("收到中断信号")

    try:
        previous = signal.signal(signal.SIGINT, handler)
    except ValueError:
        # 非主线程无法安装信号处理器
        yield token
        return
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


@click.command()
@click.argument("name")
@click.option("--head", is_flag=True, help="从 VCS 最新源码安装")
@click.option("--force", is_flag=True, help="即使已安装且配方未变也重新构建")
@click.option("--jobs", "-j", type=int, default=None, help="并行构建的最大配方数")
def install(name: str, head: bool, force: bool, jobs: int | None) -> None:
    """安装配方（连同构建依赖）"""
    manager = _svc().manager
    if jobs is not None:
        manager.max_workers = max(1, jobs)
    with _cancel_on_sigint() as token:
        report = manager.install(name, head=head, force=force, cancel=token)

    pkg = report.package
    if report.skipped:
        click.echo(f"已是最新: {name}@{pkg.version}")
        return
    for dep in report.installed[:-1]:
        click.echo(f"  依赖已安装: {dep}")
    click.echo(f"已安装: {name}@{pkg.version} -> {pkg.install_path}")
    if report.test_failure is not None:
        click.echo(f"警告: 测试失败（策略允许继续）: {report.test_failure}", err=True)


@click.command()
@click.argument("name")
@click.option("--force", is_flag=True, help="忽略仍依赖它的已安装包")
def uninstall(name: str, force: bool) -> None:
    """卸载已安装的包（未安装时无操作）"""
    if _svc().manager.uninstall(name, force=force):
        click.echo(f"已卸载: {name}")
    else:
        click.echo(f"未安装: {name}")


@click.command(name="list")
def list_installed() -> None:
    """列出已安装的包"""
    packages = _svc().manager.list_installed()
    if not packages:
        click.echo("没有已安装的包。")
        return
    for p in packages:
        head = " (head)" if p.head else ""
        click.echo(f"  {p.name:20s} {p.version:12s} [{p.state}]{head}  {p.install_path}")


@click.command()
def recipes() -> None:
    """列出所有可用配方"""
    book = _svc().recipes
    names = book.names()
    if not names:
        click.echo("没有可用的配方。")
        return
    for n in names:
        r = book.get(n)
        click.echo(f"  {r.name:20s} {r.version:12s} {r.description}")


@click.command()
@click.argument("name")
def info(name: str) -> None:
    """显示配方定义与安装状态"""
    svc = _svc()
    recipe = svc.recipes.get(name)
    click.echo(f"{recipe.name}: {recipe.version}")
    if recipe.description:
        click.echo(f"  {recipe.description}")
    if recipe.homepage:
        click.echo(f"  主页: {recipe.homepage}")
    click.echo(f"  源码: {recipe.url}")
    click.echo(f"  摘要: {recipe.digest}")
    if recipe.head_url:
        click.echo(f"  head: {recipe.head_url}")
    if recipe.build_dependencies:
        click.echo(f"  构建依赖: {', '.join(recipe.build_dependencies)}")

    pkg = svc.registry.get(name)
    if pkg is None:
        click.echo("  状态: 未安装")
        return
    click.echo(f"  状态: {pkg.state} {pkg.version} ({pkg.installed_at})")
    click.echo(f"  路径: {pkg.install_path}")
    if pkg.fingerprint != recipe.fingerprint():
        click.echo("  配方已变化，重新 install 将重新构建")


@click.command()
@click.argument("name")
def test(name: str) -> None:
    """对已安装的包重新执行测试命令"""
    with _cancel_on_sigint() as token:
        results = _svc().manager.run_tests(name, cancel=token)
    click.echo(f"测试通过: {name} ({len(results)} 条命令)")
