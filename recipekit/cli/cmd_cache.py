"""CLI — 源码缓存管理命令"""

from __future__ import annotations

import click

from recipekit.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(cache)


@click.group()
def cache() -> None:
    """源码缓存管理"""


@cache.command(name="list")
def cache_list() -> None:
    """列出缓存条目（最近最少使用的在前）"""
    store = _svc().cache
    entries = store.entries()
    if not entries:
        click.echo("缓存为空。")
        return
    for e in entries:
        click.echo(f"  {e.digest.key}  {e.size:>12d}  {e.filename or e.url}")
    click.echo(f"共 {len(entries)} 项, {store.total_size()} 字节")


@cache.command()
@click.option("--max-bytes", type=int, default=None,
              help="淘汰到不超过该大小（默认使用配置 cache_max_bytes，0 表示清空）")
def prune(max_bytes: int | None) -> None:
    """按 LRU 淘汰缓存条目"""
    removed = _svc().cache.prune(max_bytes)
    for e in removed:
        click.echo(f"  已淘汰: {e.digest.key} ({e.size} 字节)")
    click.echo(f"淘汰 {len(removed)} 项")
