"""recipekit 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。

退出码:
  0 成功 | 1 拉取/校验失败 | 2 依赖错误 | 3 构建失败 | 4 测试失败 | 5 已取消
"""

from __future__ import annotations

import os
import sys
from typing import Any

import click

from recipekit import __version__
from recipekit.core.exceptions import RecipeKitError
from recipekit.services.container import get_container, reset_container
from recipekit.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


class RecipeKitGroup(click.Group):
    """把业务异常转换为 "<code> [<recipe>@<stage>]: <message>" + 对应退出码"""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except RecipeKitError as e:
            click.echo(e.describe(), err=True)
            sys.exit(e.exit_code)


@click.group(cls=RecipeKitGroup)
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None,
              envvar="RECIPEKIT_CONFIG", help="配置文件路径")
def main(config_path: str | None) -> None:
    """recipekit - 声明式配方安装器"""
    setup_logging(
        level=os.getenv("RECIPEKIT_LOG_LEVEL", "INFO"),
        json_output=os.getenv("RECIPEKIT_LOG_JSON", "") == "1",
    )
    if config_path:
        from recipekit.core.config import init_config
        init_config(config_path)
        reset_container()


# 注册各领域子命令
from recipekit.cli.cmd_install import register as _reg_install  # noqa: E402
from recipekit.cli.cmd_cache import register as _reg_cache  # noqa: E402
from recipekit.cli.cmd_web import register as _reg_web  # noqa: E402

_reg_install(main)
_reg_cache(main)
_reg_web(main)
