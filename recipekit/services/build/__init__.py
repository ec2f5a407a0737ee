"""构建模块

- runner.py: 配方 install / test 命令执行（staging 目录）
"""

from recipekit.services.build.runner import STAGING_DIR_NAME, BuildRunner

__all__ = ["BuildRunner", "STAGING_DIR_NAME"]
