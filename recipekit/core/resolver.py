"""依赖解析器

对配方声明的构建依赖做深度优先拓扑排序:
  - 输出中每个依赖都排在依赖它的配方之前，最后一项为配方本身
  - 互不相关的依赖按声明顺序排列，多次调用结果一致（可复现构建）
  - 存在环时抛 DependencyCycleError，并给出环路
  - 依赖名不在可用配方中时抛 UnresolvedDependencyError
"""

from __future__ import annotations

import logging
from typing import Mapping

from recipekit.core.exceptions import DependencyCycleError, UnresolvedDependencyError
from recipekit.core.models import Recipe

logger = logging.getLogger(__name__)


class DependencyResolver:
    """依赖拓扑排序"""

    def resolve(self, recipe: Recipe, available: Mapping[str, Recipe]) -> list[str]:
        """返回安装顺序（依赖在前，recipe 本身在最后）"""
        order: list[str] = []
        done: set[str] = set()
        path: list[str] = []

        def visit(current: Recipe) -> None:
            if current.name in done:
                return
            if current.name in path:
                cycle = path[path.index(current.name):] + [current.name]
                raise DependencyCycleError(cycle)
            path.append(current.name)
            for dep in current.build_dependencies:
                dep_recipe = available.get(dep)
                if dep_recipe is None:
                    raise UnresolvedDependencyError(dep, required_by=current.name)
                visit(dep_recipe)
            path.pop()
            done.add(current.name)
            order.append(current.name)

        visit(recipe)
        logger.debug("依赖顺序 %s: %s", recipe.name, " -> ".join(order))
        return order

    @staticmethod
    def levels(order: list[str], available: Mapping[str, Recipe]) -> list[list[str]]:
        """把拓扑顺序分成若干批，同一批内的配方互不依赖，可以并行构建

        第 n 批中的配方只依赖前 n-1 批中的配方；批内保持 order 中的相对顺序。
        """
        depth: dict[str, int] = {}
        for name in order:
            deps = available[name].build_dependencies
            depth[name] = 1 + max((depth[d] for d in deps), default=-1)
        waves: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for name in order:
            waves[depth[name]].append(name)
        return waves
