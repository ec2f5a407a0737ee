"""配方清单加载

职责:
- 从 YAML 清单文件（或目录下的全部 *.yml / *.yaml）加载配方定义
- 字段校验，转换为不可变的 Recipe
- 同名配方只允许出现一次
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from recipekit.core.exceptions import RecipeNotFoundError, ValidationError
from recipekit.core.models import Digest, Recipe
from recipekit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


def recipe_from_dict(name: str, info: dict[str, Any]) -> Recipe:
    """把清单中的一个条目转换为 Recipe"""
    digest_text = info.get("digest") or info.get("sha256")
    if not digest_text:
        raise ValidationError(f"配方 {name} 未声明 digest / sha256")
    if info.get("sha256") and not info.get("digest"):
        digest_text = f"sha256:{info['sha256']}"
    return Recipe(
        name=name,
        description=str(info.get("description", "")),
        homepage=str(info.get("homepage", "")),
        url=str(info.get("url", "")),
        head_url=str(info.get("head", "")),
        digest=Digest.parse(digest_text),
        version=str(info.get("version", "")),
        build_dependencies=tuple(_as_list(info, "build_dependencies", name)),
        install_commands=tuple(_commands(info, "install", name)),
        test_commands=tuple(_commands(info, "test", name)),
    )


def _as_list(info: dict[str, Any], key: str, name: str) -> list[str]:
    value = info.get(key) or []
    if not isinstance(value, list):
        raise ValidationError(f"配方 {name} 的 {key} 必须是列表")
    return [str(v) for v in value]


def _commands(info: dict[str, Any], key: str, name: str) -> list[str | tuple[str, ...]]:
    result: list[str | tuple[str, ...]] = []
    for cmd in _raw_list(info.get(key), key, name):
        if isinstance(cmd, list):
            result.append(tuple(str(a) for a in cmd))
        else:
            result.append(str(cmd))
    return result


def _raw_list(value: Any, key: str, name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"配方 {name} 的 {key} 必须是命令列表")
    return value


class RecipeBook:
    """配方集合 - 从清单文件加载"""

    def __init__(self, source: str | Path) -> None:
        self.source = Path(source)
        self._recipes: dict[str, Recipe] = {}
        self._origin: dict[str, Path] = {}
        self.reload()

    def reload(self) -> None:
        self._recipes.clear()
        self._origin.clear()
        for path in self._files():
            self._load_file(path)
        logger.info("已加载 %d 个配方", len(self._recipes))

    def _files(self) -> list[Path]:
        if self.source.is_dir():
            return sorted(
                p for p in self.source.iterdir()
                if p.suffix in (".yml", ".yaml") and not p.name.startswith(".")
            )
        if not self.source.exists():
            logger.warning("配方清单不存在: %s", self.source)
            return []
        return [self.source]

    def _load_file(self, path: Path) -> None:
        data = load_yaml(path)
        errors: list[str] = []
        for name, info in (data.get("recipes") or {}).items():
            if info is None:
                continue
            name = str(name)
            if not isinstance(info, dict):
                errors.append(f"{name}: 配方条目必须是映射")
                continue
            if name in self._recipes:
                errors.append(f"{name}: 在 {self._origin[name]} 与 {path} 中重复定义")
                continue
            try:
                self._recipes[name] = recipe_from_dict(name, info)
                self._origin[name] = path
            except ValidationError as e:
                errors.append(f"{name}: {e}")
        if errors:
            raise ValidationError(f"配方清单无效: {path}", details=errors)

    # ---- 查询 ----

    def get(self, name: str) -> Recipe:
        recipe = self._recipes.get(name)
        if recipe is None:
            raise RecipeNotFoundError(
                f"配方 '{name}' 不在清单中。可用: {sorted(self._recipes)}"
            )
        return recipe

    def __contains__(self, name: object) -> bool:
        return name in self._recipes

    def all(self) -> dict[str, Recipe]:
        return dict(self._recipes)

    def names(self) -> list[str]:
        return list(self._recipes)
