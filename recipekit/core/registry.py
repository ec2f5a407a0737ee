"""YAML 注册表基类

基于 YAML 文件的表共享相同的加载、保存、增删改查逻辑。
每次写入都整体原子替换文件；内部锁保证多线程下单条目更新的一致性。

子类只需指定 section_key，即可继承完整 CRUD。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from recipekit.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)


class YamlRegistry:
    """YAML 文件注册表基类

    子类用法:
        class MyRegistry(YamlRegistry):
            section_key = "items"
    """

    section_key: str = "entries"

    def __init__(self, registry_file: str | Path) -> None:
        self.registry_file = Path(registry_file)
        self._lock = threading.RLock()
        self._data: dict[str, Any] = load_yaml(self.registry_file)

    def _section(self) -> dict[str, dict[str, Any]]:
        """获取当前 section 字典（自动创建）"""
        section = self._data.get(self.section_key)
        if not isinstance(section, dict):
            section = {}
            self._data[self.section_key] = section
        return section

    def _save(self) -> None:
        save_yaml(self.registry_file, self._data)

    def _put(self, name: str, entry: dict[str, Any]) -> dict[str, Any]:
        """写入条目并保存；保存失败时恢复内存中的旧值"""
        with self._lock:
            section = self._section()
            previous = section.get(name)
            section[name] = entry
            try:
                self._save()
            except OSError:
                if previous is None:
                    section.pop(name, None)
                else:
                    section[name] = previous
                raise
            return entry

    def _get_raw(self, name: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._section().get(name)
            return dict(entry) if entry is not None else None

    def _list_raw(self) -> list[dict[str, Any]]:
        """列出所有条目（带 name 字段）"""
        with self._lock:
            return [{"name": k, **v} for k, v in self._section().items()]

    def _remove(self, name: str) -> bool:
        with self._lock:
            section = self._section()
            if name not in section:
                return False
            previous = section.pop(name)
            try:
                self._save()
            except OSError:
                section[name] = previous
                raise
            return True
