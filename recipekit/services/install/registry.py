"""已安装包注册表

每个配方名一条记录（追加或更新），只保存 INSTALLED 状态的包。
"""

from __future__ import annotations

import logging

from recipekit.core.models import InstalledPackage
from recipekit.core.registry import YamlRegistry

logger = logging.getLogger(__name__)


class InstalledRegistry(YamlRegistry):
    """已安装包注册表"""

    section_key = "installed"

    def commit(self, package: InstalledPackage) -> InstalledPackage:
        """写入（或覆盖）一条已安装记录"""
        entry = package.to_dict()
        entry.pop("name")
        self._put(package.name, entry)
        logger.info("注册表已更新: %s@%s", package.name, package.version)
        return package

    def get(self, name: str) -> InstalledPackage | None:
        entry = self._get_raw(name)
        if entry is None:
            return None
        return _to_package(name, entry)

    def list_all(self) -> list[InstalledPackage]:
        return [_to_package(e.pop("name"), e) for e in self._list_raw()]

    def remove(self, name: str) -> bool:
        if not self._remove(name):
            return False
        logger.info("注册表已删除: %s", name)
        return True


def _to_package(name: str, entry: dict) -> InstalledPackage:
    return InstalledPackage(
        name=name,
        version=str(entry.get("version", "")),
        install_path=str(entry.get("install_path", "")),
        digest=str(entry.get("digest", "")),
        installed_at=str(entry.get("installed_at", "")),
        state=str(entry.get("state", "installed")),
        fingerprint=str(entry.get("fingerprint", "")),
        head=bool(entry.get("head", False)),
    )
