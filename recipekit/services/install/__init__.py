"""安装管理模块

- manager.py: 安装状态机（拉取 → 校验 → 依赖 → 构建 → 测试 → 提交）
- registry.py: 已安装包注册表
"""

from recipekit.services.install.manager import InstallManager
from recipekit.services.install.registry import InstalledRegistry

__all__ = ["InstallManager", "InstalledRegistry"]
