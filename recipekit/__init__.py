"""recipekit - 声明式配方安装器"""

__version__ = "0.3.0"
