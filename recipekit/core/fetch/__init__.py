"""源码拉取模块

- verifier.py: 摘要计算与比对
- cache.py: 内容寻址缓存（LRU 淘汰）
- transport.py: URL 下载 / git 浅克隆
- fetcher.py: 缓存优先、重试、并发合并的拉取器
"""

from recipekit.core.fetch.cache import ContentCache
from recipekit.core.fetch.fetcher import Fetcher
from recipekit.core.fetch.transport import GitCheckout, Transport, UrlTransport
from recipekit.core.fetch.verifier import compute_digest, verify

__all__ = [
    "ContentCache",
    "Fetcher",
    "GitCheckout",
    "Transport",
    "UrlTransport",
    "compute_digest",
    "verify",
]
