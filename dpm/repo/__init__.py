"""包仓库：索引模型、索引客户端、索引生成

拆分说明:
- index.py: 索引条目与查找、持久化
- client.py: 远程索引与制品拉取
- indexer.py: 从本地 .dpm 文件生成索引
"""

from dpm.repo.client import RepositoryClient
from dpm.repo.index import Entries, Entry, load_index

__all__ = [
    "Entry",
    "Entries",
    "load_index",
    "RepositoryClient",
]
