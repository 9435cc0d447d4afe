"""
ModUtil 数据模型包

包含应用配置、持久化记录、检查结果和下载快照。
"""

from modutil.models.config import (
    DEFAULT_SERVER,
    ServerConfig,
    PathsConfig,
    ModUtilConfig,
)
from modutil.models.manifest import (
    ManifestEntry,
    TrustManifest,
    InstallState,
    normalize_digest,
)
from modutil.models.report import TargetResult, IntegrityReport
from modutil.models.transfer import TransferSnapshot

__all__ = [
    # 配置模型
    "DEFAULT_SERVER",
    "ServerConfig",
    "PathsConfig",
    "ModUtilConfig",
    # 持久化记录
    "ManifestEntry",
    "TrustManifest",
    "InstallState",
    "normalize_digest",
    # 检查与下载
    "TargetResult",
    "IntegrityReport",
    "TransferSnapshot",
]
