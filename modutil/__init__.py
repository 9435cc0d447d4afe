"""
ModUtil - 游戏模组完整性检查与内容同步工具
"""

__version__ = "0.1.0"

from modutil.controller import SyncController, SyncPhase
from modutil.exceptions import ModUtilError
from modutil.models import InstallState, IntegrityReport, ModUtilConfig, TrustManifest

__all__ = [
    "__version__",
    "SyncController",
    "SyncPhase",
    "ModUtilError",
    "InstallState",
    "IntegrityReport",
    "ModUtilConfig",
    "TrustManifest",
]
