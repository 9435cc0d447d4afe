"""
ModUtil 服务层

包含业务逻辑服务：清单存储、内容指纹、完整性检查。
"""

from modutil.services.fingerprint import Fingerprinter
from modutil.services.integrity import IntegrityChecker
from modutil.services.manifest_store import ManifestStore

__all__ = [
    "Fingerprinter",
    "IntegrityChecker",
    "ManifestStore",
]
