"""
ModUtil 统一异常体系

提供分层的异常结构，支持错误代码、上下文信息和 JSON 序列化。
"""

from typing import Any, Dict, Optional


class ModUtilError(Exception):
    """ModUtil 基础异常类"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self._get_default_code()
        self.context = context or {}

    def _get_default_code(self) -> str:
        """获取默认错误代码"""
        return "E000"

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class ConfigError(ModUtilError):
    """应用配置错误"""

    def _get_default_code(self) -> str:
        return "E100"


class ManifestUnavailable(ModUtilError):
    """信任清单既无法下载也无法从本地读取"""

    def _get_default_code(self) -> str:
        return "E110"


class CorruptState(ModUtilError):
    """安装状态文件存在但无法解析"""

    def _get_default_code(self) -> str:
        return "E120"


class PersistenceError(ModUtilError):
    """安装状态写入失败"""

    def _get_default_code(self) -> str:
        return "E121"


class InstallDirUnset(ModUtilError):
    """未设置游戏安装目录"""

    def _get_default_code(self) -> str:
        return "E130"


class FingerprintError(ModUtilError):
    """指纹计算错误"""

    def _get_default_code(self) -> str:
        return "E200"


class NotFound(FingerprintError):
    """目标不存在"""

    def _get_default_code(self) -> str:
        return "E201"


class ReadError(FingerprintError):
    """目标文件无法读取"""

    def _get_default_code(self) -> str:
        return "E202"


class StatError(FingerprintError):
    """无法判断目标类型"""

    def _get_default_code(self) -> str:
        return "E203"


class TransferError(ModUtilError):
    """下载相关错误"""

    def _get_default_code(self) -> str:
        return "E300"


class TransferBusy(TransferError):
    """已有下载正在进行"""

    def _get_default_code(self) -> str:
        return "E301"


class DownloadChecksumError(TransferError):
    """下载校验错误"""

    def _get_default_code(self) -> str:
        return "E302"


class InstallError(ModUtilError):
    """压缩包安装错误"""

    def _get_default_code(self) -> str:
        return "E400"


__all__ = [
    "ModUtilError",
    "ConfigError",
    "ManifestUnavailable",
    "CorruptState",
    "PersistenceError",
    "InstallDirUnset",
    "FingerprintError",
    "NotFound",
    "ReadError",
    "StatError",
    "TransferError",
    "TransferBusy",
    "DownloadChecksumError",
    "InstallError",
]
