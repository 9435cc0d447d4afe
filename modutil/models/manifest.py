"""
持久化记录模型

信任清单 (TrustManifest) 与安装状态 (InstallState)。
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


def normalize_digest(digest: str) -> str:
    """摘要统一为小写十六进制，比较时不区分大小写"""
    return digest.strip().lower()


@dataclass(frozen=True)
class ManifestEntry:
    """单个校验目标：相对安装目录的文件或目录，及其预期 SHA-1"""

    target: str
    digest: str


@dataclass(frozen=True)
class TrustManifest:
    """
    服务器提供的信任清单。

    会话内加载后不可变，下一次获取时整体替换。
    """

    server: str
    entries: Tuple[ManifestEntry, ...] = ()
    latest_version: Optional[int] = None
    packages: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "TrustManifest":
        """
        从字典解析信任清单

        Raises:
            ValueError: 结构无效或目标重复
        """
        if not isinstance(data, dict):
            raise ValueError("清单必须是一个对象")

        server = data.get("server", "")
        if not isinstance(server, str):
            raise ValueError("'server' 必须是字符串")

        raw_entries = data.get("entries", [])
        if not isinstance(raw_entries, list):
            raise ValueError("'entries' 必须是列表")

        entries = []
        seen = set()
        for idx, item in enumerate(raw_entries):
            if not isinstance(item, dict):
                raise ValueError(f"条目 #{idx + 1} 必须是对象")
            target = item.get("target")
            digest = item.get("digest")
            if not isinstance(target, str) or not target:
                raise ValueError(f"条目 #{idx + 1} 缺少 'target'")
            if not isinstance(digest, str) or not digest:
                raise ValueError(f"条目 #{idx + 1} 缺少 'digest'")
            if target in seen:
                raise ValueError(f"目标重复: {target}")
            seen.add(target)
            entries.append(ManifestEntry(target, normalize_digest(digest)))

        latest_version = data.get("latest_version")
        if latest_version is not None and (
            not isinstance(latest_version, int)
            or isinstance(latest_version, bool)
            or latest_version < 0
        ):
            raise ValueError("'latest_version' 必须是非负整数")

        raw_packages = data.get("packages", {})
        if not isinstance(raw_packages, dict):
            raise ValueError("'packages' 必须是对象")
        packages = {
            str(name): normalize_digest(str(digest))
            for name, digest in raw_packages.items()
        }

        return cls(
            server=server,
            entries=tuple(entries),
            latest_version=latest_version,
            packages=packages,
        )

    def to_dict(self) -> dict:
        data: dict = {
            "server": self.server,
            "entries": [
                {"target": entry.target, "digest": entry.digest}
                for entry in self.entries
            ],
        }
        if self.latest_version is not None:
            data["latest_version"] = self.latest_version
        if self.packages:
            data["packages"] = dict(self.packages)
        return data

    def package_digest(self, filename: str) -> Optional[str]:
        """返回压缩包的预期 SHA-1，未列出时返回 None"""
        return self.packages.get(filename)


@dataclass(frozen=True)
class InstallState:
    """
    本地安装状态。

    version: 0 表示未安装，1 表示已安装基础包，1+n 表示在其上应用了 n 个更新。
    """

    install_dir: str = ""
    version: int = 0

    @property
    def has_install_dir(self) -> bool:
        return bool(self.install_dir)

    @classmethod
    def from_dict(cls, data: dict) -> "InstallState":
        """
        Raises:
            ValueError: 字段缺失或类型错误
        """
        if not isinstance(data, dict):
            raise ValueError("安装状态必须是一个对象")
        install_dir = data.get("install_dir", "")
        version = data.get("version", 0)
        if not isinstance(install_dir, str):
            raise ValueError("'install_dir' 必须是字符串")
        if not isinstance(version, int) or isinstance(version, bool) or version < 0:
            raise ValueError("'version' 必须是非负整数")
        return cls(install_dir=install_dir, version=version)

    def to_dict(self) -> dict:
        return {"install_dir": self.install_dir, "version": self.version}
