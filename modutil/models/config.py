"""
应用配置模型

定义 modutil.toml 对应的数据类。
"""

from dataclasses import dataclass, field
from typing import Optional

from modutil.exceptions import ConfigError

DEFAULT_SERVER = "https://mods.netrve.net/"


@dataclass
class ServerConfig:
    """服务器配置"""

    base_url: str = DEFAULT_SERVER
    game_id: str = ""
    manifest_name: str = "manifest.json"
    archive_ext: str = "zip"

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        return cls(
            base_url=str(data.get("base_url", DEFAULT_SERVER)),
            game_id=str(data.get("game_id", "")),
            manifest_name=str(data.get("manifest_name", "manifest.json")),
            archive_ext=str(data.get("archive_ext", "zip")).lstrip("."),
        )

    def require_game_id(self) -> str:
        """返回游戏 ID，未配置时抛出 ConfigError"""
        if not self.game_id:
            raise ConfigError("配置错误：请在 [server] 中指定 'game_id'。")
        return self.game_id


@dataclass
class PathsConfig:
    """本地文件路径配置"""

    state_file: str = "config.toml"
    manifest_file: str = "manifest.json"
    download_dir: str = "."
    log_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PathsConfig":
        return cls(
            state_file=str(data.get("state_file", "config.toml")),
            manifest_file=str(data.get("manifest_file", "manifest.json")),
            download_dir=str(data.get("download_dir", ".")),
            log_file=data.get("log_file"),
        )


@dataclass
class ModUtilConfig:
    """ModUtil 完整配置"""

    server: ServerConfig = field(default_factory=ServerConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    status_lines: int = 4

    @classmethod
    def from_dict(cls, data: dict) -> "ModUtilConfig":
        """
        从字典创建配置

        Raises:
            ConfigError: 配置值无效
        """
        server = data.get("server", {})
        paths = data.get("paths", {})
        if not isinstance(server, dict) or not isinstance(paths, dict):
            raise ConfigError("配置错误：'server' 和 'paths' 必须是表。")

        status_lines = data.get("status_lines", 4)
        if not isinstance(status_lines, int) or status_lines <= 0:
            raise ConfigError(
                "配置错误：'status_lines' 必须是正整数。",
                context={"status_lines": status_lines},
            )

        return cls(
            server=ServerConfig.from_dict(server),
            paths=PathsConfig.from_dict(paths),
            status_lines=status_lines,
        )
