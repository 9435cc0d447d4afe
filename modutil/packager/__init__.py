"""
ModUtil 安装层

负责把下载的内容包解压到游戏目录。
"""

from modutil.packager.archive import ArchiveInstaller

__all__ = [
    "ArchiveInstaller",
]
