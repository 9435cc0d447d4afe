"""
压缩包安装器

把基础包或更新包解压覆盖到游戏安装目录。
"""

import asyncio
import os
import shutil
import tarfile
import zipfile

from loguru import logger

from modutil.exceptions import InstallError


class ArchiveInstaller:
    """压缩包安装器"""

    async def extract(self, archive_path: str, destination_dir: str) -> None:
        """
        解压压缩包到目标目录，已有文件会被覆盖

        Args:
            archive_path: 压缩包路径（zip / tar / gztar / bztar / xztar）
            destination_dir: 目标目录

        Raises:
            InstallError: 压缩包不存在、格式不支持或解压失败
        """
        context = {"archive": archive_path, "destination": destination_dir}
        if not os.path.isfile(archive_path):
            raise InstallError(f"压缩包不存在: {archive_path}", context=context)
        if not os.path.isdir(destination_dir):
            raise InstallError(f"安装目录不存在: {destination_dir}", context=context)

        logger.info(f"[安装] 正在解压 {os.path.basename(archive_path)}...")
        try:
            await asyncio.to_thread(shutil.unpack_archive, archive_path, destination_dir)
        except (shutil.ReadError, zipfile.BadZipFile, tarfile.TarError, ValueError) as e:
            raise InstallError(
                f"无法识别的压缩包: {e}", context=context
            ) from e
        except OSError as e:
            raise InstallError(f"解压失败: {e}", context=context) from e

        logger.info(f"[安装] {os.path.basename(archive_path)} 解压完成")
