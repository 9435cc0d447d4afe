"""
清单存储

负责信任清单的下载与缓存，以及安装状态的读写。
"""

import asyncio
import os
import tempfile
from typing import Optional

import aiofiles
import aiohttp
from loguru import logger

from modutil.exceptions import CorruptState, ManifestUnavailable, PersistenceError
from modutil.models import InstallState, ModUtilConfig, TrustManifest
from modutil.utils import (
    document_format,
    dump_document,
    fetch_document,
    join_url,
    parse_document,
)


def write_atomic(path: str, text: str) -> None:
    """
    先写入同目录的临时文件再重命名，避免写到一半的文件覆盖旧内容

    Raises:
        OSError: 写入或重命名失败
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=directory, prefix=f".{os.path.basename(path)}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class ManifestStore:
    """信任清单与安装状态的持久化"""

    def __init__(
        self,
        config: ModUtilConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self._session = session
        self._owned_session = session is None
        self._manifest: Optional[TrustManifest] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    @property
    def manifest_url(self) -> str:
        server = self.config.server
        return join_url(server.base_url, server.require_game_id(), server.manifest_name)

    @property
    def manifest_path(self) -> str:
        return self.config.paths.manifest_file

    @property
    def state_path(self) -> str:
        return self.config.paths.state_file

    async def fetch_remote_manifest(self) -> TrustManifest:
        """
        从服务器下载信任清单

        Raises:
            ManifestUnavailable: 网络错误、HTTP 错误或内容无效
        """
        url = self.manifest_url
        fmt = document_format(self.config.server.manifest_name)
        logger.info(f"[下载] 正在下载 {url}...")
        try:
            data = await fetch_document(self.session, url, fmt)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ManifestUnavailable(
                f"清单下载失败: {e}", context={"url": url}
            ) from e
        except ValueError as e:
            raise ManifestUnavailable(
                f"清单内容无效: {e}", context={"url": url}
            ) from e

        if data is None:
            raise ManifestUnavailable("服务器未返回清单", context={"url": url})

        try:
            return TrustManifest.from_dict(data)
        except ValueError as e:
            raise ManifestUnavailable(
                f"清单内容无效: {e}", context={"url": url}
            ) from e

    async def read_cached_manifest(self) -> TrustManifest:
        """
        读取本地缓存的信任清单

        Raises:
            ManifestUnavailable: 缓存不存在或无法解析
        """
        path = self.manifest_path
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                text = await f.read()
        except FileNotFoundError as e:
            raise ManifestUnavailable(
                "无法获取清单，且本地没有缓存", context={"path": path}
            ) from e
        except OSError as e:
            raise ManifestUnavailable(
                f"无法读取本地清单: {e}", context={"path": path}
            ) from e
        except UnicodeDecodeError as e:
            raise ManifestUnavailable(
                f"本地清单不是有效的 UTF-8 文本: {e}", context={"path": path}
            ) from e

        try:
            return TrustManifest.from_dict(parse_document(text, document_format(path)))
        except ValueError as e:
            raise ManifestUnavailable(
                f"本地清单无效: {e}", context={"path": path}
            ) from e

    def write_cached_manifest(self, manifest: TrustManifest) -> None:
        path = self.manifest_path
        try:
            write_atomic(path, dump_document(manifest.to_dict(), document_format(path)))
        except OSError as e:
            # 缓存只用于离线兜底，写入失败不影响本次会话
            logger.warning(f"[清单] 无法写入本地缓存 {path}: {e}")
        else:
            logger.debug(f"[清单] 已缓存到 {path}")

    async def load_trust_manifest(self) -> TrustManifest:
        """
        加载信任清单

        每个会话第一次加载时总是从服务器获取最新清单并写入本地缓存；
        网络不可用时退回本地缓存。会话内之后的调用返回同一份清单。

        Raises:
            ManifestUnavailable: 网络和本地缓存都不可用
        """
        if self._manifest is not None:
            return self._manifest

        try:
            manifest = await self.fetch_remote_manifest()
        except ManifestUnavailable as e:
            logger.warning(f"[清单] 无法获取最新清单: {e}")
            manifest = await self.read_cached_manifest()
            logger.warning(f"[清单] 使用本地缓存: {self.manifest_path}")
        else:
            self.write_cached_manifest(manifest)

        logger.info(f"[清单] 已加载 {len(manifest.entries)} 个校验目标")
        self._manifest = manifest
        return manifest

    def load_install_state(self) -> InstallState:
        """
        读取安装状态，不存在时创建默认状态并立即保存

        Raises:
            CorruptState: 文件存在但无法解析
            PersistenceError: 默认状态无法保存
        """
        path = self.state_path
        if not os.path.exists(path):
            state = InstallState()
            self.save_install_state(state)
            logger.info(f"[状态] 已创建 {os.path.basename(path)}")
            return state

        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise CorruptState(
                f"无法读取安装状态: {e}", context={"path": path}
            ) from e
        except UnicodeDecodeError as e:
            raise CorruptState(
                f"安装状态文件不是有效的 UTF-8 文本: {e}", context={"path": path}
            ) from e

        try:
            data = parse_document(text, document_format(path, default="toml"))
            return InstallState.from_dict(data)
        except ValueError as e:
            raise CorruptState(
                f"安装状态文件已损坏: {e}", context={"path": path}
            ) from e

    def save_install_state(self, state: InstallState) -> None:
        """
        原子地写入安装状态

        Raises:
            PersistenceError: 写入失败
        """
        path = self.state_path
        try:
            text = dump_document(state.to_dict(), document_format(path, default="toml"))
            write_atomic(path, text)
        except OSError as e:
            raise PersistenceError(
                f"无法保存安装状态: {e}", context={"path": path}
            ) from e
        logger.debug(f"[状态] 已写入 {os.path.basename(path)}")

    async def close(self):
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()
