"""
同步控制器

持有安装状态、信任清单和唯一的下载槽位，驱动基础包 / 更新包的下载与安装。
"""

import asyncio
import os
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional

from loguru import logger

from modutil.download import TransferTracker
from modutil.exceptions import (
    DownloadChecksumError,
    InstallDirUnset,
    InstallError,
    ModUtilError,
    PersistenceError,
    TransferBusy,
    TransferError,
)
from modutil.logger import StatusLog
from modutil.models import (
    InstallState,
    IntegrityReport,
    ModUtilConfig,
    TransferSnapshot,
    TrustManifest,
)
from modutil.packager import ArchiveInstaller
from modutil.services import Fingerprinter, IntegrityChecker, ManifestStore
from modutil.utils import join_url


class SyncPhase(Enum):
    """控制器状态"""

    IDLE = "idle"
    FETCHING_BASE = "fetching_base"
    INSTALLING_BASE = "installing_base"
    FETCHING_UPDATE = "fetching_update"
    INSTALLING_UPDATE = "installing_update"
    FAILED = "failed"


FETCHING_PHASES = (SyncPhase.FETCHING_BASE, SyncPhase.FETCHING_UPDATE)


class SyncController:
    """
    ModUtil 同步控制器

    所有可变状态都由控制器持有，并且只在同一个事件循环中修改。
    界面层通过 tick() 以约 1Hz 的频率轮询下载进度。
    """

    def __init__(
        self,
        config: ModUtilConfig,
        store: Optional[ManifestStore] = None,
        tracker: Optional[TransferTracker] = None,
        installer: Optional[ArchiveInstaller] = None,
        checker: Optional[IntegrityChecker] = None,
    ):
        self.config = config
        self.store = store or ManifestStore(config)
        self.tracker = tracker or TransferTracker()
        self.installer = installer or ArchiveInstaller()
        self.checker = checker or IntegrityChecker()
        self.status = StatusLog(config.status_lines)

        self.phase = SyncPhase.IDLE
        self.last_error: Optional[ModUtilError] = None

        self._state: Optional[InstallState] = None
        self._manifest: Optional[TrustManifest] = None
        self._handle = None
        self._snapshot: Optional[TransferSnapshot] = None

    async def __aenter__(self):
        self.status.attach()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.tracker.close()
        await self.store.close()
        self.status.detach()

    # ---- 状态访问 ----

    def get_install_state(self) -> InstallState:
        """
        Raises:
            CorruptState: 安装状态文件已损坏
        """
        if self._state is None:
            self._state = self.store.load_install_state()
        return self._state

    def set_install_dir(self, path: str) -> InstallState:
        """只修改内存中的状态，需要再调用 save_config() 保存"""
        state = self.get_install_state()
        if path and not os.path.isdir(path):
            logger.warning(f"目录不存在: {path}")
        self._state = replace(state, install_dir=path)
        logger.info("安装目录已设置，别忘了保存！")
        return self._state

    def save_config(self) -> None:
        """
        Raises:
            PersistenceError: 写入失败
        """
        try:
            self.store.save_install_state(self.get_install_state())
        except PersistenceError as e:
            logger.error(str(e))
            raise
        logger.info(f"[保存] 已写入 {os.path.basename(self.store.state_path)}")

    async def get_manifest(self) -> TrustManifest:
        """
        Raises:
            ManifestUnavailable: 无法获取信任清单
        """
        if self._manifest is None:
            try:
                self._manifest = await self.store.load_trust_manifest()
            except ModUtilError as e:
                logger.error(str(e))
                raise
        return self._manifest

    def get_transfer_snapshot(self) -> Optional[TransferSnapshot]:
        if self._snapshot is not None:
            return self._snapshot
        if self._handle is None:
            return None
        return self.tracker.poll(self._handle)

    def status_lines(self) -> List[str]:
        return self.status.lines()

    # ---- 包名与路径 ----

    def base_archive_name(self) -> str:
        server = self.config.server
        return f"{server.require_game_id()}_BASE.{server.archive_ext}"

    def update_archive_name(self, version: int) -> str:
        server = self.config.server
        return f"{server.require_game_id()}_UPDATE_{version}.{server.archive_ext}"

    def archive_path(self, name: str) -> str:
        return os.path.join(self.config.paths.download_dir, name)

    def package_url(self, manifest: TrustManifest, name: str) -> str:
        base = manifest.server or self.config.server.base_url
        return join_url(base, self.config.server.require_game_id(), name)

    # ---- 完整性检查 ----

    async def run_integrity_check(self) -> IntegrityReport:
        """
        Raises:
            InstallDirUnset: 未设置安装目录
            ManifestUnavailable: 无法获取信任清单
        """
        state = self.get_install_state()
        if not state.has_install_dir:
            logger.warning("未设置安装目录")
            raise InstallDirUnset("未设置安装目录")

        manifest = await self.get_manifest()
        report = await asyncio.to_thread(self.checker.check, state.install_dir, manifest)
        if report.passed:
            logger.success("完整性检查通过")
        else:
            logger.warning(f"完整性检查未通过: {len(report.failed)} 个目标不匹配")
        return report

    # ---- 状态机 ----

    def _begin(self) -> None:
        """开始新操作前：结算已完成的下载，拒绝并发下载，从失败状态回到空闲"""
        if self.phase in FETCHING_PHASES:
            self.tick()
        if self.phase in FETCHING_PHASES or self.tracker.busy:
            raise TransferBusy("已有下载正在进行")
        if self.phase is SyncPhase.FAILED:
            logger.debug("从失败状态重置为空闲")
            self.phase = SyncPhase.IDLE
            self.last_error = None

    def _fail(self, error: ModUtilError) -> None:
        self.phase = SyncPhase.FAILED
        self.last_error = error
        logger.error(f"{error}")

    async def _require_manifest(self) -> TrustManifest:
        try:
            return await self.get_manifest()
        except ModUtilError as e:
            self._fail(e)
            raise

    async def _download(
        self, manifest: TrustManifest, name: str, phase: SyncPhase
    ) -> TransferSnapshot:
        path = self.archive_path(name)
        url = self.package_url(manifest, name)
        expected = manifest.package_digest(name)

        if os.path.exists(path):
            valid = await asyncio.to_thread(Fingerprinter.matches, path, expected)
            if valid:
                size = os.path.getsize(path)
                self._handle = None
                self._snapshot = TransferSnapshot(
                    url=url,
                    destination=path,
                    bytes_transferred=size,
                    total_bytes=size,
                    is_complete=True,
                )
                logger.info(f"[跳过] 文件已存在: {name}")
                return self._snapshot

            logger.warning(f"[校验] 本地文件 '{name}' SHA1 不匹配，将重新下载")
            try:
                os.remove(path)
            except OSError as e:
                error = TransferError(
                    f"无法删除损坏的文件: {e}", context={"path": path}
                )
                self._fail(error)
                raise error from e

        self._snapshot = None
        self._handle = self.tracker.start_transfer(url, path, expected)
        self.phase = phase
        return self._handle.snapshot()

    async def _install(self, name: str, phase: SyncPhase, target_version: int) -> bool:
        state = self.get_install_state()
        if not state.has_install_dir:
            logger.warning("未设置安装目录")
            raise InstallDirUnset("未设置安装目录")

        manifest = await self._require_manifest()
        path = self.archive_path(name)
        self.phase = phase
        try:
            if not os.path.isfile(path):
                raise InstallError(f"尚未下载 {name}", context={"archive": path})

            expected = manifest.package_digest(name)
            if not await asyncio.to_thread(Fingerprinter.matches, path, expected):
                raise DownloadChecksumError(
                    f"SHA1 校验失败: {name}",
                    context={"archive": path, "expected": expected},
                )

            await self.installer.extract(path, state.install_dir)

            new_state = replace(state, version=target_version)
            self.store.save_install_state(new_state)
        except ModUtilError as e:
            self._fail(e)
            raise

        self._state = new_state
        self.phase = SyncPhase.IDLE
        logger.success(f"已安装 {name}，当前版本 {target_version}")
        return True

    def _up_to_date(self, state: InstallState, manifest: TrustManifest) -> bool:
        return (
            manifest.latest_version is not None
            and state.version >= manifest.latest_version
        )

    async def download_base(self) -> Optional[TransferSnapshot]:
        """
        下载基础包；已安装基础包时不做任何事

        Returns:
            下载快照；跳过时返回 None

        Raises:
            TransferBusy: 已有下载正在进行
            ManifestUnavailable: 无法获取信任清单
        """
        self._begin()
        if self.get_install_state().version >= 1:
            logger.info("基础包已安装，无需下载")
            return None
        manifest = await self._require_manifest()
        return await self._download(
            manifest, self.base_archive_name(), SyncPhase.FETCHING_BASE
        )

    async def install_base(self) -> bool:
        """
        解压基础包并把版本设为 1

        Returns:
            是否执行了安装

        Raises:
            InstallDirUnset, InstallError, DownloadChecksumError, PersistenceError
        """
        self._begin()
        if self.get_install_state().version >= 1:
            logger.info("基础包已安装")
            return False
        return await self._install(
            self.base_archive_name(), SyncPhase.INSTALLING_BASE, 1
        )

    async def download_update(self) -> Optional[TransferSnapshot]:
        """下载 “当前版本 + 1” 的更新包"""
        self._begin()
        state = self.get_install_state()
        if state.version < 1:
            logger.warning("请先安装基础包")
            return None
        manifest = await self._require_manifest()
        if self._up_to_date(state, manifest):
            logger.info("已是最新版本")
            return None
        return await self._download(
            manifest,
            self.update_archive_name(state.version + 1),
            SyncPhase.FETCHING_UPDATE,
        )

    async def install_update(self) -> bool:
        """安装 “当前版本 + 1” 的更新包，成功后版本加一"""
        self._begin()
        state = self.get_install_state()
        if state.version < 1:
            logger.warning("请先安装基础包")
            return False
        manifest = await self._require_manifest()
        if self._up_to_date(state, manifest):
            logger.info("已是最新版本")
            return False
        target = state.version + 1
        return await self._install(
            self.update_archive_name(target), SyncPhase.INSTALLING_UPDATE, target
        )

    def tick(self) -> Optional[TransferSnapshot]:
        """
        周期性轮询：读取下载进度，下载结束时切换状态

        不会修改安装状态或信任清单。
        """
        snapshot = self.get_transfer_snapshot()
        if snapshot is None or self.phase not in FETCHING_PHASES:
            return snapshot

        if not snapshot.is_complete:
            if snapshot.rate > 0:
                logger.info(snapshot.describe())
            return snapshot

        if snapshot.error is not None:
            logger.error(f"[下载] 下载失败: {snapshot.error}")
            self.phase = SyncPhase.FAILED
            self.last_error = snapshot.error
        else:
            logger.success(
                f"[完成] 下载完成: {os.path.basename(snapshot.destination)}"
            )
            self.phase = SyncPhase.IDLE
        return snapshot

    async def wait_for_transfer(
        self,
        interval: float = 1.0,
        on_tick: Optional[Callable[[TransferSnapshot], None]] = None,
    ) -> Optional[TransferSnapshot]:
        """
        每隔 interval 秒调用一次 tick()，直到下载结束

        Raises:
            TransferError: 下载失败
        """
        while True:
            snapshot = self.tick()
            if on_tick is not None and snapshot is not None:
                on_tick(snapshot)
            if self.phase not in FETCHING_PHASES:
                break
            await asyncio.sleep(interval)

        if self.phase is SyncPhase.FAILED and self.last_error is not None:
            raise self.last_error
        return snapshot

    async def sync(
        self,
        interval: float = 1.0,
        on_tick: Optional[Callable[[TransferSnapshot], None]] = None,
    ) -> InstallState:
        """
        一次完成全部流程：需要时下载并安装基础包，然后逐个应用更新直到最新版本
        """
        if self.get_install_state().version == 0:
            if await self.download_base() is not None:
                await self.wait_for_transfer(interval, on_tick)
            await self.install_base()

        manifest = await self._require_manifest()
        if manifest.latest_version is None:
            logger.info("清单未声明最新版本，跳过更新")
            return self.get_install_state()

        while not self._up_to_date(self.get_install_state(), manifest):
            await self.download_update()
            await self.wait_for_transfer(interval, on_tick)
            await self.install_update()

        logger.success(f"同步完成，当前版本 {self.get_install_state().version}")
        return self.get_install_state()
