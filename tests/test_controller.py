"""Tests for the sync controller state machine."""

from __future__ import annotations

import hashlib
import os
from typing import TYPE_CHECKING, Any, Optional

import pytest

from modutil.controller import SyncController, SyncPhase
from modutil.exceptions import (
    DownloadChecksumError,
    InstallDirUnset,
    InstallError,
    ManifestUnavailable,
    TransferBusy,
    TransferError,
)
from modutil.models import (
    InstallState,
    ManifestEntry,
    ModUtilConfig,
    TransferSnapshot,
    TrustManifest,
)
from modutil.services import Fingerprinter, ManifestStore

if TYPE_CHECKING:
    from pathlib import Path


class _FakeHandle:
    def __init__(
        self, url: str, destination: str, payload: bytes, error: Optional[TransferError]
    ) -> None:
        self.url = url
        self.destination = destination
        self.payload = payload
        self.error = error
        self.is_complete = False

    def finish(self) -> None:
        if self.is_complete:
            return
        if self.error is None:
            os.makedirs(os.path.dirname(self.destination), exist_ok=True)
            with open(self.destination, "wb") as f:
                f.write(self.payload)
        self.is_complete = True

    def snapshot(self) -> TransferSnapshot:
        done = self.is_complete and self.error is None
        return TransferSnapshot(
            url=self.url,
            destination=self.destination,
            bytes_transferred=len(self.payload) if done else 0,
            total_bytes=len(self.payload),
            is_complete=self.is_complete,
            error=self.error if self.is_complete else None,
        )

    async def wait(self) -> TransferSnapshot:
        self.finish()
        return self.snapshot()


class _FakeTracker:
    """Completes a transfer on the first poll unless told to hold it."""

    def __init__(self, payload: bytes = b"", auto_complete: bool = True) -> None:
        self.payload = payload
        self.auto_complete = auto_complete
        self.error: Optional[TransferError] = None
        self.calls: list[tuple[str, str, Optional[str]]] = []
        self.active: Optional[_FakeHandle] = None

    @property
    def busy(self) -> bool:
        return self.active is not None and not self.active.is_complete

    def start_transfer(
        self, url: str, destination: str, expected_sha1: Optional[str] = None
    ) -> _FakeHandle:
        if self.busy:
            raise TransferBusy("busy")
        self.calls.append((url, destination, expected_sha1))
        self.active = _FakeHandle(url, destination, self.payload, self.error)
        return self.active

    def poll(self, handle: Optional[_FakeHandle] = None) -> Optional[TransferSnapshot]:
        handle = handle or self.active
        if handle is None:
            return None
        if self.auto_complete:
            handle.finish()
        return handle.snapshot()

    async def close(self) -> None:
        return None


class _FakeStore(ManifestStore):
    def __init__(self, config: ModUtilConfig, manifest: Optional[TrustManifest]) -> None:
        super().__init__(config)
        self.remote = manifest
        self.fetches = 0
        self.saves = 0

    async def fetch_remote_manifest(self) -> TrustManifest:
        self.fetches += 1
        if self.remote is None:
            raise ManifestUnavailable("offline")
        return self.remote

    def save_install_state(self, state: InstallState) -> None:
        self.saves += 1
        super().save_install_state(state)


def _build(
    config: ModUtilConfig,
    payload: bytes,
    manifest: Optional[TrustManifest] = None,
    state: Optional[InstallState] = None,
    auto_complete: bool = True,
) -> tuple[SyncController, _FakeStore, _FakeTracker]:
    if manifest is None:
        manifest = TrustManifest(server="http://packs.example.com/")
    store = _FakeStore(config, manifest)
    if state is not None:
        ManifestStore(config).save_install_state(state)
    tracker = _FakeTracker(payload, auto_complete=auto_complete)
    controller = SyncController(config, store=store, tracker=tracker)  # type: ignore[arg-type]
    return controller, store, tracker


@pytest.fixture
def base_zip(zip_bytes: Any) -> bytes:
    return zip_bytes({"Mods/base.txt": b"base content", "Localization.txt": b"hi"})


class TestBaseFlow:
    @pytest.mark.asyncio
    async def test_download_then_install_sets_version_one(
        self, config: ModUtilConfig, game_dir: Path, base_zip: bytes
    ) -> None:
        controller, store, tracker = _build(
            config, base_zip, state=InstallState(str(game_dir), 0)
        )
        async with controller:
            snapshot = await controller.download_base()
            assert snapshot is not None
            assert controller.phase is SyncPhase.FETCHING_BASE

            await controller.wait_for_transfer(interval=0)
            assert controller.phase is SyncPhase.IDLE

            assert await controller.install_base()

        assert tracker.calls[0][0] == "http://packs.example.com/hdn/hdn_BASE.zip"
        assert controller.get_install_state().version == 1
        assert ManifestStore(config).load_install_state() == InstallState(
            str(game_dir), 1
        )
        assert (game_dir / "Mods" / "base.txt").read_bytes() == b"base content"

    @pytest.mark.asyncio
    async def test_repeated_calls_are_no_ops(
        self, config: ModUtilConfig, game_dir: Path, base_zip: bytes
    ) -> None:
        controller, store, tracker = _build(
            config, base_zip, state=InstallState(str(game_dir), 0)
        )
        async with controller:
            await controller.download_base()
            await controller.wait_for_transfer(interval=0)
            await controller.install_base()
            saves = store.saves

            assert await controller.download_base() is None
            assert not await controller.install_base()

        assert len(tracker.calls) == 1
        assert store.saves == saves
        assert controller.get_install_state().version == 1

    @pytest.mark.asyncio
    async def test_existing_archive_skips_network(
        self, config: ModUtilConfig, base_zip: bytes
    ) -> None:
        os.makedirs(config.paths.download_dir)
        archive = os.path.join(config.paths.download_dir, "hdn_BASE.zip")
        with open(archive, "wb") as f:
            f.write(base_zip)

        controller, _store, tracker = _build(config, b"unused")
        async with controller:
            snapshot = await controller.download_base()

        assert snapshot is not None
        assert snapshot.succeeded
        assert snapshot.bytes_transferred == len(base_zip)
        assert tracker.calls == []
        assert controller.phase is SyncPhase.IDLE
        assert controller.get_transfer_snapshot() is snapshot

    @pytest.mark.asyncio
    async def test_existing_archive_with_bad_digest_is_refetched(
        self, config: ModUtilConfig, base_zip: bytes
    ) -> None:
        os.makedirs(config.paths.download_dir)
        archive = os.path.join(config.paths.download_dir, "hdn_BASE.zip")
        with open(archive, "wb") as f:
            f.write(b"corrupted")
        digest = hashlib.sha1(base_zip).hexdigest()
        manifest = TrustManifest(
            server="http://packs.example.com/", packages={"hdn_BASE.zip": digest}
        )

        controller, _store, tracker = _build(config, base_zip, manifest=manifest)
        async with controller:
            await controller.download_base()
            await controller.wait_for_transfer(interval=0)

        assert len(tracker.calls) == 1
        assert tracker.calls[0][2] == digest
        with open(archive, "rb") as f:
            assert f.read() == base_zip

    @pytest.mark.asyncio
    async def test_transfer_error_leaves_state_untouched(
        self, config: ModUtilConfig, game_dir: Path, base_zip: bytes
    ) -> None:
        controller, store, tracker = _build(
            config, base_zip, state=InstallState(str(game_dir), 0)
        )
        tracker.error = TransferError("HTTP 500")
        async with controller:
            await controller.download_base()
            saves = store.saves
            with pytest.raises(TransferError):
                await controller.wait_for_transfer(interval=0)

        assert controller.phase is SyncPhase.FAILED
        assert isinstance(controller.last_error, TransferError)
        assert controller.get_install_state().version == 0
        assert store.saves == saves
        assert ManifestStore(config).load_install_state().version == 0

    @pytest.mark.asyncio
    async def test_retry_after_failure_reenters_idle(
        self, config: ModUtilConfig, game_dir: Path, base_zip: bytes
    ) -> None:
        controller, _store, tracker = _build(
            config, base_zip, state=InstallState(str(game_dir), 0)
        )
        tracker.error = TransferError("HTTP 500")
        async with controller:
            await controller.download_base()
            with pytest.raises(TransferError):
                await controller.wait_for_transfer(interval=0)

            tracker.error = None
            await controller.download_base()
            assert controller.last_error is None
            assert controller.phase is SyncPhase.FETCHING_BASE
            await controller.wait_for_transfer(interval=0)

        assert controller.phase is SyncPhase.IDLE
        assert len(tracker.calls) == 2

    @pytest.mark.asyncio
    async def test_install_without_archive_fails(
        self, config: ModUtilConfig, game_dir: Path
    ) -> None:
        controller, _store, _tracker = _build(
            config, b"", state=InstallState(str(game_dir), 0)
        )
        async with controller:
            with pytest.raises(InstallError):
                await controller.install_base()

        assert controller.phase is SyncPhase.FAILED
        assert controller.get_install_state().version == 0

    @pytest.mark.asyncio
    async def test_corrupt_archive_fails_install(
        self, config: ModUtilConfig, game_dir: Path
    ) -> None:
        controller, _store, _tracker = _build(
            config, b"not a zip", state=InstallState(str(game_dir), 0)
        )
        async with controller:
            await controller.download_base()
            await controller.wait_for_transfer(interval=0)
            with pytest.raises(InstallError):
                await controller.install_base()

        assert ManifestStore(config).load_install_state().version == 0

    @pytest.mark.asyncio
    async def test_install_checks_listed_package_digest(
        self, config: ModUtilConfig, game_dir: Path, base_zip: bytes
    ) -> None:
        os.makedirs(config.paths.download_dir)
        with open(os.path.join(config.paths.download_dir, "hdn_BASE.zip"), "wb") as f:
            f.write(base_zip)
        manifest = TrustManifest(
            server="http://packs.example.com/", packages={"hdn_BASE.zip": "0" * 40}
        )

        controller, _store, _tracker = _build(
            config, base_zip, manifest=manifest, state=InstallState(str(game_dir), 0)
        )
        async with controller:
            with pytest.raises(DownloadChecksumError):
                await controller.install_base()

        assert controller.get_install_state().version == 0

    @pytest.mark.asyncio
    async def test_install_requires_install_dir(
        self, config: ModUtilConfig, base_zip: bytes
    ) -> None:
        controller, _store, _tracker = _build(config, base_zip)
        async with controller:
            with pytest.raises(InstallDirUnset):
                await controller.install_base()

        assert controller.phase is SyncPhase.IDLE

    @pytest.mark.asyncio
    async def test_actions_rejected_while_transfer_in_flight(
        self, config: ModUtilConfig, game_dir: Path, base_zip: bytes
    ) -> None:
        controller, _store, tracker = _build(
            config,
            base_zip,
            state=InstallState(str(game_dir), 0),
            auto_complete=False,
        )
        async with controller:
            await controller.download_base()
            with pytest.raises(TransferBusy):
                await controller.install_base()
            with pytest.raises(TransferBusy):
                await controller.download_base()
            assert controller.phase is SyncPhase.FETCHING_BASE

            tracker.active.finish()
            assert await controller.install_base()

        assert controller.get_install_state().version == 1

    @pytest.mark.asyncio
    async def test_manifest_unavailable_fails(self, config: ModUtilConfig) -> None:
        store = _FakeStore(config, None)
        controller = SyncController(config, store=store, tracker=_FakeTracker())  # type: ignore[arg-type]
        async with controller:
            with pytest.raises(ManifestUnavailable):
                await controller.download_base()

        assert controller.phase is SyncPhase.FAILED


class TestUpdateFlow:
    @pytest.mark.asyncio
    async def test_updates_gated_on_base(self, config: ModUtilConfig, zip_bytes: Any) -> None:
        controller, _store, tracker = _build(config, zip_bytes({"u.txt": b"u"}))
        async with controller:
            assert await controller.download_update() is None
            assert not await controller.install_update()

        assert tracker.calls == []

    @pytest.mark.asyncio
    async def test_update_targets_next_version(
        self, config: ModUtilConfig, game_dir: Path, zip_bytes: Any
    ) -> None:
        manifest = TrustManifest(server="http://packs.example.com/", latest_version=3)
        controller, _store, tracker = _build(
            config,
            zip_bytes({"Mods/update.txt": b"v2"}),
            manifest=manifest,
            state=InstallState(str(game_dir), 1),
        )
        async with controller:
            await controller.download_update()
            assert controller.phase is SyncPhase.FETCHING_UPDATE
            await controller.wait_for_transfer(interval=0)
            assert await controller.install_update()

        assert tracker.calls[0][0] == "http://packs.example.com/hdn/hdn_UPDATE_2.zip"
        assert controller.get_install_state().version == 2
        assert ManifestStore(config).load_install_state().version == 2
        assert (game_dir / "Mods" / "update.txt").read_bytes() == b"v2"

    @pytest.mark.asyncio
    async def test_up_to_date_is_no_op(
        self, config: ModUtilConfig, game_dir: Path, zip_bytes: Any
    ) -> None:
        manifest = TrustManifest(server="http://packs.example.com/", latest_version=3)
        controller, _store, tracker = _build(
            config,
            zip_bytes({"u.txt": b"u"}),
            manifest=manifest,
            state=InstallState(str(game_dir), 3),
        )
        async with controller:
            assert await controller.download_update() is None
            assert not await controller.install_update()

        assert tracker.calls == []

    @pytest.mark.asyncio
    async def test_sync_applies_base_and_all_updates(
        self, config: ModUtilConfig, game_dir: Path, zip_bytes: Any
    ) -> None:
        manifest = TrustManifest(server="http://packs.example.com/", latest_version=3)
        controller, _store, tracker = _build(
            config,
            zip_bytes({"Mods/pack.txt": b"pack"}),
            manifest=manifest,
            state=InstallState(str(game_dir), 0),
        )
        async with controller:
            state = await controller.sync(interval=0)

        assert state.version == 3
        assert [os.path.basename(call[1]) for call in tracker.calls] == [
            "hdn_BASE.zip",
            "hdn_UPDATE_2.zip",
            "hdn_UPDATE_3.zip",
        ]
        assert ManifestStore(config).load_install_state().version == 3


class TestIntegrityAndState:
    @pytest.mark.asyncio
    async def test_run_integrity_check(
        self, config: ModUtilConfig, game_dir: Path
    ) -> None:
        manifest = TrustManifest(
            server="",
            entries=(
                ManifestEntry("Mods", Fingerprinter.fingerprint(str(game_dir / "Mods"))),
                ManifestEntry("Missing.txt", "0" * 40),
            ),
        )
        controller, _store, _tracker = _build(
            config, b"", manifest=manifest, state=InstallState(str(game_dir), 1)
        )
        async with controller:
            report = await controller.run_integrity_check()

        assert not report.passed
        assert report.result_for("Mods").passed
        assert not report.result_for("Missing.txt").passed

    @pytest.mark.asyncio
    async def test_integrity_check_requires_install_dir(
        self, config: ModUtilConfig
    ) -> None:
        controller, store, _tracker = _build(config, b"")
        async with controller:
            with pytest.raises(InstallDirUnset):
                await controller.run_integrity_check()

        assert store.fetches == 0

    @pytest.mark.asyncio
    async def test_set_dir_and_save(self, config: ModUtilConfig, game_dir: Path) -> None:
        controller, _store, _tracker = _build(config, b"")
        async with controller:
            controller.set_install_dir(str(game_dir))
            assert ManifestStore(config).load_install_state().install_dir == ""
            controller.save_config()

        assert ManifestStore(config).load_install_state().install_dir == str(game_dir)

    @pytest.mark.asyncio
    async def test_status_lines_are_bounded(
        self, config: ModUtilConfig, tmp_path: Path
    ) -> None:
        controller, _store, _tracker = _build(config, b"")
        async with controller:
            controller.set_install_dir(str(tmp_path / "missing"))
            lines = controller.status_lines()
            assert lines[-2].startswith("[WARNING] ")
            assert lines[-1] == "[INFO] 安装目录已设置，别忘了保存！"

            for _ in range(10):
                controller.set_install_dir(str(tmp_path))

            assert len(controller.status_lines()) == config.status_lines
            assert controller.status.severity == "INFO"
