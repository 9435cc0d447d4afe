"""
下载跟踪器

在后台任务中下载单个文件，前台通过 poll() 非阻塞地读取进度。
同一时间只允许一个下载处于进行中。
"""

import asyncio
import hashlib
import os
import time
from collections import deque
from typing import Optional

import aiofiles
import aiohttp
from loguru import logger

from modutil.exceptions import DownloadChecksumError, TransferBusy, TransferError
from modutil.models import TransferSnapshot

RATE_WINDOW = 5.0


class TransferHandle:
    """一个下载的实时状态，由后台任务写入"""

    def __init__(
        self, url: str, destination: str, expected_sha1: Optional[str] = None
    ):
        self.url = url
        self.destination = destination
        self.expected_sha1 = expected_sha1.lower() if expected_sha1 else None
        self.total_bytes: Optional[int] = None
        self.bytes_transferred = 0
        self.is_complete = False
        self.error: Optional[TransferError] = None
        self.started_at = time.monotonic()
        # (时间, 累计字节数)；保留窗口前的一个样本作为基准
        self._samples: deque = deque([(self.started_at, 0)])
        self._task: Optional[asyncio.Task] = None

    def record(self, size: int, now: Optional[float] = None) -> None:
        now = time.monotonic() if now is None else now
        self.bytes_transferred += size
        self._samples.append((now, self.bytes_transferred))
        while len(self._samples) > 2 and self._samples[1][0] < now - RATE_WINDOW:
            self._samples.popleft()

    def rate(self, now: Optional[float] = None) -> float:
        """最近一段时间内的平均速度（字节/秒），停滞超过窗口后为 0"""
        if self.is_complete:
            return 0.0
        now = time.monotonic() if now is None else now
        last_time, last_bytes = self._samples[-1]
        if last_time < now - RATE_WINDOW:
            return 0.0
        first_time, first_bytes = self._samples[0]
        elapsed = now - first_time
        if elapsed <= 0:
            return 0.0
        return (last_bytes - first_bytes) / elapsed

    def snapshot(self) -> TransferSnapshot:
        return TransferSnapshot(
            url=self.url,
            destination=self.destination,
            bytes_transferred=self.bytes_transferred,
            total_bytes=self.total_bytes,
            rate=self.rate(),
            is_complete=self.is_complete,
            error=self.error,
        )

    async def wait(self) -> TransferSnapshot:
        """等待后台任务结束"""
        if self._task is not None:
            await self._task
        return self.snapshot()


class TransferTracker:
    """单槽位下载器"""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        chunk_size: int = 8192,
    ):
        self._session = session
        self._owned_session = session is None
        self.chunk_size = chunk_size
        self._active: Optional[TransferHandle] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    @property
    def active(self) -> Optional[TransferHandle]:
        return self._active

    @property
    def busy(self) -> bool:
        return self._active is not None and not self._active.is_complete

    def start_transfer(
        self, url: str, destination: str, expected_sha1: Optional[str] = None
    ) -> TransferHandle:
        """
        开始下载并立即返回

        给出 expected_sha1 时，下载完成后校验内容，不匹配则视为失败。

        必须在运行中的事件循环内调用。

        Raises:
            TransferBusy: 上一个下载尚未结束
        """
        if self.busy:
            raise TransferBusy(
                "已有下载正在进行",
                context={"url": self._active.url if self._active else url},
            )

        handle = TransferHandle(url, destination, expected_sha1)
        handle._task = asyncio.get_running_loop().create_task(
            self._run(handle), name=f"transfer-{os.path.basename(destination)}"
        )
        self._active = handle
        logger.info(f"[下载] 正在下载 {url}...")
        return handle

    def poll(self, handle: Optional[TransferHandle] = None) -> Optional[TransferSnapshot]:
        """读取下载状态，不阻塞；没有下载时返回 None"""
        handle = handle or self._active
        if handle is None:
            return None
        return handle.snapshot()

    async def _run(self, handle: TransferHandle) -> None:
        part_path = handle.destination + ".part"
        try:
            directory = os.path.dirname(os.path.abspath(handle.destination))
            os.makedirs(directory, exist_ok=True)

            async with self.session.get(handle.url) as response:
                logger.debug(f"[下载] {response.status} {response.reason}")
                if response.status != 200:
                    raise TransferError(
                        f"HTTP {response.status}",
                        context={"url": handle.url, "status": response.status},
                    )

                handle.total_bytes = response.content_length
                if handle.total_bytes:
                    logger.debug(
                        f"[信息] 文件大小: {handle.total_bytes / (1024 * 1024):.2f} MB"
                    )
                compressed = "Content-Encoding" in response.headers
                sha1 = hashlib.sha1()

                async with aiofiles.open(part_path, "wb") as f:
                    async for chunk in response.content.iter_chunked(self.chunk_size):
                        await f.write(chunk)
                        sha1.update(chunk)
                        handle.record(len(chunk))

            if (
                handle.total_bytes is not None
                and not compressed
                and handle.bytes_transferred != handle.total_bytes
            ):
                raise TransferError(
                    f"下载不完整: {handle.bytes_transferred} / {handle.total_bytes} 字节",
                    context={"url": handle.url},
                )

            if handle.expected_sha1 and sha1.hexdigest() != handle.expected_sha1:
                raise DownloadChecksumError(
                    f"SHA1 校验失败: {os.path.basename(handle.destination)}",
                    context={"url": handle.url, "expected": handle.expected_sha1},
                )

            os.replace(part_path, handle.destination)
            logger.debug(f"[完成] '{os.path.basename(handle.destination)}' 下载完成")

        except TransferError as e:
            handle.error = e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            handle.error = TransferError(
                f"下载失败: {e}", context={"url": handle.url, "error": str(e)}
            )
        except asyncio.CancelledError:
            handle.error = TransferError("下载被中断", context={"url": handle.url})
            raise
        except Exception as e:
            logger.exception(f"[下载] 未预期的错误: {handle.url}")
            handle.error = TransferError(
                f"下载失败: {e}", context={"url": handle.url, "error": repr(e)}
            )
        finally:
            if handle.error is not None:
                # 清理不完整的文件
                if os.path.exists(part_path):
                    try:
                        os.remove(part_path)
                    except OSError as e:
                        logger.warning(f"[清理] 无法删除不完整的文件 {part_path}: {e}")
            handle.is_complete = True

    async def close(self):
        """关闭 session；进行中的下载不会被取消"""
        if self._active is not None and self.busy:
            await self._active.wait()
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()
