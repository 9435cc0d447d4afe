"""
下载状态快照
"""

from dataclasses import dataclass
from typing import Optional

from modutil.exceptions import TransferError


@dataclass(frozen=True)
class TransferSnapshot:
    """某一时刻的下载状态，poll() 的返回值"""

    url: str
    destination: str
    bytes_transferred: int = 0
    total_bytes: Optional[int] = None
    rate: float = 0.0
    is_complete: bool = False
    error: Optional[TransferError] = None

    @property
    def progress(self) -> Optional[float]:
        """0.0 ~ 1.0；总大小未知时返回 None"""
        if self.is_complete and self.error is None:
            return 1.0
        if not self.total_bytes:
            return None
        return min(self.bytes_transferred / self.total_bytes, 1.0)

    @property
    def succeeded(self) -> bool:
        return self.is_complete and self.error is None

    @property
    def in_flight(self) -> bool:
        return not self.is_complete

    def describe(self) -> str:
        if self.total_bytes:
            percent = 100 * (self.progress or 0.0)
            return (
                f"已下载 {self.bytes_transferred} / {self.total_bytes} 字节 "
                f"({percent:.2f}%)"
            )
        return f"已下载 {self.bytes_transferred} 字节"
