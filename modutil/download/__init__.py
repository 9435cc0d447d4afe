"""
ModUtil 下载层

包含单槽位下载跟踪器。
"""

from modutil.download.tracker import TransferHandle, TransferTracker

__all__ = [
    "TransferHandle",
    "TransferTracker",
]
