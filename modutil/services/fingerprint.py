"""
内容指纹

计算单个文件或整个目录树的 SHA-1 指纹。
"""

import hashlib
import os
import stat
from typing import List, Optional

from modutil.exceptions import FingerprintError, NotFound, ReadError, StatError
from modutil.models import normalize_digest

CHUNK_SIZE = 64 * 1024


class Fingerprinter:
    """内容指纹计算器"""

    @staticmethod
    def fingerprint_file(path: str) -> str:
        """
        流式计算文件的 SHA-1，不会把整个文件读入内存

        Raises:
            NotFound: 文件不存在
            ReadError: 文件无法读取
        """
        sha1 = hashlib.sha1()
        try:
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                    sha1.update(chunk)
        except FileNotFoundError as e:
            raise NotFound(f"文件不存在: {path}", context={"path": path}) from e
        except OSError as e:
            raise ReadError(
                f"无法读取文件: {path}", context={"path": path, "error": str(e)}
            ) from e
        return sha1.hexdigest()

    @staticmethod
    def list_files(root: str) -> List[str]:
        """
        递归列出目录下所有文件的相对路径（统一使用 /），按字典序排序

        排序保证聚合指纹与平台和文件系统的遍历顺序无关。
        """

        def _on_error(err: OSError):
            raise ReadError(
                f"无法遍历目录: {err.filename}",
                context={"path": err.filename, "error": str(err)},
            ) from err

        files = []
        for dirpath, _dirnames, filenames in os.walk(root, onerror=_on_error):
            for name in filenames:
                rel = os.path.relpath(os.path.join(dirpath, name), root)
                files.append(rel.replace(os.sep, "/"))
        files.sort()
        return files

    @classmethod
    def fingerprint_directory(cls, path: str) -> str:
        """
        计算目录树的聚合指纹

        每个文件依次向聚合摘要写入 "相对路径\\0文件SHA-1\\n"。
        增删文件、重命名或修改内容都会改变结果；空目录不参与计算。

        Raises:
            NotFound: 目录不存在
            StatError: 路径不是目录
            ReadError: 任一成员文件无法读取（整体失败）
        """
        if not os.path.exists(path):
            raise NotFound(f"目录不存在: {path}", context={"path": path})
        if not os.path.isdir(path):
            raise StatError(f"不是目录: {path}", context={"path": path})

        aggregate = hashlib.sha1()
        for rel in cls.list_files(path):
            member = os.path.join(path, *rel.split("/"))
            try:
                digest = cls.fingerprint_file(member)
            except FingerprintError as e:
                raise ReadError(
                    f"无法读取目录成员: {rel}",
                    context={"path": member, "error": e.message},
                ) from e
            aggregate.update(os.fsencode(rel))
            aggregate.update(b"\0")
            aggregate.update(digest.encode("ascii"))
            aggregate.update(b"\n")
        return aggregate.hexdigest()

    @classmethod
    def fingerprint(cls, path: str) -> str:
        """
        根据路径类型计算文件或目录指纹

        Raises:
            NotFound: 路径不存在
            StatError: 无法判断路径类型（例如检查途中被删除）
            ReadError: 内容无法读取
        """
        try:
            mode = os.stat(path).st_mode
        except FileNotFoundError as e:
            raise NotFound(f"目标不存在: {path}", context={"path": path}) from e
        except OSError as e:
            raise StatError(
                f"无法获取目标信息: {path}", context={"path": path, "error": str(e)}
            ) from e

        if stat.S_ISDIR(mode):
            return cls.fingerprint_directory(path)
        if stat.S_ISREG(mode):
            return cls.fingerprint_file(path)
        raise StatError(f"既不是文件也不是目录: {path}", context={"path": path})

    @classmethod
    def matches(cls, path: str, expected: Optional[str]) -> bool:
        """
        校验文件的 SHA-1 是否匹配

        Returns:
            是否匹配（如果没有预期值则返回 True，文件缺失或不可读返回 False）
        """
        if not expected:
            return True
        try:
            current = cls.fingerprint_file(path)
        except FingerprintError:
            return False
        return current == normalize_digest(expected)
