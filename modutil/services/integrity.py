"""
完整性检查服务

把安装目录中各目标的当前指纹与信任清单中的预期值逐一比较。
"""

import os
from typing import List

from loguru import logger

from modutil.exceptions import FingerprintError, InstallDirUnset
from modutil.models import IntegrityReport, TargetResult, TrustManifest
from modutil.services.fingerprint import Fingerprinter


class IntegrityChecker:
    """完整性检查器"""

    def __init__(self, fingerprinter: type = Fingerprinter):
        self.fingerprinter = fingerprinter

    @staticmethod
    def resolve(install_dir: str, target: str) -> str:
        """
        把清单中的目标解析为安装目录下的路径

        Raises:
            ValueError: 目标指向安装目录之外
        """
        root = os.path.abspath(install_dir)
        parts = [part for part in target.replace("\\", "/").split("/") if part]
        path = os.path.abspath(os.path.join(root, *parts))
        if os.path.commonpath([root, path]) != root:
            raise ValueError(f"目标超出安装目录: {target}")
        return path

    def check(self, install_dir: str, manifest: TrustManifest) -> IntegrityReport:
        """
        检查所有目标

        某个目标缺失或无法读取时只记为失败，其余目标照常检查。

        Raises:
            InstallDirUnset: 未设置安装目录
        """
        if not install_dir:
            raise InstallDirUnset("未设置安装目录")

        results: List[TargetResult] = []
        for entry in manifest.entries:
            try:
                path = self.resolve(install_dir, entry.target)
                actual = self.fingerprinter.fingerprint(path)
            except (FingerprintError, ValueError) as e:
                logger.warning(f"[校验] {entry.target}: {e}")
                results.append(
                    TargetResult(
                        target=entry.target,
                        expected=entry.digest,
                        actual=None,
                        passed=False,
                        error=str(e),
                    )
                )
                continue

            passed = actual.lower() == entry.digest.lower()
            logger.debug(
                f"[校验] {entry.target}: 预期 {entry.digest}, 实际 {actual}"
            )
            results.append(
                TargetResult(
                    target=entry.target,
                    expected=entry.digest,
                    actual=actual,
                    passed=passed,
                )
            )

        report = IntegrityReport(results)
        for result in report.results:
            logger.info(f"[校验] {result.target}: {'通过' if result.passed else '失败'}")
        return report
