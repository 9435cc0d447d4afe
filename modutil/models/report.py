"""
完整性检查结果
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class TargetResult:
    """单个目标的检查结果"""

    target: str
    expected: str
    actual: Optional[str]
    passed: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class IntegrityReport:
    """一次完整性检查的全部结果，不做持久化"""

    results: List[TargetResult]

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failed(self) -> List[TargetResult]:
        return [result for result in self.results if not result.passed]

    def result_for(self, target: str) -> Optional[TargetResult]:
        for result in self.results:
            if result.target == target:
                return result
        return None
