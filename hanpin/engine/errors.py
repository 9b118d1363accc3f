"""
异常定义

LookupMiss 只在引擎内部使用，表示某一层字典未命中，永远不会抛给调用方。
"""

from typing import Iterable, Optional


class HanpinError(Exception):
    """HanPin 基础异常"""


class LookupMiss(HanpinError):
    """字典层未命中（正常流程，转入下一层）"""

    def __init__(self, char: str, tier: Optional[str] = None):
        self.char = char
        self.tier = tier
        super().__init__(f"{char!r} 不在 {tier or '任何'} 字典中")


class InvalidRule(HanpinError):
    """多音字规则不合法（注册时拒绝）"""

    def __init__(self, char: str, rule, reason: str):
        self.char = char
        self.rule = rule
        self.reason = reason
        super().__init__(f"多音字规则无效 [{char}] {rule!r}: {reason}")


class InconsistentTierState(HanpinError):
    """同一个字同时存在于多个字典层（非迁移中的临时状态）"""

    def __init__(self, conflicts: Iterable[tuple]):
        self.conflicts = list(conflicts)
        preview = ", ".join(f"{k}@{'/'.join(t)}" for k, t in self.conflicts[:5])
        super().__init__(f"字典层状态不一致: {preview}")


class PersistenceFailure(HanpinError):
    """持久化失败（来自外部存储协作方）"""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        msg = f"持久化失败: {operation}"
        if cause is not None:
            msg += f" ({type(cause).__name__}: {cause})"
        super().__init__(msg)


class ConfigError(HanpinError):
    """配置错误"""
