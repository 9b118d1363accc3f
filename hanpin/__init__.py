"""
HanPin - 汉字转拼音引擎

分层字典 + 多音字规则 + 自学习，支持带调 / 无调输出和 URL slug
"""

__version__ = "0.1.0"

from hanpin.engine import (
    PinyinConverter,
    create_converter,
    ConverterConfig,
    Tier,
    ToneVariant,
    Resolver,
    Resolution,
    Context,
    PolyphoneRuleSet,
    HanpinError,
)

__all__ = [
    "__version__",
    # 转换器
    "PinyinConverter",
    "create_converter",
    "ConverterConfig",
    # 字典
    "Tier",
    "ToneVariant",
    # 解析
    "Resolver",
    "Resolution",
    "Context",
    "PolyphoneRuleSet",
    # 异常
    "HanpinError",
]
