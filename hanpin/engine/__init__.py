from .config import ConverterConfig, MergeConfig, DemotionConfig, CacheConfig, SpecialCharConfig
from .core import PinyinConverter
from .dictionary import Tier, ToneVariant, TierEntry, TierStore
from .errors import (
    HanpinError,
    LookupMiss,
    InvalidRule,
    InconsistentTierState,
    PersistenceFailure,
    ConfigError,
)
from .frequency import FrequencyLedger
from .learning import FeedbackLoop, MergeReport, NotFoundResolver
from .polyphone import Context, PolyphoneRule, PolyphoneRuleSet
from .resolver import Resolution, Resolver
from .cache import LRUCache, make_cache_key
from .logging import setup_logging, configure_logging, get_logger, get_api_logger, get_engine_logger


def create_converter(config: ConverterConfig = None, data_dir: str = None) -> PinyinConverter:
    """
    创建转换器

    Args:
        config: 转换器配置（默认读取 HANPIN_* 环境变量）
        data_dir: 字典目录（可选，覆盖配置中的 data_dir）

    Returns:
        PinyinConverter 实例
    """
    config = config or ConverterConfig.from_env()
    if data_dir:
        config.data_dir = data_dir
    return PinyinConverter(config)


__all__ = [
    # 转换器
    'PinyinConverter',
    'create_converter',
    'ConverterConfig',
    'MergeConfig',
    'DemotionConfig',
    'CacheConfig',
    'SpecialCharConfig',
    # 字典
    'Tier',
    'ToneVariant',
    'TierEntry',
    'TierStore',
    'FrequencyLedger',
    # 解析与消歧
    'Resolver',
    'Resolution',
    'Context',
    'PolyphoneRule',
    'PolyphoneRuleSet',
    # 自学习
    'FeedbackLoop',
    'MergeReport',
    'NotFoundResolver',
    # 缓存
    'LRUCache',
    'make_cache_key',
    # 异常
    'HanpinError',
    'LookupMiss',
    'InvalidRule',
    'InconsistentTierState',
    'PersistenceFailure',
    'ConfigError',
    # 日志
    'setup_logging',
    'configure_logging',
    'get_logger',
    'get_api_logger',
    'get_engine_logger',
]
