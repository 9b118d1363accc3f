"""
引擎配置

所有配置项均为 dataclass，可从字典 / JSON 文件构建，并支持 HANPIN_* 环境变量覆盖。
"""

import os
from dataclasses import MISSING, asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Dict, Optional, Union

import orjson

from .errors import ConfigError
from .logging import LOG_FORMATS, parse_level


SPECIAL_CHAR_MODES = ('keep', 'delete', 'replace')

DEFAULT_SPECIAL_CHAR_MAP = {
    '，': ',', '。': '.', '！': '!', '？': '?',
    '（': '(', '）': ')', '【': '[', '】': ']',
    '、': ',', '；': ';', '：': ':',
}


@dataclass
class MergeConfig:
    """自学习字典合并配置"""
    threshold: int = 1000          # 自学习字数达到该值才触发批量合并
    immediate_threshold: int = 3   # 单字频次达到该值立即进入常用字典
    incremental: bool = True       # 增量合并：只合并超出阈值的部分
    max_per_merge: int = 500
    interval: float = 86400.0      # 同一声调类型两次合并的最小间隔（秒）
    backup_before_merge: bool = True


@dataclass
class DemotionConfig:
    """常用字降级配置"""
    enabled: bool = True
    ratio: float = 0.1             # 低于平均频次的比例
    floor: int = 2                 # 绝对频次下限
    max_per_run: int = 200
    interval: float = 3600.0
    load_threshold: float = 0.8    # 系统负载超过该值时跳过并退避
    max_backoff: int = 16


@dataclass
class CacheConfig:
    """转换结果缓存配置"""
    size: int = 1000
    ttl: Optional[float] = None


@dataclass
class SpecialCharConfig:
    """特殊字符处理配置"""
    default_mode: str = 'delete'
    custom_map: Dict[str, str] = field(default_factory=dict)
    delete_allow: str = r'a-zA-Z0-9_\-+.'

    @property
    def char_map(self) -> Dict[str, str]:
        return {**DEFAULT_SPECIAL_CHAR_MAP, **self.custom_map}


@dataclass
class ConverterConfig:
    """转换器主配置"""
    data_dir: Optional[str] = None             # 字典目录（None 表示纯内存）
    rules_path: Optional[str] = None           # 多音字规则文件（None 使用内置规则）
    use_pypinyin_extended: bool = True         # 扩展字典层由 pypinyin 提供
    self_learn: bool = True
    debug: bool = False                        # 调试模式下状态不一致直接报错
    save_retries: int = 1
    log_level: str = 'INFO'
    log_format: str = 'text'                   # text / json
    merge: MergeConfig = field(default_factory=MergeConfig)
    demotion: DemotionConfig = field(default_factory=DemotionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    special_char: SpecialCharConfig = field(default_factory=SpecialCharConfig)

    def __post_init__(self):
        if self.special_char.default_mode not in SPECIAL_CHAR_MODES:
            raise ConfigError(f"未知的特殊字符模式: {self.special_char.default_mode}")
        if self.cache.size < 1:
            raise ConfigError("缓存容量必须大于 0")
        if self.merge.immediate_threshold < 1:
            raise ConfigError("immediate_threshold 必须大于 0")
        try:
            parse_level(self.log_level)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"未知的日志格式: {self.log_format}")

    @classmethod
    def from_dict(cls, data: dict) -> 'ConverterConfig':
        """从（可嵌套的）字典构建配置，未知键报错"""
        return _build(cls, data or {})

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'ConverterConfig':
        path = Path(path)
        try:
            data = orjson.loads(path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            raise ConfigError(f"无法读取配置文件 {path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, base: Optional['ConverterConfig'] = None) -> 'ConverterConfig':
        """
        读取环境变量覆盖

        HANPIN_DATA_DIR / HANPIN_RULES_PATH / HANPIN_CACHE_SIZE /
        HANPIN_DEBUG / HANPIN_LOG_LEVEL / HANPIN_LOG_FORMAT / HANPIN_SELF_LEARN
        """
        data = base.to_dict() if base else {}
        env = os.environ
        if env.get('HANPIN_DATA_DIR'):
            data['data_dir'] = env['HANPIN_DATA_DIR']
        if env.get('HANPIN_RULES_PATH'):
            data['rules_path'] = env['HANPIN_RULES_PATH']
        if env.get('HANPIN_LOG_LEVEL'):
            data['log_level'] = env['HANPIN_LOG_LEVEL']
        if env.get('HANPIN_LOG_FORMAT'):
            data['log_format'] = env['HANPIN_LOG_FORMAT'].lower()
        if env.get('HANPIN_DEBUG'):
            data['debug'] = _truthy(env['HANPIN_DEBUG'])
        if env.get('HANPIN_SELF_LEARN'):
            data['self_learn'] = _truthy(env['HANPIN_SELF_LEARN'])
        if env.get('HANPIN_CACHE_SIZE'):
            try:
                size = int(env['HANPIN_CACHE_SIZE'])
            except ValueError as e:
                raise ConfigError(f"HANPIN_CACHE_SIZE 不是整数: {env['HANPIN_CACHE_SIZE']}") from e
            data.setdefault('cache', {})['size'] = size
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        return asdict(self)


def _truthy(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _build(cls, data: dict):
    if not isinstance(data, dict):
        raise ConfigError(f"{cls.__name__} 需要字典，得到 {type(data).__name__}")
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigError(f"{cls.__name__} 未知配置项: {', '.join(sorted(unknown))}")
    kwargs = {}
    for name, value in data.items():
        factory = known[name].default_factory
        if factory is not MISSING and is_dataclass(factory) and isinstance(value, dict):
            kwargs[name] = _build(factory, value)
        else:
            kwargs[name] = value
    return cls(**kwargs)

