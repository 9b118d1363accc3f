"""
分层字典模块

字典按层（custom / common / rare / extended / self_learned）和声调类型
（with_tone / no_tone）组织。每一层每种声调类型是一份只读快照，
迁移时在旁边构建新快照后整体替换，读取方无需加锁。
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .pinyin_utils import parse_pinyin_options, split_syllables, strip_tone


class Tier(str, Enum):
    """字典层"""
    CUSTOM = 'custom'
    COMMON = 'common'
    RARE = 'rare'
    EXTENDED = 'extended'
    SELF_LEARNED = 'self_learned'


class ToneVariant(str, Enum):
    """声调类型"""
    WITH_TONE = 'with_tone'
    NO_TONE = 'no_tone'

    @property
    def other(self) -> 'ToneVariant':
        return ToneVariant.NO_TONE if self is ToneVariant.WITH_TONE else ToneVariant.WITH_TONE

    @classmethod
    def of(cls, with_tone: bool) -> 'ToneVariant':
        return cls.WITH_TONE if with_tone else cls.NO_TONE


VARIANTS = (ToneVariant.WITH_TONE, ToneVariant.NO_TONE)

# 候选查找顺序（custom 由解析器单独处理）
LOOKUP_ORDER = (Tier.COMMON, Tier.RARE, Tier.SELF_LEARNED, Tier.EXTENDED)

# 参与迁移的层，同一字不能长期同时存在于 common 与 rare / self_learned
MIGRATABLE_TIERS = (Tier.COMMON, Tier.RARE, Tier.SELF_LEARNED)

# 持久化的层（extended 为外部权威来源，只读）
PERSISTED_TIERS = (Tier.CUSTOM, Tier.COMMON, Tier.RARE, Tier.SELF_LEARNED)

Pronunciations = Tuple[str, ...]
Snapshot = Mapping[str, Pronunciations]


@dataclass(frozen=True)
class TierEntry:
    """某字在一层中的两种声调形式（任一可能缺失）"""
    tier: Tier
    toned: Optional[Pronunciations] = None
    untoned: Optional[Pronunciations] = None

    def candidates(self, prefer_tone: bool = True) -> Pronunciations:
        if prefer_tone:
            return self.toned or self.untoned or ()
        return self.untoned or self.toned or ()

    @property
    def has_tone(self) -> bool:
        return bool(self.toned)


def normalize_entries(data: Optional[Mapping]) -> Dict[str, Pronunciations]:
    """
    规范化字典数据

    - 键去首尾空白，空键丢弃
    - 单字：值解析为去重的候选元组
    - 多字词：值为音节序列（不去重，如 哈哈 → hā hā）
    - 无有效拼音的条目直接丢弃（不保留空列表）
    """
    result: Dict[str, Pronunciations] = {}
    for key, value in (data or {}).items():
        if not isinstance(key, str) or not key.strip():
            continue
        key = key.strip()
        options = split_syllables(value) if len(key) > 1 else parse_pinyin_options(value)
        if options:
            result[key] = tuple(options)
    return result


def untoned_of(pronunciations: Iterable[str]) -> Pronunciations:
    """带调候选转无调候选（去重保序）"""
    result: List[str] = []
    for item in pronunciations:
        plain = strip_tone(item)
        if plain not in result:
            result.append(plain)
    return tuple(result)


class TierStore:
    """
    分层字典存储

    只有反馈循环（FeedbackLoop）通过 swap() 修改内容，解析器只读。
    """

    def __init__(self, data: Optional[Mapping] = None):
        snapshots: Dict[Tuple[Tier, ToneVariant], Snapshot] = {}
        for tier in Tier:
            for variant in VARIANTS:
                snapshots[(tier, variant)] = MappingProxyType({})
        for (tier, variant), mapping in (data or {}).items():
            snapshots[(Tier(tier), ToneVariant(variant))] = self._freeze(mapping)
        self._snapshots = snapshots
        self.generation = 0

    @staticmethod
    def _freeze(mapping: Mapping) -> Snapshot:
        # 外部数据（如 pypinyin 来源）已是只读 Mapping，直接使用
        if isinstance(mapping, (dict, MappingProxyType)):
            return MappingProxyType(normalize_entries(mapping))
        return mapping

    # ---------- 读取 ----------
    def snapshot(self, tier: Tier, variant: ToneVariant) -> Snapshot:
        return self._snapshots[(tier, variant)]

    def get(self, tier: Tier, variant: ToneVariant, key: str) -> Optional[Pronunciations]:
        return self._snapshots[(tier, variant)].get(key)

    def entry(self, tier: Tier, key: str) -> Optional[TierEntry]:
        """返回某字在一层中的两种声调形式；两种都缺失时返回 None"""
        snaps = self._snapshots
        toned = snaps[(tier, ToneVariant.WITH_TONE)].get(key)
        untoned = snaps[(tier, ToneVariant.NO_TONE)].get(key)
        if not toned and not untoned:
            return None
        return TierEntry(tier, toned or None, untoned or None)

    def contains(self, tier: Tier, key: str, variant: Optional[ToneVariant] = None) -> bool:
        variants = (variant,) if variant else VARIANTS
        return any(key in self._snapshots[(tier, v)] for v in variants)

    def tiers_of(self, key: str, tiers: Iterable[Tier] = MIGRATABLE_TIERS) -> List[Tier]:
        return [t for t in tiers if self.contains(t, key)]

    def keys(self, tier: Tier, variant: Optional[ToneVariant] = None) -> List[str]:
        """某层所有键（未指定声调类型时取并集，保持顺序）"""
        variants = (variant,) if variant else VARIANTS
        seen = {}
        for v in variants:
            for key in self._snapshots[(tier, v)]:
                seen.setdefault(key, None)
        return list(seen)

    def size(self, tier: Tier, variant: ToneVariant) -> int:
        return len(self._snapshots[(tier, variant)])

    def sizes(self) -> Dict[str, Dict[str, int]]:
        return {
            tier.value: {v.value: self.size(tier, v) for v in VARIANTS}
            for tier in Tier
        }

    def custom_words(self, variant: ToneVariant) -> List[Tuple[str, Pronunciations]]:
        """多字自定义词语（按长度降序）"""
        words = [(k, v) for k, v in self._snapshots[(Tier.CUSTOM, variant)].items() if len(k) > 1]
        words.sort(key=lambda item: len(item[0]), reverse=True)
        return words

    # ---------- 写入（仅供 FeedbackLoop 使用） ----------
    def mutable_copy(self, tier: Tier, variant: ToneVariant) -> Dict[str, Pronunciations]:
        return dict(self._snapshots[(tier, variant)])

    def swap(self, updates: Mapping[Tuple[Tier, ToneVariant], Mapping[str, Pronunciations]]):
        """原子替换若干快照"""
        if not updates:
            return
        snapshots = dict(self._snapshots)
        for (tier, variant), mapping in updates.items():
            snapshots[(tier, variant)] = MappingProxyType(dict(mapping))
        self._snapshots = snapshots
        self.generation += 1
