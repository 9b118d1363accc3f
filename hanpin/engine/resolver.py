"""
单字读音解析

查找顺序（命中即返回）：
    1. ASCII 字母数字及 _-+. 原样返回
    2. 本次调用的临时映射 temp_map
    3. 自定义字典（取第一个候选，不做消歧）
    4. common → rare → self_learned → extended → 内置兜底表，
       候选不少于两个时交给多音字规则
    5. 都没有：返回字符本身并记录到未找到列表
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from .dictionary import LOOKUP_ORDER, Pronunciations, Tier, TierEntry, TierStore
from .errors import LookupMiss
from .frequency import FrequencyLedger
from .logging import get_engine_logger
from .pinyin_utils import is_han, is_passthrough, strip_tone
from .polyphone import Context, PolyphoneRuleSet

logger = get_engine_logger()


# 内置兜底读音（所有字典都缺失时使用）
FALLBACK_MAP = {
    '开': 'kāi', '发': 'fā', '云': 'yún', '南': 'nán', '系': 'xì',
    '务': 'wù', '技': 'jì', '术': 'shù', '栈': 'zhàn', '含': 'hán',
    '源': 'yuán', '码': 'mǎ', '部': 'bù', '署': 'shǔ', '文': 'wén',
    '档': 'dàng', '企': 'qǐ', '业': 'yè', '级': 'jí', '客': 'kè',
    '户': 'hù', '服': 'fú', '软': 'ruǎn', '件': 'jiàn', '统': 'tǒng',
}


@dataclass(frozen=True)
class Resolution:
    """单字解析结果"""
    char: str
    pronunciation: str
    candidates: Tuple[str, ...] = ()
    source: str = 'unresolved'
    resolved: bool = False
    tier: Optional[Tier] = None


class Resolver:
    """
    单字解析器

    只读取 TierStore 的当前快照；字频更新和自学习通过 feedback 回调完成。
    """

    def __init__(
        self,
        store: TierStore,
        rules: Optional[PolyphoneRuleSet] = None,
        ledger: Optional[FrequencyLedger] = None,
        feedback=None,
        not_found_sink=None,
        fallback: Optional[Mapping[str, str]] = None,
    ):
        self.store = store
        self.rules = rules if rules is not None else PolyphoneRuleSet()
        self.ledger = ledger if ledger is not None else FrequencyLedger()
        self.feedback = feedback
        self.not_found_sink = not_found_sink
        self.fallback = dict(FALLBACK_MAP if fallback is None else fallback)

    def resolve(
        self,
        char: str,
        context: Optional[Context] = None,
        with_tone: bool = True,
        temp_map: Optional[Mapping[str, str]] = None,
    ) -> Resolution:
        """
        解析单个字符，从不抛出异常

        Args:
            char: 单个字符
            context: 上下文（前后字、三字窗口、整段文本）
            with_tone: 是否输出声调
            temp_map: 本次调用的临时读音映射
        """
        if is_passthrough(char) and not is_han(char):
            return Resolution(char, char, (char,), 'passthrough', True)

        if temp_map and char in temp_map:
            value = ''.join(str(temp_map[char]).split())
            return Resolution(char, value, (value,), 'temp', True)

        try:
            result = self._lookup(char, context, with_tone)
        except LookupMiss:
            return self._unresolved(char)

        if is_han(char):
            self._record(char, result.tier)
        return result

    # ---------- 内部实现 ----------
    def _lookup(self, char: str, context: Optional[Context], with_tone: bool) -> Resolution:
        custom = self.store.entry(Tier.CUSTOM, char)
        if custom is not None:
            candidates = custom.candidates(prefer_tone=with_tone)
            return self._finish(char, candidates[0], candidates, Tier.CUSTOM.value, Tier.CUSTOM, with_tone)

        for tier in LOOKUP_ORDER:
            entry = self.store.entry(tier, char)
            if entry is None:
                continue
            candidates = entry.candidates(prefer_tone=True)
            if not candidates:
                continue
            return self._select(char, candidates, context, tier.value, tier, with_tone)

        if char in self.fallback:
            return self._select(char, (self.fallback[char],), context, 'fallback', None, with_tone)

        raise LookupMiss(char)

    def _select(self, char: str, candidates: Pronunciations, context: Optional[Context],
                source: str, tier: Optional[Tier], with_tone: bool) -> Resolution:
        chosen = candidates[0]
        if len(candidates) > 1:
            picked = self.rules.score_and_select(char, candidates, context)
            if picked is not None:
                chosen = picked
                source = 'rule'
        return self._finish(char, chosen, candidates, source, tier, with_tone)

    @staticmethod
    def _finish(char: str, chosen: str, candidates: Pronunciations, source: str,
                tier: Optional[Tier], with_tone: bool) -> Resolution:
        # 无调输出在选择之后再去声调
        if not with_tone:
            chosen = strip_tone(chosen)
        return Resolution(char, chosen, tuple(candidates), source, True, tier)

    def _record(self, char: str, tier: Optional[Tier]):
        if self.feedback is None:
            self.ledger.increment(char)
            return
        entry: Optional[TierEntry] = self.store.entry(tier, char) if tier is not None else None
        self.feedback.record(char, tier, entry)

    def _unresolved(self, char: str) -> Resolution:
        if is_han(char) and self.not_found_sink is not None:
            self.not_found_sink.record(char)
            logger.debug(f"未找到读音: {char} (U+{ord(char):04X})")
        return Resolution(char, char, (), 'unresolved', False)
