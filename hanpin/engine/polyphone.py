"""
多音字消歧

每条规则带类型（word / pre / post / pattern）、匹配目标、对应读音和权重。
评分：

    word     1.0 × weight   上下文窗口（前一字 + 本字 + 后一字）等于目标词
    pre      0.8 × weight   前一字等于目标
    post     0.8 × weight   后一字等于目标
    pattern  0.9 × weight   正则匹配整段文本

取最高分，达到 0.5 才采用；同分时按声明顺序取第一条。
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from importlib import resources
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import orjson

from .errors import InvalidRule
from .pinyin_utils import is_valid_pinyin, match_candidate, number_to_mark


ACCEPT_THRESHOLD = 0.5


class RuleKind(str, Enum):
    WORD = 'word'
    PRE = 'pre'
    POST = 'post'
    PATTERN = 'pattern'


BASE_SCORES = {
    RuleKind.WORD: 1.0,
    RuleKind.PRE: 0.8,
    RuleKind.POST: 0.8,
    RuleKind.PATTERN: 0.9,
}

_KIND_ALIASES = {
    'word': RuleKind.WORD,
    'pre': RuleKind.PRE,
    'prev': RuleKind.PRE,
    'preceding': RuleKind.PRE,
    'post': RuleKind.POST,
    'next': RuleKind.POST,
    'following': RuleKind.POST,
    'pattern': RuleKind.PATTERN,
    'regex': RuleKind.PATTERN,
}


@dataclass(frozen=True)
class Context:
    """解析上下文：前一字、后一字、三字窗口和整段文本（均可为空）"""
    prev: str = ''
    next: str = ''
    word: str = ''
    text: str = ''

    @classmethod
    def around(cls, text: str, index: int, full_text: Optional[str] = None) -> 'Context':
        prev = text[index - 1] if index > 0 else ''
        nxt = text[index + 1] if index + 1 < len(text) else ''
        return cls(prev=prev, next=nxt, word=prev + text[index] + nxt,
                   text=text if full_text is None else full_text)


@dataclass(frozen=True)
class PolyphoneRule:
    kind: RuleKind
    target: str
    pinyin: str
    weight: float = 1.0
    regex: Optional[re.Pattern] = field(default=None, compare=False, repr=False)

    def score(self, context: Optional[Context]) -> float:
        """计算本条规则在给定上下文中的得分，无上下文时为 0"""
        if context is None:
            return 0.0
        if self.kind is RuleKind.WORD:
            hit = bool(context.word) and context.word == self.target
        elif self.kind is RuleKind.PRE:
            hit = bool(context.prev) and context.prev == self.target
        elif self.kind is RuleKind.POST:
            hit = bool(context.next) and context.next == self.target
        else:
            hit = bool(context.text) and self.regex.search(context.text) is not None
        return BASE_SCORES[self.kind] * self.weight if hit else 0.0

    @classmethod
    def create(cls, char: str, kind, target: str, pinyin: str, weight=1.0) -> 'PolyphoneRule':
        """构建并校验规则，不合法时抛出 InvalidRule"""
        raw = {'type': kind, 'target': target, 'pinyin': pinyin, 'weight': weight}
        if isinstance(kind, RuleKind):
            rule_kind = kind
        else:
            rule_kind = _KIND_ALIASES.get(str(kind or '').strip().lower())
        if rule_kind is None:
            raise InvalidRule(char, raw, f"未知规则类型 {kind!r}")
        if not isinstance(target, str) or not target:
            raise InvalidRule(char, raw, "缺少匹配目标")
        if not isinstance(pinyin, str) or not pinyin.strip():
            raise InvalidRule(char, raw, "缺少读音")
        pinyin = pinyin.strip()
        if not is_valid_pinyin(pinyin):
            raise InvalidRule(char, raw, f"无法解析的读音 {pinyin!r}")
        if isinstance(weight, bool):
            raise InvalidRule(char, raw, "权重必须是数值")
        try:
            weight = float(weight)
        except (TypeError, ValueError):
            raise InvalidRule(char, raw, f"权重必须是数值，得到 {weight!r}") from None
        if weight < 0 or weight != weight:
            raise InvalidRule(char, raw, f"权重必须非负，得到 {weight}")

        regex = None
        if rule_kind is RuleKind.PATTERN:
            try:
                regex = re.compile(target)
            except re.error as e:
                raise InvalidRule(char, raw, f"正则无法编译: {e}") from None

        return cls(rule_kind, target, number_to_mark(pinyin), weight, regex)

    @classmethod
    def from_mapping(cls, char: str, data: Mapping) -> 'PolyphoneRule':
        """
        从字典构建规则，兼容以下写法：
            {'type': 'post', 'char': '为', 'pinyin': 'xíng'}
            {'type': 'word', 'word': '行话', 'pinyin': 'háng', 'weight': 1.2}
            {'type': 'pattern', 'pattern': '银行.*账户', 'pinyin': 'háng'}
        """
        if not isinstance(data, Mapping):
            raise InvalidRule(char, data, "规则必须是字典")
        target = data.get('target') or data.get('char') or data.get('word') or data.get('pattern')
        return cls.create(char, data.get('type') or data.get('kind'), target,
                          data.get('pinyin'), data.get('weight', 1.0))

    def to_mapping(self) -> dict:
        return {'type': self.kind.value, 'target': self.target,
                'pinyin': self.pinyin, 'weight': self.weight}


class PolyphoneRuleSet:
    """多音字规则集：字 → 有序规则列表"""

    def __init__(self, rules: Optional[Mapping] = None):
        self._rules: Dict[str, List[PolyphoneRule]] = {}
        if rules:
            self.load(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, char: str) -> bool:
        return char in self._rules

    def register(self, char: str, rule: Union[PolyphoneRule, Mapping]) -> PolyphoneRule:
        if not isinstance(char, str) or len(char) != 1:
            raise InvalidRule(str(char), rule, "规则必须绑定到单个汉字")
        if not isinstance(rule, PolyphoneRule):
            rule = PolyphoneRule.from_mapping(char, rule)
        self._rules.setdefault(char, []).append(rule)
        return rule

    def load(self, data: Mapping[str, Sequence[Mapping]]):
        """批量注册；任一规则不合法时整体拒绝"""
        staged: List[Tuple[str, PolyphoneRule]] = []
        for char, rules in data.items():
            if isinstance(rules, Mapping):
                rules = [rules]
            for rule in rules:
                if not isinstance(char, str) or len(char) != 1:
                    raise InvalidRule(str(char), rule, "规则必须绑定到单个汉字")
                staged.append((char, PolyphoneRule.from_mapping(char, rule)))
        for char, rule in staged:
            self._rules.setdefault(char, []).append(rule)

    def rules_for(self, char: str) -> Tuple[PolyphoneRule, ...]:
        return tuple(self._rules.get(char, ()))

    def chars(self) -> List[str]:
        return list(self._rules)

    def score_and_select(self, char: str, candidates: Iterable[str],
                         context: Optional[Context]) -> Optional[str]:
        """
        为多音字选择读音

        Returns:
            命中候选中的读音；没有规则得分达到阈值时返回 None
        """
        rules = self._rules.get(char)
        if not rules or context is None:
            return None
        candidates = list(candidates)

        best_score = 0.0
        best: Optional[str] = None
        for rule in rules:
            matched = match_candidate(rule.pinyin, candidates)
            if matched is None:
                continue  # 读音不在候选中，规则无效
            score = rule.score(context)
            if score > best_score:
                best_score = score
                best = matched

        if best is not None and best_score >= ACCEPT_THRESHOLD:
            return best
        return None

    def to_mapping(self) -> Dict[str, List[dict]]:
        return {char: [r.to_mapping() for r in rules] for char, rules in self._rules.items()}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'PolyphoneRuleSet':
        data = orjson.loads(Path(path).read_bytes())
        return cls(data)

    @classmethod
    def default(cls) -> 'PolyphoneRuleSet':
        """内置规则（hanpin/data/polyphone_rules.json）"""
        raw = resources.files('hanpin').joinpath('data').joinpath('polyphone_rules.json').read_bytes()
        return cls(orjson.loads(raw))
