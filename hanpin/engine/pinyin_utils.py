"""
拼音工具模块

功能：
- 声调符号 <-> 数字声调互转
- 去声调（得到基础音节）
- 汉字 Unicode 范围判断
- 拼音候选解析与校验
"""

import re
from typing import Iterable, List, Optional, Tuple


# 声调字符映射表（字符音标 → (字母, 声调)）
TONE_MARKS = {
    'ā': ('a', 1), 'á': ('a', 2), 'ǎ': ('a', 3), 'à': ('a', 4),
    'ē': ('e', 1), 'é': ('e', 2), 'ě': ('e', 3), 'è': ('e', 4),
    'ī': ('i', 1), 'í': ('i', 2), 'ǐ': ('i', 3), 'ì': ('i', 4),
    'ō': ('o', 1), 'ó': ('o', 2), 'ǒ': ('o', 3), 'ò': ('o', 4),
    'ū': ('u', 1), 'ú': ('u', 2), 'ǔ': ('u', 3), 'ù': ('u', 4),
    'ǖ': ('v', 1), 'ǘ': ('v', 2), 'ǚ': ('v', 3), 'ǜ': ('v', 4),
    'ü': ('v', 0), 'ń': ('n', 2), 'ň': ('n', 3), 'ǹ': ('n', 4),
    'ḿ': ('m', 2),
}

# (字母, 声调) → 字符音标
_MARK_FOR = {(base, tone): mark for mark, (base, tone) in TONE_MARKS.items() if tone}

# 汉字 Unicode 范围（基本区 + 扩展 A-E + 兼容区）
HAN_RANGES: Tuple[Tuple[int, int], ...] = (
    (0x4E00, 0x9FFF),
    (0x3400, 0x4DBF),
    (0x20000, 0x2A6DF),
    (0x2A700, 0x2B73F),
    (0x2B740, 0x2B81F),
    (0x2B820, 0x2CEAF),
    (0xF900, 0xFAFF),
    (0x2F800, 0x2FA1F),
)

# 无需转换、原样输出的标点
PASSTHROUGH_PUNCT = frozenset("_-+.")

_TONE_MARK_RE = re.compile('[' + ''.join(TONE_MARKS) + ']')
_SYLLABLE_RE = re.compile(r"^[a-zA-Z" + ''.join(TONE_MARKS) + r"]+[0-5]?$")
_NUMBERED_RE = re.compile(r"^([a-zA-Züv:]+)([0-5])$")


def is_han(char: str) -> bool:
    """判断单个字符是否为汉字"""
    if len(char) != 1:
        return False
    cp = ord(char)
    return any(lo <= cp <= hi for lo, hi in HAN_RANGES)


def is_passthrough(char: str) -> bool:
    """ASCII 字母、数字及允许的标点直接输出"""
    return len(char) == 1 and char.isascii() and (char.isalnum() or char in PASSTHROUGH_PUNCT)


def has_tone_mark(pinyin: str) -> bool:
    return bool(_TONE_MARK_RE.search(pinyin))


def strip_tone(pinyin: str) -> str:
    """
    去除声调符号，得到基础音节

    ü 统一转为 v，数字声调保留原样（由 base_syllable 负责去除）
    """
    return ''.join(TONE_MARKS[c][0] if c in TONE_MARKS else c for c in pinyin)


def base_syllable(pinyin: str) -> str:
    """
    基础音节：去声调符号、去数字声调、小写

    'Xíng' → 'xing'，'lv4' → 'lv'，'lü' → 'lv'
    """
    return re.sub(r'[0-5]', '', strip_tone(pinyin.strip().lower())).replace('u:', 'v')


def extract_tone(pinyin: str) -> Tuple[str, int]:
    """
    提取拼音的声调
    返回：(基础音节, 声调数字)，0 表示无声调
    """
    pinyin = pinyin.lower().strip()
    tone = 0
    for char in pinyin:
        if char in TONE_MARKS and TONE_MARKS[char][1]:
            tone = TONE_MARKS[char][1]
            break
    if tone == 0:
        match = re.search(r'([1-5])$', pinyin)
        if match:
            tone = int(match.group(1))
    return base_syllable(pinyin), tone


def _mark_position(syllable: str) -> int:
    """
    标调位置：a/e 优先；ou 标在 o；否则标最后一个元音
    """
    for vowel in ('a', 'e'):
        idx = syllable.find(vowel)
        if idx >= 0:
            return idx
    idx = syllable.find('ou')
    if idx >= 0:
        return idx
    for i in range(len(syllable) - 1, -1, -1):
        if syllable[i] in 'iouv':
            return i
    # 自成音节的 m / n / ng
    for i, ch in enumerate(syllable):
        if ch in 'mn':
            return i
    return -1


def add_tone(syllable: str, tone: int) -> str:
    """
    为无调音节加上声调符号

    add_tone('xing', 2) → 'xíng'；tone 为 0 或 5（轻声）时只把 v 还原为 ü
    """
    base = base_syllable(syllable)
    if tone not in (1, 2, 3, 4):
        return base.replace('v', 'ü')
    pos = _mark_position(base)
    if pos < 0:
        return base
    mark = _MARK_FOR.get((base[pos], tone))
    if mark is None:
        return base.replace('v', 'ü')
    marked = base[:pos] + mark + base[pos + 1:]
    return marked.replace('v', 'ü')


def number_to_mark(pinyin: str) -> str:
    """数字声调转字符音标：'xing2' → 'xíng'，无数字时原样返回"""
    match = _NUMBERED_RE.match(pinyin.strip())
    if not match:
        return pinyin
    return add_tone(match.group(1), int(match.group(2)))


def mark_to_number(pinyin: str) -> str:
    """字符音标转数字声调：'xíng' → 'xing2'，轻声 → 'xing5'"""
    base, tone = extract_tone(pinyin)
    return f"{base}{tone or 5}"


def is_valid_pinyin(pinyin: str) -> bool:
    """判断是否为可解析的单个音节（字符音标、数字声调或无调）"""
    return bool(pinyin) and bool(_SYLLABLE_RE.match(pinyin.strip()))


def parse_pinyin_options(raw) -> List[str]:
    """
    解析拼音候选

    支持字符串（空格/逗号分隔）与列表两种形式，去空、去重，保留顺序
    """
    if raw is None:
        return []
    items: Iterable = [raw] if isinstance(raw, str) else raw
    result: List[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        for part in re.split(r'[\s,]+', item.strip()):
            if part and part not in result:
                result.append(part)
    return result


def split_syllables(raw) -> List[str]:
    """多字词的音节序列：与 parse_pinyin_options 相同的分隔规则，但不去重"""
    if raw is None:
        return []
    items: Iterable = [raw] if isinstance(raw, str) else raw
    result: List[str] = []
    for item in items:
        if isinstance(item, str):
            result.extend(p for p in re.split(r'[\s,]+', item.strip()) if p)
    return result


def match_candidate(pinyin: str, candidates: Iterable[str]) -> Optional[str]:
    """
    在候选中寻找与 pinyin 匹配的一项：先精确匹配，再按基础音节匹配
    """
    candidates = list(candidates)
    if pinyin in candidates:
        return pinyin
    target = base_syllable(pinyin)
    for candidate in candidates:
        if base_syllable(candidate) == target:
            return candidate
    return None
