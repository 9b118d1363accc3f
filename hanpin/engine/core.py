import re
import threading
import time
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .cache import LRUCache, make_cache_key
from .config import SPECIAL_CHAR_MODES, ConverterConfig
from .dictionary import PERSISTED_TIERS, VARIANTS, Tier, TierStore, ToneVariant
from .errors import ConfigError, HanpinError
from .frequency import FrequencyLedger
from .learning import FeedbackLoop, MergeReport, NotFoundResolver
from .logging import configure_logging, get_engine_logger
from .pinyin_utils import is_han, is_valid_pinyin, number_to_mark, split_syllables, strip_tone
from .polyphone import Context, PolyphoneRuleSet
from .resolver import Resolver
from .storage import (
    JsonDictionaryStorage,
    JsonFrequencyStorage,
    JsonNotFoundSink,
    MemoryDictionaryStorage,
    MemoryFrequencyStorage,
    MemoryNotFoundSink,
    PypinyinExtendedSource,
    PypinyinFetcher,
)

logger = get_engine_logger()

# 控制字符和 % 在转换前直接去掉
_STRIP_RE = re.compile(r'[\x00-\x1F\x7F%]')

# 任何模式下都删除的符号（含全角标点）
BLOCKED_CHARS = frozenset("%~!^&*`|\\{}<>【】、。，；：“”‘’（）")


class PinyinConverter:
    """
    汉字转拼音转换器

    组合分层字典、多音字规则、自学习反馈循环和结果缓存：
    - convert: 整段文本转拼音
    - slug: 生成 URL 友好的小写拼音
    - add_custom / remove_custom: 维护自定义字典
    """

    def __init__(
        self,
        config: Optional[ConverterConfig] = None,
        storage=None,
        frequency_storage=None,
        not_found_sink=None,
        fetcher=None,
        clock=None,
        rules: Optional[PolyphoneRuleSet] = None,
    ):
        self.config = config or ConverterConfig()
        configure_logging(self.config.log_level, self.config.log_format)
        data_dir = Path(self.config.data_dir) if self.config.data_dir else None

        if storage is None:
            storage = JsonDictionaryStorage(data_dir) if data_dir else MemoryDictionaryStorage()
        if frequency_storage is None:
            frequency_storage = (JsonFrequencyStorage(data_dir / 'frequency.json')
                                 if data_dir else MemoryFrequencyStorage())
        if not_found_sink is None:
            not_found_sink = JsonNotFoundSink(data_dir / 'not_found.json') if data_dir else MemoryNotFoundSink()

        self.storage = storage
        self.frequency_storage = frequency_storage
        self.not_found_sink = not_found_sink
        self.fetcher = fetcher or PypinyinFetcher()

        self.store = TierStore(self._load_tiers())
        self.ledger = FrequencyLedger(self.frequency_storage.load())
        self.ledger.dirty = False
        self.rules = rules if rules is not None else self._load_rules()

        self.feedback = FeedbackLoop(
            self.store, self.ledger, self.config,
            storage=self.storage,
            frequency_storage=self.frequency_storage,
            clock=clock,
            tone_restorer=self.fetcher,
        )
        self.resolver = Resolver(self.store, self.rules, self.ledger,
                                 feedback=self.feedback, not_found_sink=self.not_found_sink)
        self.not_found_resolver = NotFoundResolver(self.feedback, self.not_found_sink, self.fetcher)
        self.cache = LRUCache(self.config.cache.size, self.config.cache.ttl)

        # 统计
        self.counters = {'total': 0, 'total_ms': 0.0}
        self._counter_lock = threading.Lock()

        self.feedback.check_consistency()
        self._log_status()

    def _load_tiers(self) -> Dict[Tuple[Tier, ToneVariant], Mapping]:
        data: Dict[Tuple[Tier, ToneVariant], Mapping] = {}
        for tier in PERSISTED_TIERS:
            for variant in VARIANTS:
                data[(tier, variant)] = self.storage.load(tier, variant)
        if self.config.use_pypinyin_extended:
            for variant in VARIANTS:
                data[(Tier.EXTENDED, variant)] = PypinyinExtendedSource(variant)
        return data

    def _load_rules(self) -> PolyphoneRuleSet:
        if self.config.rules_path:
            return PolyphoneRuleSet.from_file(self.config.rules_path)
        return PolyphoneRuleSet.default()

    def _log_status(self):
        """输出状态"""
        sizes = self.store.sizes()
        logger.info("HanPin 转换器已就绪")
        for tier in PERSISTED_TIERS:
            counts = sizes[tier.value]
            logger.info(f"  {tier.value}: {counts['with_tone']} / {counts['no_tone']}")
        logger.info(f"  多音字规则: {len(self.rules)} 个字")

    # ---------- 转换 ----------
    def convert(
        self,
        text: str,
        separator: str = ' ',
        with_tone: bool = False,
        special_chars: Union[str, Mapping, None] = '',
        temp_map: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        整段文本转拼音

        Args:
            text: 输入文本
            separator: 拼音之间的分隔符
            with_tone: 是否带声调
            special_chars: 特殊字符处理方式（'keep' / 'delete' / 'replace'，
                或 {'mode': ..., 'map': {...}}；空值使用配置默认值）
            temp_map: 本次调用的临时读音映射 {字: 拼音}

        Returns:
            拼音字符串
        """
        if not text:
            return ''
        text = _STRIP_RE.sub('', str(text))
        if not text:
            return ''

        start = time.perf_counter()
        key = make_cache_key(text, separator, with_tone, special_chars, temp_map)
        result = self.cache.get_or_compute(
            key, lambda: self._convert(text, separator, with_tone, special_chars, temp_map))

        with self._counter_lock:
            self.counters['total'] += 1
            self.counters['total_ms'] += (time.perf_counter() - start) * 1000
        return result

    def _convert(self, text: str, separator: str, with_tone: bool,
                 special_chars, temp_map: Optional[Mapping[str, str]]) -> str:
        mode, char_map = self._special_char_policy(special_chars)
        tokens: List[str] = []
        for kind, value in self._split_custom_words(text, with_tone, separator):
            if kind == 'word':
                tokens.append(value)
            else:
                tokens.extend(self._convert_part(value, text, with_tone, temp_map, mode, char_map))

        result = separator.join(t for t in tokens if t)
        if separator:
            sep = re.escape(separator)
            result = re.sub(f'(?:{sep}){{2,}}', separator, result)
        return result.strip()

    def _convert_part(self, part: str, full_text: str, with_tone: bool,
                      temp_map, mode: str, char_map: Mapping[str, str]) -> List[str]:
        tokens: List[str] = []
        word: List[str] = []

        def flush():
            if word:
                tokens.append(''.join(word))
                word.clear()

        for i, ch in enumerate(part):
            if is_han(ch) or (temp_map and ch in temp_map):
                flush()
                context = Context.around(part, i, full_text=full_text)
                tokens.append(self.resolver.resolve(ch, context, with_tone, temp_map).pronunciation)
            elif ch.isascii() and (ch.isalnum() or ch in '-.'):
                word.append(ch)
            elif ch.isspace():
                flush()
            else:
                flush()
                tokens.append(self._handle_special_char(ch, mode, char_map))
        flush()
        return tokens

    def _split_custom_words(self, text: str, with_tone: bool, separator: str) -> List[Tuple[str, str]]:
        """
        按自定义多字词切分文本（长词优先）

        Returns:
            [('word', 拼音), ('text', 原文片段), ...]
        """
        index = self._custom_word_index(with_tone)
        if not index:
            return [('text', text)]

        parts: List[Tuple[str, str]] = []
        buf: List[str] = []
        i = 0
        while i < len(text):
            for word, syllables in index.get(text[i], ()):
                if text.startswith(word, i):
                    if buf:
                        parts.append(('text', ''.join(buf)))
                        buf.clear()
                    if not with_tone:
                        syllables = [strip_tone(s) for s in syllables]
                    parts.append(('word', separator.join(syllables)))
                    i += len(word)
                    break
            else:
                buf.append(text[i])
                i += 1
        if buf:
            parts.append(('text', ''.join(buf)))
        return parts

    def _custom_word_index(self, with_tone: bool) -> Dict[str, List[Tuple[str, Tuple[str, ...]]]]:
        variant = ToneVariant.of(with_tone)
        words = dict(self.store.custom_words(variant.other))
        words.update(self.store.custom_words(variant))
        index: Dict[str, List[Tuple[str, Tuple[str, ...]]]] = {}
        for word in sorted(words, key=len, reverse=True):
            index.setdefault(word[0], []).append((word, words[word]))
        return index

    def _special_char_policy(self, special_chars) -> Tuple[str, Dict[str, str]]:
        cfg = self.config.special_char
        char_map = cfg.char_map
        mode = special_chars
        if isinstance(special_chars, Mapping):
            mode = special_chars.get('mode')
            char_map = {**char_map, **(special_chars.get('map') or {})}
        mode = (mode or cfg.default_mode).lower()
        if mode not in SPECIAL_CHAR_MODES:
            raise ConfigError(f"未知的特殊字符模式: {mode}")
        return mode, char_map

    def _handle_special_char(self, ch: str, mode: str, char_map: Mapping[str, str]) -> str:
        """处理非汉字、非单词字符"""
        if is_han(ch) or ch.isalnum():
            return ch
        # 替换模式只输出映射表中的字符，全角标点也先查表
        if mode == 'replace':
            return char_map.get(ch, '')
        if ch in BLOCKED_CHARS:
            return ''
        if not ch.isprintable() or ord(ch) > 126:
            return ''
        if mode == 'delete':
            return ch if re.fullmatch(f'[{self.config.special_char.delete_allow}]', ch) else ''
        return ch

    def slug(self, text: str, separator: str = '-') -> str:
        """生成 URL 友好的小写无调拼音"""
        out = self.convert(text, separator, False, 'delete').lower()
        sep = re.escape(separator)
        out = re.sub(f'[^a-z0-9{sep}]', '', out)
        if separator:
            out = re.sub(f'(?:{sep})+', separator, out).strip(separator)
        return out

    # ---------- 自定义字典 ----------
    def add_custom(self, word: str, pinyin: str, with_tone: bool = True) -> bool:
        """
        添加自定义读音（单字或多字词）

        多字词的音节数必须与字数一致；数字声调自动转为字符音标。
        """
        word = (word or '').strip()
        if not word:
            raise ValueError("词语不能为空")
        syllables = [number_to_mark(s) for s in split_syllables(pinyin)]
        if not syllables:
            raise ValueError(f"拼音不能为空: {word}")
        invalid = [s for s in syllables if not is_valid_pinyin(s)]
        if invalid:
            raise ValueError(f"无法解析的拼音: {' '.join(invalid)}")
        if len(word) > 1 and len(syllables) != len(word):
            raise ValueError(f"音节数 {len(syllables)} 与字数 {len(word)} 不一致: {word}")

        untoned = [strip_tone(s) for s in syllables]
        self.feedback.add_entry(Tier.CUSTOM, word,
                                toned=syllables if with_tone else None,
                                untoned=untoned)
        self.cache.clear()
        logger.info(f"添加自定义读音: {word} → {' '.join(syllables)}")
        return True

    def remove_custom(self, word: str, with_tone: Optional[bool] = None) -> bool:
        """删除自定义读音；with_tone 为 None 时两种声调类型都删除"""
        variant = None if with_tone is None else ToneVariant.of(with_tone)
        removed = self.feedback.remove_entry(Tier.CUSTOM, (word or '').strip(), variant)
        if removed:
            self.cache.clear()
            logger.info(f"删除自定义读音: {word}")
        return removed

    # ---------- 维护 ----------
    def execute_merge(self, force: bool = False) -> MergeReport:
        return self.feedback.execute_merge(force=force)

    def demote(self, force: bool = False) -> List[str]:
        return self.feedback.demote(force=force)

    def check_consistency(self, heal: Optional[bool] = None):
        return self.feedback.check_consistency(heal=heal)

    def process_not_found(self, batch_size: int = 10) -> Dict[str, List[str]]:
        result = self.not_found_resolver.process_batch(batch_size)
        # 补全后原先原样输出的字有了读音
        if result['resolved']:
            self.cache.clear()
        return result

    def save(self):
        """持久化自学习字典、字频和未找到字符列表"""
        self.feedback.save()
        flush = getattr(self.not_found_sink, 'flush', None)
        if flush is not None:
            flush()

    def stats(self) -> Dict:
        """获取统计信息"""
        total = self.counters['total']
        return {
            'conversions': total,
            'avg_ms': round(self.counters['total_ms'] / total, 3) if total else 0.0,
            'tiers': self.store.sizes(),
            'cache': self.cache.stats(),
            'frequency_keys': len(self.ledger),
            'not_found': len(self.not_found_sink.pending()),
            'merge_due': [v.value for v in self.feedback.needs_merge()],
            'last_merge': {v.value: self.feedback.last_merge[v] for v in VARIANTS},
            'last_demotion': self.feedback.last_demotion,
            'demotion_backoff': self.feedback.backoff,
        }

    def close(self):
        try:
            self.save()
        except HanpinError as e:
            logger.error(f"关闭时保存失败: {e}")
            raise

    def __enter__(self) -> 'PinyinConverter':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
