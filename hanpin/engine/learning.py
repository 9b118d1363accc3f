"""
自学习反馈循环

状态迁移（以字典层为状态）：

    未见过 ──(rare / extended 命中)──▶ self_learned ──(频次达标 / 批量合并)──▶ common
    common ──(长期低频)──▶ rare

所有迁移在同一把写锁内完成：先在旁边构建新快照并持久化，
成功后再整体替换内存快照；持久化失败时内存状态保持不变。
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import ConverterConfig
from .dictionary import (
    PERSISTED_TIERS,
    VARIANTS,
    Pronunciations,
    Tier,
    TierEntry,
    TierStore,
    ToneVariant,
    untoned_of,
)
from .errors import InconsistentTierState, PersistenceFailure
from .frequency import FrequencyLedger
from .logging import get_engine_logger, log_execution_time
from .pinyin_utils import has_tone_mark, match_candidate
from .storage import SystemClock

logger = get_engine_logger()

Updates = Dict[Tuple[Tier, ToneVariant], Dict[str, Pronunciations]]


@dataclass
class MergeReport:
    """批量合并结果"""
    success: List[str] = field(default_factory=list)
    fail: List[dict] = field(default_factory=list)
    merged: Dict[str, List[str]] = field(default_factory=dict)
    skipped: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {'success': self.success, 'fail': self.fail,
                'merged': self.merged, 'skipped': self.skipped}


class FeedbackLoop:
    """字典层的唯一修改入口"""

    def __init__(
        self,
        store: TierStore,
        ledger: FrequencyLedger,
        config: Optional[ConverterConfig] = None,
        storage=None,
        frequency_storage=None,
        clock=None,
        tone_restorer=None,
    ):
        self.store = store
        self.ledger = ledger
        self.config = config or ConverterConfig()
        self.storage = storage
        self.frequency_storage = frequency_storage
        self.clock = clock or SystemClock()
        self.tone_restorer = tone_restorer
        self.lock = threading.RLock()

        self.last_merge: Dict[ToneVariant, float] = {v: 0.0 for v in VARIANTS}
        # 降级周期从启动时开始计算
        self.last_demotion = self.clock.now()
        # 最近进入 common 的字 → 时间，一个降级周期内不参与降级
        self.promoted_at: Dict[str, float] = {}
        self.backoff = 1
        self._load_state()

    # ---------- 解析回调 ----------
    def record(self, char: str, tier: Optional[Tier], entry: Optional[TierEntry] = None):
        """每次成功解析后调用：更新字频，必要时加入自学习字典或立即晋升"""
        count = self.ledger.increment(char)
        if not self.config.self_learn or tier is None:
            return

        if tier in (Tier.RARE, Tier.EXTENDED) and entry is not None:
            if self.learn(char, entry):
                count = 1

        if (tier in (Tier.RARE, Tier.SELF_LEARNED, Tier.EXTENDED)
                and count >= self.config.merge.immediate_threshold
                and self.store.contains(Tier.SELF_LEARNED, char)):
            try:
                self.promote(char)
            except PersistenceFailure as e:
                # 解析照常完成，迁移回滚
                logger.error(f"立即晋升失败，已回滚: {char} ({e})")

        self.maintain()

    def learn(self, char: str, entry: TierEntry) -> bool:
        """把 rare / extended 命中的字复制到自学习字典，初始频次为 1"""
        with self.lock:
            # 读到旧快照的解析可能在晋升之后才回调
            if self.store.contains(Tier.SELF_LEARNED, char) or self.store.contains(Tier.COMMON, char):
                return False
            toned = entry.toned
            untoned = entry.untoned or (untoned_of(toned) if toned else None)
            updates: Updates = {}
            for variant, values in ((ToneVariant.WITH_TONE, toned), (ToneVariant.NO_TONE, untoned)):
                if values:
                    mapping = self.store.mutable_copy(Tier.SELF_LEARNED, variant)
                    mapping[char] = tuple(values)
                    updates[(Tier.SELF_LEARNED, variant)] = mapping
            if not updates:
                return False
            self.store.swap(updates)
            self.ledger.set(char, 1)
        logger.debug(f"自学习: {char} ← {entry.tier.value} {entry.candidates()}")
        return True

    def promote(self, char: str) -> bool:
        """立即晋升：self_learned → common，同时移出 rare"""
        with self.lock:
            if not self.store.contains(Tier.SELF_LEARNED, char):
                return False
            updates, moved, _ = self._move([char], Tier.SELF_LEARNED, Tier.COMMON, also_remove=(Tier.RARE,))
            self._commit(updates, cleared=[char], reason='promote')
            self._mark_promoted([char])
        logger.info(f"高频自学习字晋升常用字典: {char}")
        return True

    # ---------- 批量合并 ----------
    def merge_due(self, variant: ToneVariant) -> bool:
        return self.clock.now() - self.last_merge[variant] >= self.config.merge.interval

    def needs_merge(self) -> List[ToneVariant]:
        """检查哪些声调类型需要合并"""
        threshold = max(self.config.merge.threshold, 1)
        return [v for v in VARIANTS
                if self.store.size(Tier.SELF_LEARNED, v) >= threshold and self.merge_due(v)]

    def demotion_due(self) -> bool:
        cfg = self.config.demotion
        return cfg.enabled and self.clock.now() - self.last_demotion >= cfg.interval * self.backoff

    def maintain(self):
        """
        例行维护：自学习字典达到阈值且间隔已过时批量合并，降级周期已到时执行降级

        每次解析回调后调用，两项检查都不加锁，未到期时开销很小。
        """
        due = self.needs_merge()
        if due:
            logger.info(f"需要合并的字典: {', '.join(v.value for v in due)}")
            self.execute_merge()
        if self.demotion_due():
            try:
                self.demote()
            except PersistenceFailure as e:
                logger.error(f"降级失败，已回滚: {e}")

    @log_execution_time()
    def execute_merge(self, force: bool = False) -> MergeReport:
        """
        执行自学习字典合并

        Args:
            force: 忽略数量阈值和时间间隔

        Returns:
            MergeReport，失败的声调类型记录在 fail 中
        """
        cfg = self.config.merge
        report = MergeReport()
        with self.lock:
            for variant in VARIANTS:
                size = self.store.size(Tier.SELF_LEARNED, variant)
                if size == 0:
                    continue
                if not force and (size < cfg.threshold or not self.merge_due(variant)):
                    continue

                if force or not cfg.incremental:
                    count = min(size, cfg.max_per_merge)
                else:
                    count = min(size - cfg.threshold + 1, cfg.max_per_merge)

                keys = self.ledger.rank(self.store.keys(Tier.SELF_LEARNED, variant))[:count]
                try:
                    if cfg.backup_before_merge:
                        self._backup((Tier.COMMON, Tier.SELF_LEARNED))
                    updates, moved, skipped = self._move(
                        keys, Tier.SELF_LEARNED, Tier.COMMON, also_remove=(Tier.RARE,))
                    self._commit(updates, cleared=keys, reason=f'merge:{variant.value}')
                    self._mark_promoted(keys)
                except PersistenceFailure as e:
                    logger.error(f"合并失败 [{variant.value}]: {e}")
                    report.fail.append({'variant': variant.value, 'error': str(e)})
                    continue

                self.last_merge[variant] = self.clock.now()
                report.success.append(variant.value)
                report.merged[variant.value] = moved
                report.skipped[variant.value] = skipped
                logger.info(f"合并完成 [{variant.value}]: {len(moved)} 个字进入常用字典，跳过 {len(skipped)} 个")

            if report.success:
                self._save_state()
        return report

    # ---------- 降级 ----------
    @log_execution_time()
    def demote(self, force: bool = False) -> List[str]:
        """
        把长期低频的常用字移入生僻字典

        条件：频次 < ratio × 常用字平均频次 且 < floor。
        系统负载过高时跳过，并把最小间隔翻倍（上限 max_backoff 倍）。
        一个降级周期内刚进入 common 的字不参与降级。
        """
        cfg = self.config.demotion
        with self.lock:
            now = self.clock.now()
            if not force:
                if not self.demotion_due():
                    return []
                load = self.clock.load()
                if load is not None and load > cfg.load_threshold:
                    self.backoff = min(self.backoff * 2, cfg.max_backoff)
                    self.last_demotion = now
                    logger.info(f"系统负载 {load:.2f} 过高，跳过降级，退避倍数 {self.backoff}")
                    return []
                self.backoff = 1

            self.promoted_at = {k: t for k, t in self.promoted_at.items() if now - t < cfg.interval}
            keys = self.store.keys(Tier.COMMON)
            average = self.ledger.average(keys)
            limit = min(cfg.ratio * average, cfg.floor)
            cold = [k for k in keys if self.ledger.get(k) < limit and k not in self.promoted_at]
            cold = self.ledger.rank(cold, descending=False)[:cfg.max_per_run]

            self.last_demotion = now
            moved: List[str] = []
            if cold:
                updates, moved, _ = self._move(
                    cold, Tier.COMMON, Tier.RARE, also_remove=(Tier.SELF_LEARNED,), overwrite=True)
                self._commit(updates, cleared=moved, reason='demote')
                logger.info(f"降级 {len(moved)} 个低频常用字 (平均频次 {average:.2f})")
            self._save_state()
        return moved

    # ---------- 一致性 ----------
    def find_conflicts(self) -> List[Tuple[str, Tuple[str, ...]]]:
        """查找同时存在于 common 与 rare / self_learned 的字"""
        conflicts: Dict[str, List[str]] = {}
        for variant in VARIANTS:
            common = self.store.snapshot(Tier.COMMON, variant)
            for tier in (Tier.RARE, Tier.SELF_LEARNED):
                for key in self.store.snapshot(tier, variant):
                    if key in common:
                        tiers = conflicts.setdefault(key, [Tier.COMMON.value])
                        if tier.value not in tiers:
                            tiers.append(tier.value)
        return [(k, tuple(v)) for k, v in conflicts.items()]

    def check_consistency(self, heal: Optional[bool] = None) -> List[Tuple[str, Tuple[str, ...]]]:
        """
        检查层间一致性

        调试模式（config.debug）下发现冲突直接抛出 InconsistentTierState；
        否则保留高优先级层（common）的条目，删除低优先级层的重复条目。
        """
        if heal is None:
            heal = not self.config.debug
        with self.lock:
            conflicts = self.find_conflicts()
            if not conflicts:
                return []
            if not heal:
                raise InconsistentTierState(conflicts)

            updates: Updates = {}
            for tier in (Tier.RARE, Tier.SELF_LEARNED):
                for variant in VARIANTS:
                    mapping = self.store.mutable_copy(tier, variant)
                    dropped = [k for k, _ in conflicts if k in mapping]
                    for key in dropped:
                        del mapping[key]
                    if dropped:
                        updates[(tier, variant)] = mapping
            self._commit(updates, cleared=[], reason='heal')
        logger.warning(f"修复层间冲突 {len(conflicts)} 个: {[k for k, _ in conflicts[:10]]}")
        return conflicts

    # ---------- 通用写入 ----------
    def add_entry(self, tier: Tier, key: str, toned: Optional[Sequence[str]] = None,
                  untoned: Optional[Sequence[str]] = None):
        """写入一条字典条目（自定义拼音、外部补全等）"""
        with self.lock:
            updates: Updates = {}
            for variant, values in ((ToneVariant.WITH_TONE, toned), (ToneVariant.NO_TONE, untoned)):
                if values:
                    mapping = self.store.mutable_copy(tier, variant)
                    mapping[key] = tuple(values)
                    updates[(tier, variant)] = mapping
            self._commit(updates, cleared=[], reason=f'add:{tier.value}')

    def remove_entry(self, tier: Tier, key: str, variant: Optional[ToneVariant] = None) -> bool:
        with self.lock:
            updates: Updates = {}
            for v in ((variant,) if variant else VARIANTS):
                mapping = self.store.mutable_copy(tier, v)
                if mapping.pop(key, None) is not None:
                    updates[(tier, v)] = mapping
            if not updates:
                return False
            self._commit(updates, cleared=[], reason=f'remove:{tier.value}')
            return True

    def save(self):
        """持久化自学习字典、字频和合并时间"""
        with self.lock:
            if self.storage is not None:
                for variant in VARIANTS:
                    self._save_with_retry(Tier.SELF_LEARNED, variant,
                                          self.store.snapshot(Tier.SELF_LEARNED, variant))
                self._save_state()
            if self.frequency_storage is not None and self.ledger.dirty:
                self.frequency_storage.save(self.ledger.snapshot())
                self.ledger.dirty = False

    # ---------- 内部实现 ----------
    def _move(self, keys: Iterable[str], source: Tier, target: Tier,
              also_remove: Sequence[Tier] = (), overwrite: bool = False):
        """
        构建迁移后的快照（不修改内存状态）

        Returns:
            (updates, moved, skipped)：skipped 为目标层已存在、未覆盖的字
        """
        keys = list(keys)
        updates: Updates = {}
        for tier in (source, target, *also_remove):
            for variant in VARIANTS:
                updates[(tier, variant)] = self.store.mutable_copy(tier, variant)

        moved: List[str] = []
        skipped: List[str] = []
        for key in keys:
            values = {v: updates[(source, v)].get(key) for v in VARIANTS}
            wrote = False
            for variant in VARIANTS:
                target_map = updates[(target, variant)]
                if key in target_map and not overwrite:
                    continue
                entry = values[variant] or self._translate(key, values[variant.other], variant)
                if entry:
                    target_map[key] = entry
                    wrote = True
            (moved if wrote else skipped).append(key)
            for tier in (source, *also_remove):
                for variant in VARIANTS:
                    updates[(tier, variant)].pop(key, None)
        return updates, moved, skipped

    def _translate(self, key: str, values: Optional[Pronunciations],
                   to_variant: ToneVariant) -> Optional[Pronunciations]:
        """在两种声调形式间转换：去声调直接转换，加声调需反查"""
        if not values:
            return None
        if to_variant is ToneVariant.NO_TONE:
            return untoned_of(values)
        restored: List[str] = []
        for syllable in values:
            toned = self._restore_tone(key, syllable)
            if toned is None:
                logger.warning(f"无法还原声调，保留无调拼音: {key} → {syllable}")
                toned = syllable
            if toned not in restored:
                restored.append(toned)
        return tuple(restored)

    def _restore_tone(self, key: str, syllable: str) -> Optional[str]:
        for tier in (Tier.CUSTOM, Tier.COMMON, Tier.RARE, Tier.SELF_LEARNED, Tier.EXTENDED):
            options = self.store.get(tier, ToneVariant.WITH_TONE, key)
            if options:
                found = match_candidate(syllable, options)
                if found and has_tone_mark(found):
                    return found
        if self.tone_restorer is not None:
            return self.tone_restorer.restore(key, syllable)
        return None

    def _commit(self, updates: Updates, cleared: Iterable[str], reason: str):
        """持久化并替换快照；持久化失败时回滚已写入的文件并抛出异常"""
        updates = {k: v for k, v in updates.items() if k[0] is not Tier.EXTENDED}
        if not updates:
            return
        previous = {k: self.store.snapshot(*k) for k in updates}
        written: List[Tuple[Tier, ToneVariant]] = []
        if self.storage is not None:
            try:
                for (tier, variant), mapping in updates.items():
                    if tier in PERSISTED_TIERS:
                        self._save_with_retry(tier, variant, mapping)
                        written.append((tier, variant))
            except PersistenceFailure:
                for tier, variant in written:
                    try:
                        self.storage.save(tier, variant, previous[(tier, variant)])
                    except PersistenceFailure as e:
                        logger.error(f"回滚 {tier.value}/{variant.value} 失败: {e}")
                raise

        self.store.swap(updates)
        cleared = list(cleared)
        if cleared:
            self.ledger.clear(cleared)
            self._save_frequency()
        logger.debug(f"迁移提交 [{reason}]: {len(updates)} 份快照")

        if self.config.debug:
            conflicts = self.find_conflicts()
            if conflicts:
                raise InconsistentTierState(conflicts)

    def _save_with_retry(self, tier: Tier, variant: ToneVariant, mapping):
        attempts = max(self.config.save_retries, 0) + 1
        for attempt in range(1, attempts + 1):
            try:
                self.storage.save(tier, variant, mapping)
                return
            except PersistenceFailure as e:
                if attempt == attempts:
                    raise
                logger.warning(f"保存 {tier.value}/{variant.value} 失败，重试 {attempt}/{attempts - 1}: {e}")

    def _mark_promoted(self, keys: Iterable[str]):
        now = self.clock.now()
        for key in keys:
            self.promoted_at[key] = now

    def _backup(self, tiers: Iterable[Tier]):
        if self.storage is None:
            return
        for tier in tiers:
            for variant in VARIANTS:
                self.storage.backup(tier, variant)

    def _save_frequency(self):
        if self.frequency_storage is None:
            return
        try:
            self.frequency_storage.save(self.ledger.snapshot())
            self.ledger.dirty = False
        except PersistenceFailure as e:
            logger.warning(f"字频保存失败: {e}")

    def _load_state(self):
        if self.storage is None:
            return
        try:
            state = self.storage.load_state() or {}
        except PersistenceFailure as e:
            logger.warning(f"读取合并状态失败，使用默认值: {e}")
            return
        for variant in VARIANTS:
            self.last_merge[variant] = float(state.get('last_merge', {}).get(variant.value, 0.0))
        if 'last_demotion' in state:
            self.last_demotion = float(state['last_demotion'])
        self.promoted_at = {k: float(t) for k, t in state.get('promoted_at', {}).items()}

    def _save_state(self):
        if self.storage is None:
            return
        state = {
            'last_merge': {v.value: self.last_merge[v] for v in VARIANTS},
            'last_demotion': self.last_demotion,
            'promoted_at': dict(self.promoted_at),
        }
        try:
            self.storage.save_state(state)
        except PersistenceFailure as e:
            logger.warning(f"合并状态保存失败: {e}")


class NotFoundResolver:
    """后台补全：向外部来源查询未找到的字，命中后写入生僻字典"""

    def __init__(self, feedback: FeedbackLoop, sink, fetcher):
        self.feedback = feedback
        self.sink = sink
        self.fetcher = fetcher

    def process_batch(self, batch_size: int = 10) -> Dict[str, List[str]]:
        resolved: List[str] = []
        failed: List[str] = []
        known_tiers = (Tier.CUSTOM, Tier.COMMON, Tier.RARE, Tier.SELF_LEARNED)
        for char in self.sink.pending()[:batch_size]:
            if self.feedback.store.tiers_of(char, known_tiers):
                self.sink.discard(char)
                continue
            options = self.fetcher.fetch(char)
            if not options:
                failed.append(char)
                continue
            toned = options if any(has_tone_mark(o) for o in options) else None
            try:
                self.feedback.add_entry(Tier.RARE, char, toned=toned, untoned=untoned_of(options))
            except PersistenceFailure as e:
                logger.error(f"写入外部读音失败: {char} ({e})")
                failed.append(char)
                continue
            self.sink.discard(char)
            resolved.append(char)
        if resolved or failed:
            logger.info(f"未找到字符处理: 成功 {len(resolved)}，失败 {len(failed)}")
        return {'resolved': resolved, 'failed': failed}
