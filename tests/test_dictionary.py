"""
分层字典与字频测试
"""

from types import MappingProxyType

from hanpin.engine.dictionary import Tier, TierEntry, TierStore, ToneVariant, normalize_entries, untoned_of
from hanpin.engine.frequency import FrequencyLedger


W, N = ToneVariant.WITH_TONE, ToneVariant.NO_TONE


class TestNormalize:
    def test_drops_empty_entries(self):
        data = normalize_entries({' 行 ': 'xíng háng', '空': '', '': 'a', '列': []})
        assert data == {'行': ('xíng', 'háng')}

    def test_words_keep_syllable_order(self):
        assert normalize_entries({'哈哈': 'hā hā'}) == {'哈哈': ('hā', 'hā')}

    def test_untoned_of(self):
        assert untoned_of(['hǎo', 'hào']) == ('hao',)


class TestTierStore:
    def test_snapshots_are_read_only(self):
        store = TierStore({(Tier.COMMON, W): {'行': 'xíng'}})
        assert isinstance(store.snapshot(Tier.COMMON, W), MappingProxyType)
        assert store.get(Tier.COMMON, W, '行') == ('xíng',)
        assert store.get(Tier.RARE, W, '行') is None

    def test_entry(self):
        store = TierStore({(Tier.COMMON, N): {'行': 'xing'}})
        entry = store.entry(Tier.COMMON, '行')
        assert entry == TierEntry(Tier.COMMON, None, ('xing',))
        assert entry.candidates() == ('xing',)
        assert not entry.has_tone
        assert store.entry(Tier.RARE, '行') is None

    def test_swap_is_atomic_reference_change(self):
        store = TierStore({(Tier.COMMON, W): {'行': 'xíng'}})
        old = store.snapshot(Tier.COMMON, W)
        updated = store.mutable_copy(Tier.COMMON, W)
        updated['为'] = ('wéi',)
        store.swap({(Tier.COMMON, W): updated})
        assert '为' not in old
        assert '为' in store.snapshot(Tier.COMMON, W)
        assert store.generation == 1

    def test_keys_and_sizes(self):
        store = TierStore({
            (Tier.RARE, W): {'甲': 'jiǎ', '乙': 'yǐ'},
            (Tier.RARE, N): {'乙': 'yi', '丙': 'bing'},
        })
        assert store.keys(Tier.RARE) == ['甲', '乙', '丙']
        assert store.keys(Tier.RARE, N) == ['乙', '丙']
        assert store.sizes()['rare'] == {'with_tone': 2, 'no_tone': 2}
        assert store.tiers_of('乙') == [Tier.RARE]

    def test_custom_words_longest_first(self):
        store = TierStore({(Tier.CUSTOM, W): {'行': 'háng', '银行': 'yín háng', '中国银行': 'zhōng guó yín háng'}})
        assert [w for w, _ in store.custom_words(W)] == ['中国银行', '银行']


class TestFrequencyLedger:
    def test_increment_and_clear(self):
        ledger = FrequencyLedger()
        assert ledger.increment('行') == 1
        assert ledger.increment('行') == 2
        ledger.clear(['行'])
        assert ledger.get('行') == 0
        assert ledger.dirty

    def test_rank_stable(self):
        ledger = FrequencyLedger({'甲': 1, '乙': 5, '丙': 5})
        assert ledger.rank(['甲', '乙', '丙']) == ['乙', '丙', '甲']
        assert ledger.rank(['甲', '乙', '丙'], descending=False) == ['甲', '乙', '丙']

    def test_average(self):
        ledger = FrequencyLedger({'甲': 2, '乙': 4})
        assert ledger.average(['甲', '乙', '丙']) == 2.0
        assert ledger.average([]) == 0.0

    def test_update_ignores_bad_values(self):
        ledger = FrequencyLedger({'甲': '3', '乙': 'x', '丙': -2})
        assert ledger.snapshot() == {'甲': 3, '丙': 0}
