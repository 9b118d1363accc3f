"""
测试公共夹具
"""

import pytest

from hanpin.engine import ConverterConfig, PinyinConverter, Tier, ToneVariant
from hanpin.engine.storage import ManualClock, MemoryDictionaryStorage, MemoryFrequencyStorage, MemoryNotFoundSink


COMMON_TONED = {
    '行': ['xíng', 'háng'],
    '为': ['wéi', 'wèi'],
    '银': ['yín'],
    '中': 'zhōng zhòng',
    '国': 'guó',
    '你': 'nǐ',
    '好': ['hǎo', 'hào'],
    '学': 'xué',
    '习': 'xí',
}

COMMON_UNTONED = {
    '行': ['xing', 'hang'],
    '为': ['wei'],
    '银': ['yin'],
    '中': 'zhong',
    '国': 'guo',
    '你': 'ni',
    '好': ['hao'],
    '学': 'xue',
    '习': 'xi',
}


def make_storage(extra=None):
    data = {
        (Tier.COMMON, ToneVariant.WITH_TONE): COMMON_TONED,
        (Tier.COMMON, ToneVariant.NO_TONE): COMMON_UNTONED,
    }
    data.update(extra or {})
    return MemoryDictionaryStorage(data)


def make_converter(storage=None, **config_kwargs):
    config_kwargs.setdefault('use_pypinyin_extended', False)
    config = ConverterConfig(**config_kwargs)
    return PinyinConverter(
        config,
        storage=storage or make_storage(),
        frequency_storage=MemoryFrequencyStorage(),
        not_found_sink=MemoryNotFoundSink(),
        clock=ManualClock(now=1_000_000.0),
    )


@pytest.fixture
def converter():
    return make_converter()
