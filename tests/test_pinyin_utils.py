"""
拼音工具单元测试
"""

import pytest

from hanpin.engine.pinyin_utils import (
    add_tone,
    base_syllable,
    extract_tone,
    has_tone_mark,
    is_han,
    is_passthrough,
    is_valid_pinyin,
    mark_to_number,
    match_candidate,
    number_to_mark,
    parse_pinyin_options,
    split_syllables,
    strip_tone,
)


class TestToneConversion:
    """声调转换测试"""

    def test_strip_tone(self):
        assert strip_tone('xíng') == 'xing'
        assert strip_tone('lǜ') == 'lv'
        assert strip_tone('nǚ') == 'nv'
        assert strip_tone('hang') == 'hang'

    def test_base_syllable(self):
        assert base_syllable('Xíng') == 'xing'
        assert base_syllable('lv4') == 'lv'
        assert base_syllable('lü') == 'lv'

    def test_extract_tone(self):
        assert extract_tone('háng') == ('hang', 2)
        assert extract_tone('hang4') == ('hang', 4)
        assert extract_tone('de') == ('de', 0)

    def test_add_tone_positions(self):
        assert add_tone('xing', 2) == 'xíng'
        assert add_tone('gou', 3) == 'gǒu'
        assert add_tone('gui', 4) == 'guì'
        assert add_tone('liu', 2) == 'liú'
        assert add_tone('lv', 4) == 'lǜ'
        assert add_tone('lve', 4) == 'lüè'

    def test_add_tone_neutral(self):
        assert add_tone('de', 5) == 'de'
        assert add_tone('lv', 0) == 'lü'

    @pytest.mark.parametrize('syllable', ['xing', 'hang', 'zhong', 'lv', 'lve', 'gui', 'er'])
    def test_round_trip_base_syllable(self, syllable):
        """加声调再去声调，基础音节不变"""
        for tone in (1, 2, 3, 4):
            assert base_syllable(add_tone(syllable, tone)) == syllable

    def test_number_mark_conversion(self):
        assert number_to_mark('xing2') == 'xíng'
        assert number_to_mark('xíng') == 'xíng'
        assert mark_to_number('xíng') == 'xing2'
        assert mark_to_number('de') == 'de5'

    def test_has_tone_mark(self):
        assert has_tone_mark('zhōng')
        assert not has_tone_mark('zhong')


class TestCharacterClasses:
    """字符分类测试"""

    def test_is_han(self):
        assert is_han('行')
        assert is_han('㐀')
        assert not is_han('a')
        assert not is_han('，')
        assert not is_han('行为')

    def test_is_passthrough(self):
        for ch in 'aZ09_-+.':
            assert is_passthrough(ch)
        assert not is_passthrough('，')
        assert not is_passthrough('@')
        assert not is_passthrough('行')


class TestParsing:
    """拼音解析测试"""

    def test_parse_options_string(self):
        assert parse_pinyin_options('xíng háng,xíng') == ['xíng', 'háng']

    def test_parse_options_list(self):
        assert parse_pinyin_options(['hǎo', '', 'hào']) == ['hǎo', 'hào']
        assert parse_pinyin_options(None) == []

    def test_split_syllables_keeps_repeats(self):
        assert split_syllables('hā hā') == ['hā', 'hā']

    def test_is_valid_pinyin(self):
        assert is_valid_pinyin('xíng')
        assert is_valid_pinyin('xing2')
        assert not is_valid_pinyin('')
        assert not is_valid_pinyin('行')
        assert not is_valid_pinyin('xing 2')

    def test_match_candidate(self):
        assert match_candidate('háng', ['xíng', 'háng']) == 'háng'
        assert match_candidate('háng', ['xing', 'hang']) == 'hang'
        assert match_candidate('zhǎng', ['xíng', 'háng']) is None
