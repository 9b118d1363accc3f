"""
多音字规则测试
"""

import pytest

from hanpin.engine.errors import InvalidRule
from hanpin.engine.polyphone import Context, PolyphoneRule, PolyphoneRuleSet, RuleKind


def rules_for_xing():
    return PolyphoneRuleSet({
        '行': [
            {'type': 'post', 'char': '为', 'pinyin': 'xíng'},
            {'type': 'pre', 'char': '银', 'pinyin': 'háng'},
            {'type': 'word', 'word': '行话', 'pinyin': 'háng'},
        ]
    })


class TestContext:
    """上下文构建"""

    def test_around_middle(self):
        ctx = Context.around('银行为', 1)
        assert ctx.prev == '银'
        assert ctx.next == '为'
        assert ctx.word == '银行为'
        assert ctx.text == '银行为'

    def test_around_edges(self):
        ctx = Context.around('行', 0, full_text='整段行')
        assert ctx.prev == '' and ctx.next == ''
        assert ctx.word == '行'
        assert ctx.text == '整段行'


class TestScoring:
    """规则评分"""

    def test_post_and_pre(self):
        rules = rules_for_xing()
        assert rules.score_and_select('行', ['xíng', 'háng'], Context.around('行为', 0)) == 'xíng'
        assert rules.score_and_select('行', ['xíng', 'háng'], Context.around('银行', 1)) == 'háng'

    def test_no_context(self):
        rules = rules_for_xing()
        assert rules.score_and_select('行', ['xíng', 'háng'], None) is None
        assert rules.score_and_select('行', ['xíng', 'háng'], Context()) is None

    def test_word_rule_uses_window(self):
        rules = PolyphoneRuleSet({'长': [{'type': 'word', 'word': '长期', 'pinyin': 'cháng'}]})
        assert rules.score_and_select('长', ['zhǎng', 'cháng'], Context.around('长期', 0)) == 'cháng'
        # 三字窗口 “很长期” 与目标词不相等
        assert rules.score_and_select('长', ['zhǎng', 'cháng'], Context.around('很长期', 1)) is None

    def test_pattern_rule(self):
        rules = PolyphoneRuleSet({'行': [{'type': 'pattern', 'pattern': '银行.*账户', 'pinyin': 'háng'}]})
        ctx = Context.around('银行账户', 1)
        assert rules.score_and_select('行', ['xíng', 'háng'], ctx) == 'háng'

    def test_below_threshold(self):
        rules = PolyphoneRuleSet({'行': [{'type': 'post', 'char': '为', 'pinyin': 'háng', 'weight': 0.5}]})
        # 0.8 × 0.5 = 0.4 < 0.5
        assert rules.score_and_select('行', ['xíng', 'háng'], Context.around('行为', 0)) is None

    def test_tie_goes_to_first_rule(self):
        rules = PolyphoneRuleSet({'行': [
            {'type': 'post', 'char': '为', 'pinyin': 'háng'},
            {'type': 'pre', 'char': '银', 'pinyin': 'xíng'},
        ]})
        assert rules.score_and_select('行', ['xíng', 'háng'], Context.around('银行为', 1)) == 'háng'

    def test_higher_score_wins(self):
        rules = PolyphoneRuleSet({'行': [
            {'type': 'post', 'char': '话', 'pinyin': 'xíng'},
            {'type': 'word', 'word': '行话', 'pinyin': 'háng'},
        ]})
        assert rules.score_and_select('行', ['xíng', 'háng'], Context.around('行话', 0)) == 'háng'

    def test_base_syllable_match_returns_candidate(self):
        rules = PolyphoneRuleSet({'行': [{'type': 'post', 'char': '为', 'pinyin': 'hàng'}]})
        # hàng 的基础音节与候选 háng 相同，返回候选中的写法
        assert rules.score_and_select('行', ['xíng', 'háng'], Context.around('行为', 0)) == 'háng'

    def test_rule_outside_candidates_is_inert(self):
        rules = PolyphoneRuleSet({'行': [
            {'type': 'post', 'char': '为', 'pinyin': 'háng', 'weight': 2.0},
            {'type': 'post', 'char': '为', 'pinyin': 'xíng', 'weight': 0.7},
        ]})
        assert rules.score_and_select('行', ['xíng'], Context.around('行为', 0)) == 'xíng'

    def test_numbered_pinyin_matches_untoned_candidates(self):
        rules = PolyphoneRuleSet({'行': [{'type': 'pre', 'char': '银', 'pinyin': 'hang2'}]})
        assert rules.score_and_select('行', ['xing', 'hang'], Context.around('银行', 1)) == 'hang'

    def test_deterministic(self):
        rules = rules_for_xing()
        ctx = Context.around('银行为', 1)
        results = {rules.score_and_select('行', ['xíng', 'háng'], ctx) for _ in range(20)}
        assert len(results) == 1


class TestRegistration:
    """规则注册与校验"""

    def test_create_converts_numbered_pinyin(self):
        rule = PolyphoneRule.create('行', 'post', '为', 'xing2')
        assert rule.kind is RuleKind.POST
        assert rule.pinyin == 'xíng'

    def test_kind_aliases(self):
        assert PolyphoneRule.create('行', 'prev', '银', 'háng').kind is RuleKind.PRE
        assert PolyphoneRule.create('行', 'regex', '银行', 'háng').kind is RuleKind.PATTERN

    @pytest.mark.parametrize('rule', [
        {'type': 'unknown', 'char': '为', 'pinyin': 'xíng'},
        {'type': 'post', 'pinyin': 'xíng'},
        {'type': 'post', 'char': '为'},
        {'type': 'post', 'char': '为', 'pinyin': '行'},
        {'type': 'post', 'char': '为', 'pinyin': 'xíng', 'weight': -1},
        {'type': 'post', 'char': '为', 'pinyin': 'xíng', 'weight': 'heavy'},
        {'type': 'pattern', 'pattern': '([', 'pinyin': 'xíng'},
    ])
    def test_invalid_rules_rejected(self, rule):
        with pytest.raises(InvalidRule):
            PolyphoneRuleSet().register('行', rule)

    def test_register_requires_single_char(self):
        with pytest.raises(InvalidRule):
            PolyphoneRuleSet().register('行为', {'type': 'post', 'char': '为', 'pinyin': 'xíng'})

    def test_load_is_all_or_nothing(self):
        rules = PolyphoneRuleSet()
        with pytest.raises(InvalidRule):
            rules.load({
                '行': [{'type': 'post', 'char': '为', 'pinyin': 'xíng'}],
                '长': [{'type': 'post', 'char': '度', 'pinyin': 'cháng', 'weight': -2}],
            })
        assert len(rules) == 0

    def test_to_mapping_round_trip(self):
        rules = rules_for_xing()
        again = PolyphoneRuleSet(rules.to_mapping())
        assert again.rules_for('行') == rules.rules_for('行')


class TestDefaultRules:
    """内置规则"""

    def test_default_rules_load(self):
        rules = PolyphoneRuleSet.default()
        assert '行' in rules
        assert '长' in rules

    def test_default_rules_behaviour(self):
        rules = PolyphoneRuleSet.default()
        assert rules.score_and_select('行', ['xíng', 'háng'], Context.around('银行', 1)) == 'háng'
        assert rules.score_and_select('行', ['xíng', 'háng'], Context.around('行为', 0)) == 'xíng'
        assert rules.score_and_select('调', ['diào', 'tiáo'], Context.around('调试', 0)) == 'tiáo'
        assert rules.score_and_select('度', ['dù', 'duó'], Context.around('度娘', 0)) == 'dù'

    def test_from_file(self, tmp_path):
        path = tmp_path / 'rules.json'
        path.write_text('{"乐": [{"type": "pre", "char": "音", "pinyin": "yuè"}]}', encoding='utf-8')
        rules = PolyphoneRuleSet.from_file(path)
        assert rules.score_and_select('乐', ['lè', 'yuè'], Context.around('音乐', 1)) == 'yuè'
