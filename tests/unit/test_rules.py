from tracemind.heuristics.rules import Rule, all_matches, first_match, keyword_rules, pattern


def test_first_match_returns_rule_and_result():
    rules = (
        Rule("short", lambda value: len(value) < 3, "short"),
        Rule("has_a", pattern("a"), "has_a"),
    )

    rule, result = first_match(rules, "banana")
    assert rule.name == "has_a"
    assert result == "has_a"

    rule, result = first_match(rules, "xyz123", default="none")
    assert rule is None
    assert result == "none"


def test_all_matches_deduplicates_results():
    rules = keyword_rules([("cat|kitten", "pets"), ("dog", "pets"), ("rain", "weather")])
    assert all_matches(rules, "my cat and my dog hate rain") == ["pets", "weather"]


def test_pattern_ignores_non_strings():
    predicate = pattern("hello")
    assert predicate("Hello there")
    assert not predicate(None)
    assert not predicate(42)
