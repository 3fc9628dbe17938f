from core.aggregator import MatchAggregator, collapse_honeypot, merge_outcomes
from models.detection import ScanResult, is_honeypot_name


def test_merge_outcomes_keeps_max_per_name():
    merged = merge_outcomes({"nginx": 1, "php": 2}, {"nginx": 3, "jquery": 0})
    assert merged == {"nginx": 3, "php": 2, "jquery": 0}


def test_priority_is_max_not_sum():
    aggregator = MatchAggregator()
    aggregator.add({"nginx": 2})
    aggregator.add({"WordPress": 3})
    aggregator.add({"php": 1})

    assert aggregator.priority == 3
    assert aggregator.names == {"nginx", "WordPress", "php"}


def test_priority_is_monotonic_and_first_seen_wins_ties():
    aggregator = MatchAggregator()
    seen = []
    for outcome in ({"a": 2}, {"b": 2}, {}, {"c": 1}, {"a": 0}):
        aggregator.add(outcome)
        seen.append(aggregator.priority)

    assert seen == sorted(seen)
    assert aggregator.priority == 2
    assert aggregator.top_match == "a"


def test_duplicate_names_across_hops_are_unioned():
    aggregator = MatchAggregator()
    aggregator.add({"nginx": 1})
    aggregator.add({"nginx": 1})

    assert aggregator.names == {"nginx"}


def test_collapse_honeypot_threshold():
    five = {f"p{i}" for i in range(5)}
    six = five | {"p5"}

    assert collapse_honeypot(five, 5) is None
    sentinel = collapse_honeypot(six, 5)
    assert sentinel == "Honeypot 6"
    assert is_honeypot_name(sentinel)
    assert not is_honeypot_name("Honeypot-CMS")


def test_scan_result_to_dict_is_sorted():
    result = ScanResult(url="http://a", matched_names={"b", "a"}, plugins={"t2", "t1"}, priority=2)
    assert result.to_dict() == {
        "url": "http://a",
        "matched_names": ["a", "b"],
        "priority": 2,
        "length": 0,
        "title": "",
        "plugins": ["t1", "t2"],
    }
