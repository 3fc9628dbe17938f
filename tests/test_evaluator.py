import pytest

from core.context import ResponseSnapshot
from core.evaluator import evaluate_main, evaluate_special, indicator_holds, spec_matches
from models.fingerprint import FingerprintRule, Indicator, MatchSpec, RequestTemplate


@pytest.fixture
def snapshot():
    return ResponseSnapshot(
        url="http://example.com/users/sign_in",
        status_code=200,
        headers={"server": "nginx/1.18.0", "x-powered-by": "PHP/7.4"},
        body="<html><title>Home</title>Powered by WordPress <a href='/wp-content/x'></a></html>",
        title="Home",
        asset_hashes={"http://example.com/favicon.ico": "ABCDEF0123456789ABCDEF0123456789"},
    )


def rule(name, *indicators, combinator="all", priority=1, path="/"):
    return FingerprintRule(
        name=name,
        priority_weight=priority,
        request_template=RequestTemplate(path=path),
        match_spec=MatchSpec(combinator=combinator, indicators=tuple(indicators)),
    )


@pytest.mark.parametrize("indicator,expected", [
    (Indicator(type="status_code", value="200"), True),
    (Indicator(type="status_code", value="404"), False),
    (Indicator(type="header", name="Server"), True),
    (Indicator(type="header", name="X-Missing"), False),
    (Indicator(type="header", name="SERVER", value="NGINX"), True),
    (Indicator(type="header", name="Server", value="apache"), False),
    (Indicator(type="header", name="X-Powered-By", pattern=r"php/\d"), True),
    (Indicator(type="body", value="Powered by WordPress"), True),
    (Indicator(type="body", value="powered by wordpress"), False),
    (Indicator(type="body_regex", pattern=r"wp-content/\w+"), True),
    (Indicator(type="body_regex", pattern=r"drupal"), False),
    (Indicator(type="favicon_hash", values=("abcdef0123456789abcdef0123456789",)), True),
    (Indicator(type="favicon_hash", values=("00000000000000000000000000000000",)), False),
    (Indicator(type="url", value="/users/sign_in"), True),
    (Indicator(type="url", value="/admin"), False),
])
def test_indicator_kinds(snapshot, indicator, expected):
    assert indicator_holds(indicator, snapshot) is expected


def test_all_and_any_combinators(snapshot):
    hit = Indicator(type="header", name="Server", value="nginx")
    miss = Indicator(type="body", value="Joomla")

    assert spec_matches(MatchSpec("all", (hit, hit)), snapshot)
    assert not spec_matches(MatchSpec("all", (hit, miss)), snapshot)
    assert spec_matches(MatchSpec("any", (miss, hit)), snapshot)
    assert not spec_matches(MatchSpec("any", (miss,)), snapshot)
    # An empty spec never matches
    assert not spec_matches(MatchSpec("all", ()), snapshot)
    assert not spec_matches(MatchSpec("any", ()), snapshot)


def test_group_indicator_nests_specs(snapshot):
    group = Indicator(type="group", match=MatchSpec("all", (
        Indicator(type="status_code", value="200"),
        Indicator(type="body", value="WordPress"),
    )))
    favicon = Indicator(type="favicon_hash", values=("ffff",))

    assert spec_matches(MatchSpec("any", (favicon, group)), snapshot)


def test_evaluate_main_scores_every_matching_rule(snapshot):
    rules = [
        rule("nginx", Indicator(type="header", name="Server", value="nginx"), priority=1),
        rule("WordPress", Indicator(type="body", value="Powered by WordPress"), priority=3),
        rule("Drupal", Indicator(type="body", value="Drupal"), priority=3),
    ]

    assert evaluate_main(snapshot, rules) == {"nginx": 1, "WordPress": 3}


def test_evaluate_is_deterministic_and_pure(snapshot):
    rules = (rule("nginx", Indicator(type="header", name="Server", value="nginx")),)
    headers_before = dict(snapshot.headers)

    first = evaluate_main(snapshot, rules)
    second = evaluate_main(snapshot, rules)

    assert first == second
    assert snapshot.headers == headers_before


def test_evaluate_special_checks_only_its_own_rule(snapshot):
    own = rule("weblogic", Indicator(type="body", value="Joomla"), path="/console/")
    other = rule("gitlab", Indicator(type="url", value="/users/sign_in"), path="/users/sign_in")

    # The snapshot would satisfy `other`, but it was produced by `own`'s probe
    assert evaluate_special(snapshot, own) == {}
    assert evaluate_special(snapshot, other) == {"gitlab": 1}
