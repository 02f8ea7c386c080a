from __future__ import annotations

import math

import pytest

from marks.errors import NoMatch
from marks.normalize import round1
from marks.resolver import explain, resolve_prefix, resolve_series
from marks.rules import find_overlaps


def _grid(start: float, stop: float, step: float):
    n = int(round((stop - start) / step))
    return [round1(start + i * step) for i in range(n + 1)]


def test_grid_is_stable_and_never_raises(rule_table):
    known = set(rule_table.prefixes())
    for w in _grid(10.0, 27.0, 0.1):
        for h in _grid(17.0, 32.0, 0.5):
            first = resolve_prefix(w, h, rule_table)
            assert first is None or first in known
            assert resolve_prefix(w, h, rule_table) == first


@pytest.mark.parametrize("w,h,expected", [
    (10.4, 18.5, "ogk"),
    (10.4, 21.0, "lgk"),
    (10.4, 17.0, "egk"),
    (5.0, 17.0, "egk"),  # no lower bound on the first bucket
])
def test_first_bucket(rule_table, w, h, expected):
    assert resolve_prefix(w, h, rule_table) == expected


def test_bucket_lower_bound_exclusive_upper_inclusive(rule_table):
    # (10.5, 11.3]: 10.5 belongs to the previous bucket, 11.3 to this one
    assert resolve_prefix(10.5, 17.0, rule_table) == "egk"
    assert resolve_prefix(10.6, 17.0, rule_table) == "eak"
    assert resolve_prefix(11.3, 17.0, rule_table) == "eak"
    assert resolve_prefix(11.4, 17.0, rule_table) == "ekb"


def test_explicit_inclusivity_flags(rule_table):
    # size 3 is (11.4, 11.8) and size 4 is [11.8, 11.9]
    assert resolve_prefix(11.7, 18.0, rule_table) == "eb"  # inclusive lt 18
    assert resolve_prefix(11.8, 18.5, rule_table) == "ekg"
    assert explain(11.8, 18.5, rule_table).rule.label == "size 4"


def test_exact_height_beats_threshold(rule_table):
    # 21.0 is also > 18.5, but the exact band wins
    assert resolve_prefix(12.0, 21.0, rule_table) == "ls"
    assert resolve_prefix(12.0, 21.04, rule_table) == "ls"
    assert resolve_prefix(12.0, 21.1, rule_table) == "os"


def test_tolerance_parameter_and_env(rule_table, monkeypatch):
    assert resolve_prefix(12.0, 21.04, rule_table, tolerance=0.0) == "os"
    monkeypatch.setenv("BMARK_TOL_CM", "0")
    assert resolve_prefix(12.0, 21.04, rule_table) == "os"
    monkeypatch.setenv("BMARK_TOL_CM", "not-a-number")
    assert resolve_prefix(12.0, 21.04, rule_table) == "ls"


def test_strict_thresholds_leave_gap(rule_table):
    # lt 17.5 and gt 17.5 are both strict; 17.5 itself is not covered
    assert resolve_prefix(10.4, 17.5, rule_table) is None


def test_overlapping_buckets_first_wins(rule_table):
    assert resolve_prefix(13.2, 20.0, rule_table) == "ekn"
    assert resolve_prefix(13.45, 20.0, rule_table) == "en"
    assert resolve_prefix(13.45, 21.0, rule_table) == "ln"
    # The first matching bucket decides even when its bands miss the height
    res = explain(13.2, 21.0, rule_table)
    assert res.prefix is None
    assert res.rule is not None and res.rule.label == "size 9"


def test_find_overlaps_reports_known_pairs(rule_table):
    pairs = {(a.label, b.label) for a, b in find_overlaps(rule_table.rules)}
    assert pairs == {("size 9", "size 10"), ("size 10", "size 11")}


def test_out_of_range_and_non_finite(rule_table):
    assert resolve_prefix(27.5, 20.0, rule_table) is None
    assert resolve_prefix(math.nan, 20.0, rule_table) is None
    assert resolve_prefix(12.0, math.inf, rule_table) is None


def test_fallback_prefix_is_resolved_verbatim(rule_table):
    # 'oi' is returned as is; the allocator applies the 'k' fallback
    assert resolve_prefix(12.45, 19.5, rule_table) == "oi"


def test_explain_as_dict(rule_table):
    d = explain(10.4, 21.0, rule_table).as_dict()
    assert d["prefix"] == "lgk"
    assert d["bucket"] == "size 0"
    assert d["band"] == "eq"
    assert d["bucket_range"] == "(-inf, 10.5]"


def test_resolve_series_reads_stored_rules(session, stored_rules):
    assert resolve_series(session, 10.4, 18.5) == "ogk"


def test_resolve_series_no_match(session, stored_rules):
    with pytest.raises(NoMatch):
        resolve_series(session, 10.4, 17.5)


def test_resolve_series_default_only_when_configured(session, stored_rules, monkeypatch):
    monkeypatch.setenv("BMARK_DEFAULT_SERIES", " EGK ")
    assert resolve_series(session, 10.4, 17.5) == "egk"


def test_resolve_series_empty_table(session):
    with pytest.raises(NoMatch):
        resolve_series(session, 10.4, 18.5)
