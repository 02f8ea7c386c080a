from __future__ import annotations

import pytest

from db import models
from marks.rules import Band, RuleTableError, load_rule_table, parse_rule_table, rules_from_db, store_rule_table


def _table(**rule):
    base = {"label": "only", "max": 12.0, "bands": [{"lt": 18, "prefix": "EK"}]}
    base.update(rule)
    return {"version": "t1", "rules": [base]}


def test_shipped_table_loads(rule_table):
    assert rule_table.version
    assert len(rule_table.rules) == 21
    assert {"egk", "lgk", "ogk", "ei", "oi"} <= set(rule_table.prefixes())


def test_yaml_anchor_expands_exact_heights(rule_table):
    size0 = next(r for r in rule_table.rules if r.label == "size 0")
    eq = next(b for b in size0.bands if b.kind == "eq")
    assert eq.values == (20.5, 21.0, 21.5)


def test_prefix_is_canonicalized():
    t = parse_rule_table(_table())
    assert t.rules[0].bands[0] == Band(kind="lt", prefix="ek", value=18.0)


@pytest.mark.parametrize("data,needle", [
    ({"rules": []}, "no version"),
    ({"version": "x", "rules": []}, "no rules"),
    (_table(bands=[]), "rule without bands"),
    (_table(bands=[{"lt": 18}]), "band without prefix"),
    (_table(bands=[{"lt": 18, "gt": 19, "prefix": "ek"}]), "exactly one of"),
    (_table(bands=[{"eq": [], "prefix": "ek"}]), "non-empty list"),
    (_table(bands=[{"lt": "eighteen", "prefix": "ek"}]), "expected a number"),
    (_table(min=13.0, max=12.0), "min 13.0 > max 12.0"),
])
def test_invalid_tables_are_rejected(data, needle):
    with pytest.raises(RuleTableError) as exc:
        parse_rule_table(data)
    assert needle in str(exc.value)


def test_error_names_location():
    with pytest.raises(RuleTableError) as exc:
        parse_rule_table(_table(bands=[{"lt": 18, "prefix": "ek"}, {"gt": 18}]))
    assert "rules[0].bands[1]" in str(exc.value)


def test_load_from_file(tmp_path):
    p = tmp_path / "rules.yaml"
    p.write_text(
        "version: v9\n"
        "rules:\n"
        "  - label: a\n"
        "    min: 10\n"
        "    max: 11\n"
        "    max_inclusive: false\n"
        "    bands:\n"
        "      - {lt: 18, inclusive: true, prefix: ek}\n",
        encoding="utf8",
    )
    t = load_rule_table(p)
    r = t.rules[0]
    assert (r.min_width, r.max_width, r.max_inclusive) == (10.0, 11.0, False)
    assert r.bands[0].inclusive is True


def test_store_and_read_back(session, rule_table):
    n = store_rule_table(session, rule_table)
    session.commit()
    assert n == len(rule_table.rules)
    back = rules_from_db(session)
    assert back.version == rule_table.version
    assert back.rules == rule_table.rules


def test_store_replaces_previous_table(session, rule_table):
    store_rule_table(session, rule_table)
    session.commit()
    store_rule_table(session, parse_rule_table(_table()))
    session.commit()
    assert session.query(models.SizeRule).count() == 1
    assert session.query(models.SizeBand).count() == 1
    assert rules_from_db(session).version == "t1"
