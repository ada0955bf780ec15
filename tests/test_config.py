"""Tests for review configuration and rule table loading."""

import json

import pytest

from config import ReviewConfig, load_config
from errors import ConfigError
from rules import DEFAULT_RULE_TABLE, ContextRule, load_rule_table


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (
        "PRVERDICT_MIN_CONFIDENCE",
        "PRVERDICT_DOWNGRADE_FLOOR",
        "PRVERDICT_ANALYZER_TIMEOUT_MS",
        "PRVERDICT_VALIDATION_WORKERS",
        "PRVERDICT_ENABLED_CATEGORIES",
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    config = load_config()

    assert config.min_confidence == 80
    assert config.downgrade_floor == 60
    assert config.enabled_categories == {"security", "quality", "framework", "testing"}
    assert config.analyzer_timeout == 30.0


def test_camel_case_file(tmp_path):
    path = tmp_path / "prverdict.json"
    path.write_text(
        json.dumps(
            {
                "minConfidence": 85,
                "downgradeFloor": 50,
                "analyzerTimeoutMs": 1500,
                "enabledCategories": ["security", "testing"],
            }
        )
    )

    config = load_config(path)

    assert (config.min_confidence, config.downgrade_floor) == (85, 50)
    assert config.analyzer_timeout == 1.5
    assert config.enabled_categories == {"security", "testing"}


def test_environment_wins_over_file(tmp_path, monkeypatch):
    path = tmp_path / "prverdict.json"
    path.write_text(json.dumps({"minConfidence": 85}))
    monkeypatch.setenv("PRVERDICT_MIN_CONFIDENCE", "90")
    monkeypatch.setenv("PRVERDICT_ENABLED_CATEGORIES", "security, quality")

    config = load_config(path)

    assert config.min_confidence == 90
    assert config.enabled_categories == {"security", "quality"}


@pytest.mark.parametrize(
    "data",
    [
        {"minConfidence": 50, "downgradeFloor": 70},
        {"minConfidence": 101},
        {"enabledCategories": ["performance"]},
        {"analyzerTimeoutMs": 0},
    ],
)
def test_invalid_config(tmp_path, data):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps(data))
    with pytest.raises(ConfigError):
        load_config(path)


def test_unreadable_config(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.json")


def test_category_compatibility():
    config = ReviewConfig()
    assert config.categories_compatible("security", "security")
    assert config.categories_compatible("framework", "security")
    assert not config.categories_compatible("quality", "testing")

    custom = ReviewConfig(mergeableCategories=[["quality", "testing"]])
    assert custom.categories_compatible("testing", "quality")
    assert not custom.categories_compatible("security", "framework")


def test_load_rule_table(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps(
            {
                "context_rules": [
                    {
                        "name": "generated",
                        "factor": "context_denies_relevance",
                        "delta": -20,
                        "pattern": "@generated",
                    }
                ]
            }
        )
    )

    table = load_rule_table(path)

    assert [r.name for r in table.context_rules] == ["generated"]
    assert table.context_rules[0].scope == "window"
    assert table.known_patterns == DEFAULT_RULE_TABLE.known_patterns


def test_rule_table_rejects_bad_regex(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps({"context_rules": [{"name": "x", "factor": "x", "delta": 1, "pattern": "("}]})
    )
    with pytest.raises(ConfigError):
        load_rule_table(path)


def test_context_rule_category_filter():
    rule = ContextRule(name="t", factor="t", delta=1, pattern="x", categories=("security",))
    assert rule.applies_to("security")
    assert not rule.applies_to("testing")


def test_default_catalog_flags_laravel_hazards():
    assert DEFAULT_RULE_TABLE.match_known("{!! $user->bio !!}").name == "unescaped_blade"
    assert DEFAULT_RULE_TABLE.match_known("DB::raw(\"count($col)\")").name == "raw_sql"
    assert DEFAULT_RULE_TABLE.match_known("$name = $user->name;") is None
