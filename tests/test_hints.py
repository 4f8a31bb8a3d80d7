"""Tests for summary hint rules."""

from __future__ import annotations

import pytest

from activity_tracker.chunking.hints import DEFAULT_HINT_RULES, HintClassifier, HintContext, HintRule
from activity_tracker.errors import HintRuleError
from activity_tracker.events.schema import Highlights


@pytest.fixture
def classifier():
    return HintClassifier()


def _hl(clipboard=(), inputs=(), urls=()) -> Highlights:
    return Highlights(list(clipboard), list(inputs), list(urls))


class TestDefaultRules:
    @pytest.mark.parametrize(
        ("app", "window", "url", "highlights", "expected"),
        [
            ("Chrome", "HubSpot", "Unknown", _hl(clipboard=["Outreach plan"]), "Preparing outreach message in CRM"),
            ("Chrome", "Salesforce", "Unknown", _hl(inputs=["call back tomorrow"]), "Preparing outreach message in CRM"),
            ("Chrome", "HubSpot Contacts", "Unknown", _hl(), "Managing contacts and leads in CRM"),
            ("Chrome", "Salesforce", "Unknown", _hl(), "Working in CRM system"),
            ("Notion", "Roadmap", "Unknown", _hl(inputs=["Q3 goals"]), "Writing/editing documentation"),
            ("Confluence", "Runbook", "Unknown", _hl(), "Reading documentation"),
            ("VSCode", "main.py", "Unknown", _hl(inputs=["def f"]), "Coding and development work"),
            ("Safari", "Pull request", "https://github.com/x/y", _hl(), "Reviewing code or documentation"),
            ("Slack", "general", "Unknown", _hl(inputs=["hi"]), "Team communication and messaging"),
            ("Discord", "lobby", "Unknown", _hl(), "Reading team messages"),
            ("Outlook", "Inbox", "Unknown", _hl(inputs=["Dear"]), "Composing email correspondence"),
            ("Mail", "Inbox", "Unknown", _hl(), "Managing email inbox"),
            ("Chrome", "Wikipedia", "Unknown", _hl(clipboard=["fact"]), "Research and information gathering"),
            ("Chrome", "News", "Unknown", _hl(urls=["a", "b", "c"]), "Web browsing and navigation"),
            ("Safari", "News", "Unknown", _hl(urls=["a"]), "Web-based activity"),
            ("Figma", "Board", "Unknown", _hl(clipboard=["x"], inputs=["y"]), "Active content creation and research"),
            ("Figma", "Board", "Unknown", _hl(inputs=["y"]), "Text input and content creation"),
            ("Figma", "Board", "Unknown", _hl(clipboard=["x"]), "Information gathering and copying"),
            ("Figma", "Board", "Unknown", _hl(), "Figma activity"),
        ],
    )
    def test_category(self, classifier, app, window, url, highlights, expected):
        assert classifier.hint(app, window, url, highlights) == expected

    def test_first_match_wins(self, classifier):
        # Notion doc in Chrome with input: docs rule precedes the browser rules
        assert classifier.hint("Chrome", "Notion page", "Unknown", _hl(inputs=["x"])) == "Writing/editing documentation"

    def test_fallback_is_last(self):
        assert DEFAULT_HINT_RULES[-1].name == "fallback"
        assert DEFAULT_HINT_RULES[-1].conditions == {}


class TestCustomRules:
    def test_unknown_condition_never_matches(self):
        rule = HintRule("odd", "Odd", {"moon_phase": "full"})
        ctx = HintContext("App", "Win", "Unknown", _hl())
        assert rule.matches(ctx) is False
        assert HintClassifier([rule]).classify(ctx) == "App activity"

    def test_label_renders_app(self):
        ctx = HintContext("Excel", "Budget", "Unknown", _hl())
        assert HintRule("any", "Working in {app}").render(ctx) == "Working in Excel"

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "hints.yaml"
        path.write_text(
            "rules:\n"
            "  - name: spreadsheets\n"
            "    label: Spreadsheet work\n"
            "    conditions:\n"
            "      app_any: [excel, numbers]\n"
            "  - name: other\n"
            "    label: '{app} stuff'\n"
        )
        classifier = HintClassifier.from_yaml(path)
        assert [r.name for r in classifier.rules] == ["spreadsheets", "other"]
        assert classifier.hint("Excel", "Q3", "Unknown", _hl()) == "Spreadsheet work"
        assert classifier.hint("Word", "Q3", "Unknown", _hl()) == "Word stuff"

    def test_from_yaml_rejects_wrong_shape(self, tmp_path):
        path = tmp_path / "hints.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(HintRuleError):
            HintClassifier.from_yaml(path)

    def test_from_yaml_rejects_rule_without_label(self, tmp_path):
        path = tmp_path / "hints.yaml"
        path.write_text("rules:\n  - name: broken\n")
        with pytest.raises(HintRuleError, match="position 0"):
            HintClassifier.from_yaml(path)

    @pytest.mark.parametrize(
        "conditions",
        [
            "clicked_urls_min: '3'",
            "clicked_urls_min: true",
            "has_input: 'maybe'",
            "app_any: excel",
            "app_any: [excel, 3]",
            "window_any: [budget]",
        ],
    )
    def test_from_yaml_rejects_bad_condition(self, tmp_path, conditions):
        path = tmp_path / "hints.yaml"
        path.write_text(f"rules:\n  - name: bad\n    label: Bad\n    conditions:\n      {conditions}\n")
        with pytest.raises(HintRuleError, match="position 0"):
            HintClassifier.from_yaml(path)

    def test_from_yaml_accepts_typed_conditions(self, tmp_path):
        path = tmp_path / "hints.yaml"
        path.write_text(
            "rules:\n"
            "  - name: research\n"
            "    label: Researching\n"
            "    conditions:\n"
            "      has_input: yes\n"
            "      clicked_urls_min: 2\n"
        )
        classifier = HintClassifier.from_yaml(path)
        highlights = _hl(inputs=["query"], urls=["https://a.example", "https://b.example"])
        assert classifier.hint("Chrome", "Search", "Unknown", highlights) == "Researching"
        assert classifier.hint("Chrome", "Search", "Unknown", _hl(inputs=["query"])) == "Chrome activity"
