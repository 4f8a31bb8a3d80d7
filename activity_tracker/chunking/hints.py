"""Summary hint rules: advisory one-line labels for activity chunks.

Rules are evaluated in order and the first match wins. Each rule is a set of
keyword/flag conditions over the chunk's lowercase context (app, window
title, URL) and its highlights. The default table can be replaced by a YAML
file of the same shape::

    rules:
      - name: crm_outreach
        label: Preparing outreach message in CRM
        conditions:
          context_any: [hubspot, salesforce]
          clipboard_any: [outreach]

A label may reference ``{app}``, the chunk's primary application.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from activity_tracker.errors import HintRuleError
from activity_tracker.events.schema import Highlights

logger = logging.getLogger(__name__)

_CRM = ["hubspot", "salesforce"]
_DOCS = ["docs", "notion", "confluence"]
_CODE = ["vscode", "github", "code"]
_MESSAGING = ["slack", "teams", "discord"]
_EMAIL = ["mail", "gmail", "outlook"]
_BROWSERS = ["chrome", "safari"]


@dataclass
class HintContext:
    """Everything a hint rule may inspect for one chunk."""

    app: str
    window_title: str
    url: str
    highlights: Highlights
    context: str = field(init=False)
    clipboard_text: str = field(init=False)
    input_text: str = field(init=False)

    def __post_init__(self) -> None:
        self.context = f"{self.app} {self.window_title} {self.url}".lower()
        self.clipboard_text = " ".join(self.highlights.clipboard_texts).lower()
        self.input_text = " ".join(self.highlights.input_texts).lower()


@dataclass
class HintRule:
    """A labelled conjunction of conditions."""

    name: str
    label: str
    conditions: dict[str, Any] = field(default_factory=dict)

    def matches(self, ctx: HintContext) -> bool:
        for condition, expected in self.conditions.items():
            if not _check_condition(ctx, condition, expected):
                return False
        return True

    def render(self, ctx: HintContext) -> str:
        return self.label.replace("{app}", ctx.app)


def _contains_any(text: str, keywords: Any) -> bool:
    return any(str(k).lower() in text for k in keywords)


def _check_condition(ctx: HintContext, condition: str, expected: Any) -> bool:
    """Check a single condition against a chunk's context."""
    if condition == "context_any":
        return _contains_any(ctx.context, expected)
    elif condition == "context_also_any":
        return _contains_any(ctx.context, expected)
    elif condition == "app_any":
        return _contains_any(ctx.app.lower(), expected)
    elif condition == "clipboard_any":
        return _contains_any(ctx.clipboard_text, expected)
    elif condition == "input_any":
        return _contains_any(ctx.input_text, expected)
    elif condition == "has_input":
        return bool(ctx.input_text) == bool(expected)
    elif condition == "has_clipboard":
        return bool(ctx.highlights.clipboard_texts) == bool(expected)
    elif condition == "clicked_urls_min":
        return len(ctx.highlights.clicked_urls) >= expected
    else:
        logger.error("Unknown hint condition: %s, rule will not match", condition)
        return False


_KEYWORD_CONDITIONS = {"context_any", "context_also_any", "app_any", "clipboard_any", "input_any"}
_FLAG_CONDITIONS = {"has_input", "has_clipboard"}
_COUNT_CONDITIONS = {"clicked_urls_min"}


def validate_conditions(conditions: dict[str, Any]) -> None:
    """Raise ValueError for an unknown condition or a value of the wrong type."""
    for condition, expected in conditions.items():
        if condition in _KEYWORD_CONDITIONS:
            if not isinstance(expected, list) or not all(isinstance(k, str) for k in expected):
                raise ValueError(f"{condition} must be a list of strings")
        elif condition in _FLAG_CONDITIONS:
            if not isinstance(expected, bool):
                raise ValueError(f"{condition} must be true or false")
        elif condition in _COUNT_CONDITIONS:
            if isinstance(expected, bool) or not isinstance(expected, int):
                raise ValueError(f"{condition} must be an integer")
        else:
            raise ValueError(f"unknown condition {condition!r}")


# Ordered: category rules first, generic activity heuristics last
DEFAULT_HINT_RULES = [
    HintRule("crm_outreach_clipboard", "Preparing outreach message in CRM",
             {"context_any": _CRM, "clipboard_any": ["outreach"]}),
    HintRule("crm_outreach_input", "Preparing outreach message in CRM",
             {"context_any": _CRM, "input_any": ["call", "email"]}),
    HintRule("crm_contacts", "Managing contacts and leads in CRM",
             {"context_any": _CRM, "context_also_any": ["contact", "lead"]}),
    HintRule("crm", "Working in CRM system", {"context_any": _CRM}),
    HintRule("docs_writing", "Writing/editing documentation", {"context_any": _DOCS, "has_input": True}),
    HintRule("docs_reading", "Reading documentation", {"context_any": _DOCS}),
    HintRule("coding", "Coding and development work", {"context_any": _CODE, "has_input": True}),
    HintRule("code_review", "Reviewing code or documentation", {"context_any": _CODE}),
    HintRule("messaging_writing", "Team communication and messaging",
             {"context_any": _MESSAGING, "has_input": True}),
    HintRule("messaging_reading", "Reading team messages", {"context_any": _MESSAGING}),
    HintRule("email_writing", "Composing email correspondence", {"context_any": _EMAIL, "has_input": True}),
    HintRule("email_inbox", "Managing email inbox", {"context_any": _EMAIL}),
    HintRule("browser_research", "Research and information gathering",
             {"app_any": _BROWSERS, "has_clipboard": True}),
    HintRule("browser_navigation", "Web browsing and navigation",
             {"app_any": _BROWSERS, "clicked_urls_min": 3}),
    HintRule("browser", "Web-based activity", {"app_any": _BROWSERS}),
    HintRule("content_creation", "Active content creation and research",
             {"has_input": True, "has_clipboard": True}),
    HintRule("text_input", "Text input and content creation", {"has_input": True}),
    HintRule("information_gathering", "Information gathering and copying", {"has_clipboard": True}),
    HintRule("fallback", "{app} activity"),
]


class HintClassifier:
    """First-match-wins evaluation of a hint rule table."""

    def __init__(self, rules: list[HintRule] | None = None) -> None:
        self._rules = list(rules) if rules is not None else list(DEFAULT_HINT_RULES)

    @property
    def rules(self) -> list[HintRule]:
        return list(self._rules)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> HintClassifier:
        """Load hint rules from a YAML file.

        Raises:
            HintRuleError: the file is not a ``rules`` list of name/label entries,
                or a rule has an unknown condition or a mistyped value.
        """
        path = Path(config_path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict) or not isinstance(data.get("rules"), list):
            raise HintRuleError(f"{path}: expected a mapping with a 'rules' list")

        rules = []
        for index, rule_data in enumerate(data["rules"]):
            try:
                conditions = dict(rule_data.get("conditions") or {})
                validate_conditions(conditions)
                rules.append(HintRule(name=rule_data["name"], label=rule_data["label"], conditions=conditions))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                raise HintRuleError(f"{path}: invalid rule at position {index}: {exc}") from exc
        logger.info("Loaded %d hint rules from %s", len(rules), path)
        return cls(rules=rules)

    def classify(self, ctx: HintContext) -> str:
        for rule in self._rules:
            if rule.matches(ctx):
                return rule.render(ctx)
        return f"{ctx.app} activity"

    def hint(self, app: str, window_title: str, url: str, highlights: Highlights) -> str:
        return self.classify(HintContext(app, window_title, url, highlights))
