"""Label rule tables: name rules and signature rules, in priority order."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from binfeat.errors import RuleLoadError
from binfeat.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_RULES_PATH = Path(__file__).parent / "default_rules.yaml"
MATCH_POLICIES = ("exact", "substring", "prefix", "regex")


@dataclass(frozen=True)
class NameRule:
    """Match a function name.

    ``case_sensitive`` is explicit per rule; every policy, including
    ``regex``, honours it.
    """

    pattern: str
    label: str
    match: str = "substring"
    case_sensitive: bool = False
    _regex: re.Pattern[str] | None = field(default=None, init=False, repr=False, compare=False, hash=False)

    def __post_init__(self) -> None:
        if self.match not in MATCH_POLICIES:
            raise ValueError(f"unknown match policy {self.match!r}")
        if self.match == "regex":
            flags = 0 if self.case_sensitive else re.IGNORECASE
            object.__setattr__(self, "_regex", re.compile(self.pattern, flags))

    def matches(self, name: str) -> bool:
        if self._regex is not None:
            return self._regex.search(name) is not None
        pattern, subject = self.pattern, name
        if not self.case_sensitive:
            pattern, subject = pattern.lower(), subject.lower()
        if self.match == "exact":
            return subject == pattern
        if self.match == "prefix":
            return subject.startswith(pattern)
        return pattern in subject


@dataclass(frozen=True)
class SignatureRule:
    signature: str
    label: str


@dataclass(frozen=True)
class LabelRuleSet:
    name_rules: tuple[NameRule, ...] = ()
    signature_rules: tuple[SignatureRule, ...] = ()
    default_label: str = "Unknown"

    def unknown_signatures(self, known: Iterable[str]) -> list[str]:
        known_set = set(known)
        return [rule.signature for rule in self.signature_rules if rule.signature not in known_set]


# -- file format ----------------------------------------------------------


class NameRuleSpec(BaseModel):
    pattern: str = Field(min_length=1)
    label: str = Field(min_length=1)
    match: Literal["exact", "substring", "prefix", "regex"] = "substring"
    case_sensitive: bool = False


class SignatureRuleSpec(BaseModel):
    signature: str = Field(min_length=1)
    label: str = Field(min_length=1)


class RuleFile(BaseModel):
    default_label: str = "Unknown"
    name_rules: list[NameRuleSpec] = Field(default_factory=list)
    signature_rules: list[SignatureRuleSpec] = Field(default_factory=list)


def parse_rules(text: str, source: str = "<string>") -> LabelRuleSet:
    try:
        parsed = RuleFile.model_validate(yaml.safe_load(text) or {})
        return LabelRuleSet(
            name_rules=tuple(NameRule(**spec.model_dump()) for spec in parsed.name_rules),
            signature_rules=tuple(SignatureRule(**spec.model_dump()) for spec in parsed.signature_rules),
            default_label=parsed.default_label,
        )
    except (yaml.YAMLError, ValidationError, ValueError, re.error) as exc:
        raise RuleLoadError(f"cannot load label rules from {source}: {exc}") from exc


def load_label_rules(path: str | Path | None = None) -> LabelRuleSet:
    """Load a rule file, or the rules shipped with the package when ``path`` is None."""
    if path is None:
        text = DEFAULT_RULES_PATH.read_text()
        return parse_rules(text, source=DEFAULT_RULES_PATH.name)

    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise RuleLoadError(f"cannot read label rules {path}: {exc}") from exc
    rules = parse_rules(text, source=str(path))
    log.info(
        "label_rules_loaded",
        path=str(path),
        name_rules=len(rules.name_rules),
        signature_rules=len(rules.signature_rules),
    )
    return rules
