"""Priority-ordered labeling: name match, then signature match, then default.

Each stage is a pure function of an immutable :class:`Evidence` tuple that
returns a :class:`LabelDecision` or None; :func:`explain` runs them in order
and stops at the first decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping

from binfeat.labeling.rules import LabelRuleSet


@dataclass(frozen=True)
class Evidence:
    name: str
    signatures: tuple[tuple[str, int], ...]

    @classmethod
    def of(cls, name: str, crypto_signatures: Mapping[str, int]) -> Evidence:
        return cls(name=name, signatures=tuple(sorted(crypto_signatures.items())))

    def fired(self, signature: str) -> bool:
        return any(sig == signature and count > 0 for sig, count in self.signatures)


@dataclass(frozen=True)
class LabelDecision:
    label: str
    stage: str  # "name" | "signature" | "default"
    rule: str = ""

    def source(self) -> str:
        return f"{self.stage}:{self.rule}" if self.rule else self.stage


Stage = Callable[[Evidence, LabelRuleSet], "LabelDecision | None"]


def name_stage(evidence: Evidence, rules: LabelRuleSet) -> LabelDecision | None:
    for rule in rules.name_rules:
        if rule.matches(evidence.name):
            return LabelDecision(rule.label, "name", f"{rule.match}:{rule.pattern}")
    return None


def signature_stage(evidence: Evidence, rules: LabelRuleSet) -> LabelDecision | None:
    for rule in rules.signature_rules:
        if evidence.fired(rule.signature):
            return LabelDecision(rule.label, "signature", rule.signature)
    return None


def default_stage(evidence: Evidence, rules: LabelRuleSet) -> LabelDecision:
    return LabelDecision(rules.default_label, "default")


STAGES: tuple[Stage, ...] = (name_stage, signature_stage, default_stage)


def explain(name: str, crypto_signatures: Mapping[str, int], rules: LabelRuleSet) -> LabelDecision:
    evidence = Evidence.of(name, crypto_signatures)
    for stage in STAGES:
        decision = stage(evidence, rules)
        if decision is not None:
            return decision
    return default_stage(evidence, rules)


def classify(name: str, crypto_signatures: Mapping[str, int], rules: LabelRuleSet) -> str:
    return explain(name, crypto_signatures, rules).label
