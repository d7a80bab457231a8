# analyzer/src/zift/engine.py
# Rule evaluation and scoring over the package-wide fact set.
import os
from dataclasses import dataclass, field
from typing import Iterable

from zift.facts import Fact, FactKind, FactSet
from zift.rules import (
    CLUSTER_BONUS, DANGEROUS_SINK_KINDS, ENCODER_MULTIPLIER, LIFECYCLE_MULTIPLIER, MAX_SCORE,
    OPTIONAL_BONUS, READ_KINDS, RULES, SINK_KINDS, Rule, classify,
)


@dataclass(frozen=True)
class Trigger:
    kind: FactKind
    file: str
    line: int
    context: str

    @classmethod
    def from_fact(cls, fact: Fact) -> 'Trigger':
        return cls(fact.kind, fact.file, fact.line, fact.context)

    def to_dict(self, package_dir=None) -> dict:
        file = self.file
        if package_dir is not None:
            file = os.path.relpath(file, package_dir)
        return {'type': self.kind.value, 'file': file, 'line': self.line, 'context': self.context}


@dataclass
class Finding:
    rule_id: str
    alias: str
    name: str
    score: int
    classification: str
    triggers: list[Trigger] = field(default_factory=list)
    is_lifecycle: bool = False
    priority: int = 0
    description: str = ''

    def to_dict(self, package_dir=None) -> dict:
        return {
            'id': self.rule_id,
            'alias': self.alias,
            'name': self.name,
            'score': self.score,
            'classification': self.classification,
            'triggers': [t.to_dict(package_dir) for t in self.triggers],
            'description': self.description,
            'isLifecycle': self.is_lifecycle,
        }


def _normalize(paths: Iterable) -> set[str]:
    return {os.path.normpath(str(p)) for p in paths}


def score_rule(rule: Rule, facts: FactSet, lifecycle_files: set[str]) -> Finding | None:
    """Score one rule against the facts; None when a required kind is missing."""
    if not all(facts.has(kind) for kind in rule.required_kinds):
        return None

    matched = []
    for kind in rule.required_kinds:
        matched.extend(facts.of(kind))
    score = rule.base_score
    for kind in rule.optional_kinds:
        if facts.has(kind):
            matched.extend(facts.of(kind))
            score += OPTIONAL_BONUS

    kinds = {f.kind for f in matched}
    has_read = not kinds.isdisjoint(READ_KINDS)
    if has_read and not kinds.isdisjoint(SINK_KINDS):
        score += CLUSTER_BONUS

    in_lifecycle = any(
        os.path.normpath(f.file) in lifecycle_files or getattr(f, 'lifecycle', False)
        for f in matched
    )
    multiplier = 1.0
    if in_lifecycle:
        multiplier *= LIFECYCLE_MULTIPLIER
    if facts.has(FactKind.ENCODER_USE):
        multiplier *= ENCODER_MULTIPLIER

    if has_read and in_lifecycle and not kinds.isdisjoint(DANGEROUS_SINK_KINDS):
        final = MAX_SCORE
    else:
        final = min(MAX_SCORE, int(score * multiplier))

    return Finding(
        rule_id=rule.id,
        alias=rule.alias,
        name=rule.name,
        score=final,
        classification=classify(final),
        triggers=[Trigger.from_fact(f) for f in matched],
        is_lifecycle=in_lifecycle,
        priority=rule.priority,
        description=rule.description,
    )


def evaluate(facts: FactSet, lifecycle_files: Iterable = (), rules: Iterable[Rule] = RULES) -> list[Finding]:
    """Findings for every rule that fires, highest score (then priority) first."""
    lifecycle = _normalize(lifecycle_files)
    findings = []
    for rule in rules:
        finding = score_rule(rule, facts, lifecycle)
        if finding is not None:
            findings.append(finding)
    findings.sort(key=lambda f: (-f.score, -f.priority))
    return findings
