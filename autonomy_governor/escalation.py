"""
Escalation Rules Engine
=======================

Decides, per proposed agent action, whether a human must sign off before the
action runs.

Evaluation order (first match wins):
1. Actions blocked at the tenant's level
2. Level-wide approval requirements (all tasks, effectful, first contact,
   sensitive topics, high value candidates)
3. Escalation rules, in order, unless overridden at the level
4. Otherwise no approval is needed

`evaluate_approval` is a pure function of its arguments. `EscalationEngine`
adds tenant level resolution and rule management on top of it.

Usage:
    from autonomy_governor.escalation import EscalationEngine, ActionContext

    engine = EscalationEngine(controller.get_autonomy_level)
    decision = await engine.requires_approval(
        "tenant-1", "send", ActionContext(content="Let's talk salary", is_effectful=True)
    )
    if decision.required:
        print(decision.reason)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence, Union

from autonomy_governor.errors import ConfigurationError
from autonomy_governor.levels import AutonomyLevel, is_at_or_above, level_of

logger = logging.getLogger(__name__)


class RuleAction(Enum):
    """What happens when an escalation rule matches."""
    REQUIRE_APPROVAL = "require_approval"
    NOTIFY = "notify"
    BLOCK = "block"


# =============================================================================
# Rule Conditions
# =============================================================================

@dataclass(frozen=True)
class KeywordCondition:
    """Matches when any keyword appears in the action content (case-insensitive)."""
    keywords: tuple[str, ...]
    kind: str = field(default="keyword", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "keywords": list(self.keywords)}


@dataclass(frozen=True)
class CandidateTypeCondition:
    candidate_types: tuple[str, ...]
    kind: str = field(default="candidate_type", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "candidate_types": list(self.candidate_types)}


@dataclass(frozen=True)
class TaskTypeCondition:
    task_types: tuple[str, ...]
    kind: str = field(default="task_type", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "task_types": list(self.task_types)}


@dataclass(frozen=True)
class ValueThresholdCondition:
    """
    Matches when the action's value is strictly above `max`.

    `field_name` is a label for the attribute the caller read the value from
    (for example `salary_max`); matching always uses `ActionContext.value`.
    """
    field_name: str
    max: float
    kind: str = field(default="value_threshold", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "field_name": self.field_name, "max": self.max}


@dataclass(frozen=True)
class FirstContactCondition:
    require_approval: bool = True
    kind: str = field(default="first_contact", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "require_approval": self.require_approval}


@dataclass(frozen=True)
class CustomCondition:
    """
    Delegates to a named evaluator supplied to the engine.

    Evaluators are looked up in an explicit mapping; an unknown name
    never matches.
    """
    evaluator: str
    params: tuple[tuple[str, Any], ...] = ()
    kind: str = field(default="custom", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "evaluator": self.evaluator, "params": dict(self.params)}


RuleCondition = Union[
    KeywordCondition,
    CandidateTypeCondition,
    TaskTypeCondition,
    ValueThresholdCondition,
    FirstContactCondition,
    CustomCondition,
]


def condition_from_dict(data: dict) -> RuleCondition:
    """Rebuild a condition from its persisted form."""
    kind = data.get("kind")
    if kind == "keyword":
        return KeywordCondition(tuple(data.get("keywords", [])))
    elif kind == "candidate_type":
        return CandidateTypeCondition(tuple(data.get("candidate_types", [])))
    elif kind == "task_type":
        return TaskTypeCondition(tuple(data.get("task_types", [])))
    elif kind == "value_threshold":
        return ValueThresholdCondition(data.get("field_name", "value"), float(data["max"]))
    elif kind == "first_contact":
        return FirstContactCondition(bool(data.get("require_approval", True)))
    elif kind == "custom":
        return CustomCondition(data["evaluator"], tuple(sorted(data.get("params", {}).items())))
    raise ConfigurationError(f"Unknown escalation condition kind: {kind}")


# =============================================================================
# Rules, Context and Decisions
# =============================================================================

@dataclass(frozen=True)
class EscalationRule:
    """
    A named predicate that forces human involvement when it matches.

    `override_level`: at or above this level the rule is skipped.
    """
    name: str
    description: str
    condition: RuleCondition
    action: RuleAction = RuleAction.REQUIRE_APPROVAL
    override_level: Optional[AutonomyLevel] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "condition": self.condition.to_dict(),
            "action": self.action.value,
            "override_level": self.override_level.name if self.override_level is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscalationRule":
        override = data.get("override_level")
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            condition=condition_from_dict(data["condition"]),
            action=RuleAction(data.get("action", RuleAction.REQUIRE_APPROVAL.value)),
            override_level=AutonomyLevel.parse(override) if override is not None else None,
        )


@dataclass
class ActionContext:
    """Facts about a proposed action that rules are evaluated against."""
    task_type: Optional[str] = None
    content: Optional[str] = None
    candidate_type: Optional[str] = None
    value: Optional[float] = None
    is_effectful: bool = False
    is_first_contact: bool = False
    is_sensitive: bool = False
    is_high_value: bool = False


@dataclass
class ApprovalDecision:
    """Outcome of an approval check."""
    required: bool
    reason: Optional[str] = None
    blocked: bool = False
    triggered_rule: Optional[str] = None
    # Names of matched notify-only rules
    notify: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "required": self.required,
            "reason": self.reason,
            "blocked": self.blocked,
            "triggered_rule": self.triggered_rule,
            "notify": list(self.notify),
        }


CustomEvaluator = Callable[[ActionContext, dict], bool]


DEFAULT_ESCALATION_RULES: tuple[EscalationRule, ...] = (
    EscalationRule(
        name="Compensation Discussion",
        description="Compensation discussions require human review",
        condition=KeywordCondition(("salary", "compensation", "equity", "benefits", "bonus", "offer")),
    ),
    EscalationRule(
        name="Offer Extension",
        description="Offer-related tasks require approval",
        condition=TaskTypeCondition(("SEND_OFFER", "PREPARE_OFFER")),
    ),
    EscalationRule(
        name="VIP Candidate",
        description="VIP candidates require human attention",
        condition=CandidateTypeCondition(("executive", "vip", "referral")),
    ),
    EscalationRule(
        name="High Value Role",
        description="High-compensation roles require approval",
        condition=ValueThresholdCondition("salary_max", 200000),
    ),
)


# =============================================================================
# Pure Evaluation
# =============================================================================

def condition_matches(
    condition: RuleCondition,
    context: ActionContext,
    custom_evaluators: Mapping[str, CustomEvaluator],
) -> bool:
    """Check one rule condition against an action context."""
    if isinstance(condition, KeywordCondition):
        content = (context.content or "").lower()
        return any(keyword.lower() in content for keyword in condition.keywords)

    elif isinstance(condition, CandidateTypeCondition):
        return context.candidate_type is not None and context.candidate_type in condition.candidate_types

    elif isinstance(condition, TaskTypeCondition):
        return context.task_type is not None and context.task_type in condition.task_types

    elif isinstance(condition, ValueThresholdCondition):
        return context.value is not None and context.value > condition.max

    elif isinstance(condition, FirstContactCondition):
        return context.is_first_contact == condition.require_approval

    elif isinstance(condition, CustomCondition):
        evaluator = custom_evaluators.get(condition.evaluator)
        if evaluator is None:
            return False
        return bool(evaluator(context, dict(condition.params)))

    return False


def _rule_overridden(rule: EscalationRule, level: AutonomyLevel) -> bool:
    if rule.name in level_of(level).escalation_overrides:
        return True
    return rule.override_level is not None and is_at_or_above(level, rule.override_level)


def evaluate_approval(
    level: AutonomyLevel,
    action: str,
    context: ActionContext,
    rules: Sequence[EscalationRule] = DEFAULT_ESCALATION_RULES,
    custom_evaluators: Optional[Mapping[str, CustomEvaluator]] = None,
) -> ApprovalDecision:
    """
    Decide whether `action` needs human approval at `level`.

    Args:
        level: The tenant's current autonomy level
        action: Action name, checked against the level's blocked actions
        context: Facts about the action
        rules: Escalation rules, evaluated in order
        custom_evaluators: Named predicates for CustomCondition rules

    Returns:
        ApprovalDecision
    """
    capabilities = level_of(level)
    requirements = capabilities.approval_required

    if capabilities.is_blocked(action):
        return ApprovalDecision(
            required=True,
            blocked=True,
            reason=f"Action '{action}' is blocked at {level.name} level",
        )

    if requirements.all_tasks:
        return ApprovalDecision(required=True, reason="All tasks require approval at current level")

    if context.is_effectful and requirements.effectful_tasks:
        return ApprovalDecision(required=True, reason="Effectful tasks require approval")
    if context.is_first_contact and requirements.first_contact:
        return ApprovalDecision(required=True, reason="First contact requires approval")
    if context.is_sensitive and requirements.sensitive_topics:
        return ApprovalDecision(required=True, reason="Sensitive topic requires approval")
    if context.is_high_value and requirements.high_value_candidates:
        return ApprovalDecision(required=True, reason="High value candidate requires approval")

    evaluators = custom_evaluators or {}
    notify: list[str] = []
    for rule in rules:
        if not condition_matches(rule.condition, context, evaluators):
            continue
        if _rule_overridden(rule, level):
            continue

        if rule.action == RuleAction.NOTIFY:
            notify.append(rule.name)
            continue

        return ApprovalDecision(
            required=True,
            blocked=rule.action == RuleAction.BLOCK,
            reason=rule.description,
            triggered_rule=rule.name,
            notify=notify,
        )

    return ApprovalDecision(required=False, notify=notify)


# =============================================================================
# Engine
# =============================================================================

class EscalationRuleStore(Protocol):
    """Persistence for custom escalation rules."""

    async def list_rules(self) -> list[EscalationRule]: ...

    async def save_rule(self, rule: EscalationRule) -> None: ...

    async def disable_rule(self, name: str) -> bool: ...


LevelResolver = Callable[[str], Awaitable[AutonomyLevel]]


class EscalationEngine:
    """
    Evaluates approval requirements for a tenant's actions.

    Rules are kept in evaluation order. Adding a rule whose name already
    exists replaces it in place.
    """

    def __init__(
        self,
        resolve_level: LevelResolver,
        rules: Optional[Sequence[EscalationRule]] = None,
        custom_evaluators: Optional[Mapping[str, CustomEvaluator]] = None,
        rule_store: Optional[EscalationRuleStore] = None,
    ):
        """
        Initialize EscalationEngine.

        Args:
            resolve_level: Async lookup of a tenant's level; raises
                ConfigurationError for unknown tenants
            rules: Initial rules (defaults to DEFAULT_ESCALATION_RULES)
            custom_evaluators: Named predicates for CustomCondition rules
            rule_store: Optional persistence for custom rules
        """
        self._resolve_level = resolve_level
        self.rules: list[EscalationRule] = list(DEFAULT_ESCALATION_RULES if rules is None else rules)
        self.custom_evaluators: dict[str, CustomEvaluator] = dict(custom_evaluators or {})
        self._rule_store = rule_store

    async def requires_approval(
        self,
        tenant_id: str,
        action: str,
        context: ActionContext,
    ) -> ApprovalDecision:
        level = await self._resolve_level(tenant_id)
        decision = evaluate_approval(level, action, context, self.rules, self.custom_evaluators)
        if decision.required:
            logger.debug(
                "Approval required for %s on tenant %s: %s", action, tenant_id, decision.reason
            )
        return decision

    async def load_custom_rules(self) -> int:
        """
        Merge persisted custom rules into the engine.

        Returns:
            Number of rules loaded
        """
        if self._rule_store is None:
            return 0

        loaded = await self._rule_store.list_rules()
        for rule in loaded:
            self._put(rule)
        if loaded:
            logger.info("Loaded %d custom escalation rules", len(loaded))
        return len(loaded)

    def _put(self, rule: EscalationRule) -> None:
        for i, existing in enumerate(self.rules):
            if existing.name == rule.name:
                self.rules[i] = rule
                return
        self.rules.append(rule)

    async def add_rule(self, rule: EscalationRule) -> None:
        """Add or replace a rule, persisting it when a store is configured."""
        self._put(rule)
        if self._rule_store is not None:
            await self._rule_store.save_rule(rule)

    async def remove_rule(self, name: str) -> bool:
        """
        Remove a rule by name.

        Returns:
            True if removed, False if not found
        """
        original_count = len(self.rules)
        self.rules = [r for r in self.rules if r.name != name]
        if len(self.rules) == original_count:
            return False
        if self._rule_store is not None:
            await self._rule_store.disable_rule(name)
        return True

    def get_rules(self) -> list[EscalationRule]:
        """Get all rules in evaluation order."""
        return list(self.rules)

    def get_rule(self, name: str) -> Optional[EscalationRule]:
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None

    def register_evaluator(self, name: str, evaluator: CustomEvaluator) -> None:
        """Make a named predicate available to CustomCondition rules."""
        self.custom_evaluators[name] = evaluator
