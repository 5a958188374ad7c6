#!/usr/bin/env python3
"""
Governor CLI Tool
=================

Command-line interface for operators to inspect and change tenant autonomy.

Usage:
    governor tenants
    governor register TENANT_ID NAME [--level LEVEL]
    governor status TENANT_ID
    governor check TENANT_ID ACTION [--content TEXT] [--effectful] ...
    governor evaluate TENANT_ID
    governor promote TENANT_ID [--approved-by NAME]
    governor demote TENANT_ID --reason TEXT [--approved-by NAME]
    governor pause TENANT_ID --reason TEXT [--by NAME]
    governor resume TENANT_ID LEVEL --approved-by NAME
    governor history TENANT_ID
    governor metrics TENANT_ID [--period day|week|month]
    governor review TENANT_ID
    governor learnings TENANT_ID
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from autonomy_governor.config import GovernorConfig
from autonomy_governor.errors import GovernorError
from autonomy_governor.escalation import ActionContext
from autonomy_governor.governor import Governor, build_governor
from autonomy_governor.learning import format_pattern, get_learning_stats
from autonomy_governor.levels import AutonomyLevel
from autonomy_governor.metrics import MetricsPeriod
from autonomy_governor.output import (
    console,
    create_table,
    icon,
    level_markup,
    print_error,
    print_error_panel,
    print_header,
    print_info,
    print_key_value_table,
    print_list,
    print_muted,
    print_success,
    print_table,
    print_warning,
    setup_rich_logging,
    spinner,
)
from autonomy_governor.transitions import InitiatedBy


def _print_transition(transition) -> None:
    print_success(
        f"{transition.tenant_id}: {transition.from_level.name} {icon('arrow_right')} "
        f"{transition.to_level.name} ({transition.reason})"
    )


async def cmd_tenants(governor: Governor, args):
    """List tenants."""
    tenants = await governor.controller.list_tenants()
    if not tenants:
        print_muted("No tenants registered")
        return

    table = create_table(title="Tenants", columns=["ID", "Name", "Level", "Hours in level"])
    for tenant in tenants:
        table.add_row(
            tenant.id,
            tenant.name,
            level_markup(tenant.level.name),
            f"[gv.number]{tenant.hours_in_level():.1f}[/]",
        )
    print_table(table)


async def cmd_register(governor: Governor, args):
    tenant = await governor.register_tenant(args.tenant_id, args.name, AutonomyLevel.parse(args.level))
    print_success(f"Registered {tenant.id} at {tenant.level.name}")


async def cmd_status(governor: Governor, args):
    """Show a tenant's level and capabilities."""
    status = await governor.controller.get_status(args.tenant_id)
    capabilities = status.pop("capabilities")

    print_header(f"Tenant {args.tenant_id}")
    print_key_value_table({
        "Name": status["name"],
        "Level": level_markup(status["level"]),
        "Since": status["level_since"],
        "Hours in level": status["hours_in_level"],
    })
    console.print()
    print_key_value_table(
        {
            "Allowed actions": ", ".join(capabilities["allowed_actions"]),
            "Blocked actions": ", ".join(capabilities["blocked_actions"]) or "-",
            **{
                f"Approval: {key.replace('_', ' ')}": "yes" if value else "no"
                for key, value in capabilities["approval_required"].items()
            },
        },
        title="Capabilities",
    )


async def cmd_check(governor: Governor, args):
    """Check whether an action needs approval."""
    context = ActionContext(
        task_type=args.task_type,
        content=args.content,
        candidate_type=args.candidate_type,
        value=args.value,
        is_effectful=args.effectful,
        is_first_contact=args.first_contact,
        is_sensitive=args.sensitive,
        is_high_value=args.high_value,
    )
    decision = await governor.requires_approval(args.tenant_id, args.action, context)
    if decision.blocked:
        print_error(f"Blocked: {decision.reason}")
    elif decision.required:
        print_warning(f"Approval required: {decision.reason}")
    else:
        print_success("No approval required")
    if decision.notify:
        print_info(f"Notify: {', '.join(decision.notify)}")


async def cmd_evaluate(governor: Governor, args):
    """Show promotion and demotion evaluations."""
    with spinner("Evaluating..."):
        promotion = await governor.evaluate_promotion(args.tenant_id)
        demotion = await governor.evaluate_demotion(args.tenant_id)

    print_header(f"Evaluation: {args.tenant_id}")
    if promotion.eligible:
        print_success(f"Eligible for promotion to {promotion.next_level.name}")
    else:
        print_warning("Not eligible for promotion")
        print_list(promotion.blockers)

    if demotion.should_demote:
        print_error(f"Demotion suggested to {demotion.suggested_level.name}")
        print_list(demotion.reasons)
    else:
        print_muted("No demotion triggers")


async def cmd_promote(governor: Governor, args):
    _print_transition(await governor.promote_tenant(args.tenant_id, args.approved_by))


async def cmd_demote(governor: Governor, args):
    initiated_by = InitiatedBy.OPERATOR if args.approved_by else InitiatedBy.SYSTEM
    _print_transition(
        await governor.demote_tenant(args.tenant_id, args.reason, initiated_by, args.approved_by)
    )


async def cmd_pause(governor: Governor, args):
    _print_transition(await governor.pause_tenant(args.tenant_id, args.reason, args.by))


async def cmd_resume(governor: Governor, args):
    _print_transition(
        await governor.resume_tenant(args.tenant_id, AutonomyLevel.parse(args.level), args.approved_by)
    )


async def cmd_history(governor: Governor, args):
    """Show transition history."""
    history = await governor.get_transition_history(args.tenant_id)
    if not history:
        print_muted("No transitions recorded")
        return

    table = create_table(
        title=f"Transitions: {args.tenant_id}",
        columns=["When", "From", "To", "By", "Approved by", "Reason"],
    )
    for t in history:
        table.add_row(
            f"[gv.timestamp]{t.timestamp:%Y-%m-%d %H:%M}[/]",
            level_markup(t.from_level.name),
            level_markup(t.to_level.name),
            t.initiated_by.value,
            t.approved_by or "-",
            t.reason,
        )
    print_table(table)


async def cmd_metrics(governor: Governor, args):
    """Show task metrics for a window."""
    period = MetricsPeriod.parse(args.period)
    with spinner("Loading metrics..."):
        metrics = await governor.calculate_metrics(args.tenant_id, period)

    print_header(f"Metrics: {args.tenant_id} ({period.name.lower()})")
    table = create_table(columns=["Metric", "Value"])
    rows = [
        ("Total tasks", f"{metrics.total_tasks}"),
        ("Approved", f"{metrics.approved_tasks}"),
        ("Rejected", f"{metrics.rejected_tasks}"),
        ("Failed", f"{metrics.failed_tasks}"),
        ("Escalated", f"{metrics.escalated_tasks}"),
        ("Pending", f"{metrics.pending_tasks}"),
        ("Complaints", f"{metrics.complaints}"),
        ("Approval rate", f"{metrics.approval_rate:.1%}"),
        ("Error rate", f"{metrics.error_rate:.1%}"),
        ("Rejection rate", f"{metrics.rejection_rate:.1%}"),
        ("Escalation rate", f"{metrics.escalation_rate:.1%}"),
        ("Response rate", f"{metrics.response_rate:.1%} ({metrics.response_samples} samples)"),
        (
            "Avg approval time",
            f"{metrics.average_approval_minutes:.1f} min"
            if metrics.average_approval_minutes is not None else "-",
        ),
    ]
    for name, value in rows:
        table.add_row(name, f"[gv.number]{value}[/]")
    print_table(table)


async def cmd_review(governor: Governor, args):
    """Run one governance review cycle."""
    with spinner("Reviewing tenant..."):
        outcome = await governor.review_tenant(args.tenant_id)

    if outcome.transition:
        _print_transition(outcome.transition)
    elif outcome.promotion and outcome.promotion.eligible:
        print_info(
            f"Eligible for {outcome.promotion.next_level.name}; awaiting operator approval"
        )
    else:
        print_muted("No change")
        if outcome.promotion:
            print_list(outcome.promotion.blockers)


async def cmd_learnings(governor: Governor, args):
    """Show shadow-mode learnings and pending guideline updates."""
    learnings = await governor.list_learnings(args.tenant_id)
    stats = get_learning_stats(learnings)

    print_header(f"Learnings: {args.tenant_id}")
    print_key_value_table({
        "Learning cycles": stats["learning_cycles"],
        "Patterns": stats["total_patterns"],
        "Guideline updates": stats["guideline_updates"],
        "Avg confidence": f"{stats['avg_pattern_confidence']:.0%}",
    })
    for learning in learnings[-args.limit:]:
        for pattern in learning.patterns:
            console.print(format_pattern(pattern), markup=False)

    pending = await governor.guidelines_store.list_pending(args.tenant_id)
    if pending:
        table = create_table(title="Pending guideline updates", columns=["Type", "Path", "Reason"])
        for update in pending:
            table.add_row(update.type.value, update.path, update.reason)
        print_table(table)


COMMANDS = {
    "tenants": cmd_tenants,
    "register": cmd_register,
    "status": cmd_status,
    "check": cmd_check,
    "evaluate": cmd_evaluate,
    "promote": cmd_promote,
    "demote": cmd_demote,
    "pause": cmd_pause,
    "resume": cmd_resume,
    "history": cmd_history,
    "metrics": cmd_metrics,
    "review": cmd_review,
    "learnings": cmd_learnings,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="governor",
        description="Autonomy Governor CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Register a tenant and check its level
    governor register acme "Acme Corp"
    governor status acme

    # See what blocks promotion
    governor evaluate acme

    # Promote with operator approval
    governor promote acme --approved-by ops@example.com
        """
    )
    parser.add_argument("--config", "-c", help="Path to governor_config.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("tenants", help="List tenants")

    register_parser = subparsers.add_parser("register", help="Register a tenant")
    register_parser.add_argument("tenant_id")
    register_parser.add_argument("name")
    register_parser.add_argument("--level", default="ONBOARDING", help="Initial level")

    for name, help_text in [
        ("status", "Show tenant level and capabilities"),
        ("evaluate", "Evaluate promotion and demotion"),
        ("history", "Show transition history"),
        ("review", "Run a governance review"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("tenant_id")

    check_parser = subparsers.add_parser("check", help="Check whether an action needs approval")
    check_parser.add_argument("tenant_id")
    check_parser.add_argument("action")
    check_parser.add_argument("--task-type")
    check_parser.add_argument("--content")
    check_parser.add_argument("--candidate-type")
    check_parser.add_argument("--value", type=float)
    check_parser.add_argument("--effectful", action="store_true")
    check_parser.add_argument("--first-contact", action="store_true")
    check_parser.add_argument("--sensitive", action="store_true")
    check_parser.add_argument("--high-value", action="store_true")

    promote_parser = subparsers.add_parser("promote", help="Promote to the next level")
    promote_parser.add_argument("tenant_id")
    promote_parser.add_argument("--approved-by")

    demote_parser = subparsers.add_parser("demote", help="Demote one level")
    demote_parser.add_argument("tenant_id")
    demote_parser.add_argument("--reason", required=True)
    demote_parser.add_argument("--approved-by")

    pause_parser = subparsers.add_parser("pause", help="Pause a tenant")
    pause_parser.add_argument("tenant_id")
    pause_parser.add_argument("--reason", required=True)
    pause_parser.add_argument("--by", help="Operator pausing the tenant")

    resume_parser = subparsers.add_parser("resume", help="Resume a paused tenant")
    resume_parser.add_argument("tenant_id")
    resume_parser.add_argument("level", help="Level to resume at")
    resume_parser.add_argument("--approved-by", required=True)

    metrics_parser = subparsers.add_parser("metrics", help="Show task metrics")
    metrics_parser.add_argument("tenant_id")
    metrics_parser.add_argument("--period", choices=["day", "week", "month"], default="week")

    learnings_parser = subparsers.add_parser("learnings", help="Show shadow-mode learnings")
    learnings_parser.add_argument("tenant_id")
    learnings_parser.add_argument("--limit", type=int, default=5, help="Learning passes to show")

    return parser


async def run(args) -> None:
    config = GovernorConfig.load(Path(args.config) if args.config else None)
    governor = await build_governor(config)
    try:
        await COMMANDS[args.command](governor, args)
    finally:
        await governor.close()


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        asyncio.run(run(args))
    except GovernorError as e:
        print_error_panel(str(e), title=type(e).__name__)
        sys.exit(1)
    except KeyError as e:
        print_error(f"Unknown value: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
