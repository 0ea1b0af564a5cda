"""Convert structured hits into knowledge citations."""

from __future__ import annotations

from context_engine.heuristics.types import (
    CommunicationHit,
    CrmHit,
    EntityHit,
    FinanceHit,
    MaintenanceHit,
    ProjectHit,
    StructuredHit,
    TaskHit,
    TopicSpec,
)
from context_engine.models import KnowledgeCitation


def _fmt_money(value) -> str:
    return f"R$ {value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")


def _join(*fields: tuple[str, object]) -> str:
    """Pipe-delimited 'Label: value' pairs, skipping empty values."""
    return " | ".join(f"{label}: {value}" for label, value in fields if value not in (None, ""))


def _render(hit: StructuredHit) -> tuple[str, tuple[str, ...]]:
    """Return (content, row tags) for a hit."""
    if isinstance(hit, CrmHit):
        content = _join(
            ("Deal", hit.title),
            ("Client", hit.client_name),
            ("Stage", hit.stage),
            ("Status", hit.status),
            ("Priority", hit.priority),
            ("Value", _fmt_money(hit.value) if hit.value is not None else None),
            ("Expected close", hit.expected_close_date),
        )
        return content, (hit.priority, hit.status)
    if isinstance(hit, MaintenanceHit):
        content = _join(
            ("Maintenance order", hit.title),
            ("Condominium", hit.condominium_name),
            ("Equipment", hit.equipment),
            ("Status", hit.status),
            ("Priority", hit.priority),
            ("Scheduled", hit.scheduled_date),
        )
        return content, (hit.priority, hit.status)
    if isinstance(hit, CommunicationHit):
        content = _join(
            ("Communication", hit.subject),
            ("Channel", hit.channel),
            ("Audience", hit.audience),
            ("Status", hit.status),
            ("Priority", hit.priority),
            ("Publish date", hit.publish_date),
        )
        return content, (hit.priority, hit.status)
    if isinstance(hit, FinanceHit):
        content = _join(
            ("Receivable" if hit.kind == "receivable" else "Payable", hit.description),
            ("Counterparty", hit.counterparty),
            ("Amount", _fmt_money(hit.amount)),
            ("Status", hit.status),
            ("Priority", hit.priority),
            ("Due", hit.due_date),
        )
        return content, (hit.priority, hit.status)
    if isinstance(hit, ProjectHit):
        content = _join(
            ("Project", hit.name),
            ("Status", hit.status),
            ("Priority", hit.priority),
            ("Completion", f"{hit.completion:g}%" if hit.completion is not None else None),
            ("Budget", _fmt_money(hit.budget) if hit.budget is not None else None),
            ("Spent", _fmt_money(hit.spent) if hit.spent is not None else None),
            ("End date", hit.end_date),
        )
        return content, (hit.priority, hit.status)
    if isinstance(hit, TaskHit):
        content = _join(
            ("Task", hit.title),
            ("Assignee", hit.assignee),
            ("Status", hit.status),
            ("Priority", hit.priority),
            ("Due", hit.due_date),
        )
        return content, (hit.priority, hit.status)
    if isinstance(hit, EntityHit):
        location = "/".join(p for p in (hit.city, hit.state) if p)
        content = _join(
            ("Company", hit.name),
            ("Trade name", hit.trade_name),
            ("Document", hit.document),
            ("Location", location),
            ("Units", hit.units),
            ("Status", hit.status),
        )
        return content, (hit.status,)
    raise TypeError(f"Unsupported structured hit: {type(hit).__name__}")


def hit_to_citation(hit: StructuredHit, spec: TopicSpec, score: float) -> KnowledgeCitation:
    """Map one hit to the citation shape used for prompting."""
    content, row_tags = _render(hit)
    return KnowledgeCitation(
        chunk_id=f"{spec.topic}:{hit.id}",
        source_id=spec.source,
        sector=spec.display_name,
        content=content,
        score=score,
        tags=[*spec.tags, *(t for t in row_tags if t)],
    )
