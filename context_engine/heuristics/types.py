"""Hit and topic definitions for heuristic structured retrieval.

Each business topic returns its own hit type with typed fields; the
citation mapper in citations.py turns any of them into a
KnowledgeCitation. Topic behavior (triggers, scores, tags) is declared in
catalog.py, not in the query code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Union


@dataclass
class CrmHit:
    id: str
    title: str
    client_name: str | None
    stage: str | None
    status: str
    priority: str
    value: float | None
    expected_close_date: date | None


@dataclass
class MaintenanceHit:
    id: str
    title: str
    condominium_name: str | None
    equipment: str | None
    status: str
    priority: str
    scheduled_date: date | None


@dataclass
class CommunicationHit:
    id: str
    subject: str
    channel: str | None
    audience: str | None
    status: str
    priority: str
    publish_date: date | None


@dataclass
class FinanceHit:
    id: str
    description: str
    kind: str  # receivable, payable
    counterparty: str | None
    amount: float
    status: str
    priority: str
    due_date: date | None


@dataclass
class ProjectHit:
    id: str
    name: str
    status: str
    priority: str
    completion: float | None
    budget: float | None
    spent: float | None
    end_date: date | None


@dataclass
class TaskHit:
    id: str
    title: str
    assignee: str | None
    status: str
    priority: str
    due_date: date | None


@dataclass
class EntityHit:
    """The tenant's own company record."""
    id: str
    name: str
    trade_name: str | None
    document: str | None
    city: str | None
    state: str | None
    units: int | None
    status: str


StructuredHit = Union[
    CrmHit, MaintenanceHit, CommunicationHit, FinanceHit, ProjectHit, TaskHit, EntityHit
]


@dataclass(frozen=True)
class TopicQuery:
    """Normalized inputs shared by every trigger and query function."""
    company_id: str
    text: str  # folded query text
    sector: str = ""  # folded sector label, empty outside sector mode
    limit: int = 20
    company_names: tuple[str, ...] = ()  # folded names of the tenant's company


@dataclass
class TopicSpec:
    """Definition of a topic in the catalog."""
    topic: str
    display_name: str
    source: str  # table the rows come from
    tags: tuple[str, ...]
    trigger: Callable[[TopicQuery], bool]
    query_fn: Callable[..., list]
    default_score: float
    sector_aliases: tuple[str, ...] = field(default_factory=tuple)
