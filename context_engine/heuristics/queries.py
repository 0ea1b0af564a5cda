"""Structured lookups, one function per business topic.

Each function takes an open DB connection and a TopicQuery and returns
typed hits. Queries are read-only, scoped to the tenant, bounded by
TopicQuery.limit, restricted to actionable states and ordered by
priority then recency.
"""

from __future__ import annotations

import logging

from context_engine.db import execute
from context_engine.heuristics.types import (
    CommunicationHit,
    CrmHit,
    EntityHit,
    FinanceHit,
    MaintenanceHit,
    ProjectHit,
    TaskHit,
    TopicQuery,
)

logger = logging.getLogger(__name__)

PRIORITY_ORDER = (
    "CASE priority WHEN 'urgent' THEN 0 WHEN 'high' THEN 1 "
    "WHEN 'medium' THEN 2 WHEN 'low' THEN 3 ELSE 4 END"
)

# Statuses that still need someone's attention
ACTIONABLE_STATUSES = {
    "crm_deals": ("open", "negotiation", "proposal", "pending"),
    "maintenance_orders": ("open", "pending", "scheduled", "in_progress"),
    "communications": ("draft", "pending", "scheduled"),
    "financial_entries": ("pending", "overdue"),
    "projects": ("planning", "in_progress", "on_hold", "delayed"),
    "tasks": ("todo", "pending", "in_progress", "overdue"),
}


def _actionable(conn, table: str, columns: str, tq: TopicQuery) -> list:
    statuses = ACTIONABLE_STATUSES[table]
    placeholders = ", ".join(["%s"] * len(statuses))
    sql = (
        f"SELECT {columns} FROM {table} "
        f"WHERE company_id = %s AND status IN ({placeholders}) "
        f"ORDER BY {PRIORITY_ORDER}, created_at DESC "
        f"LIMIT %s"
    )
    return execute(conn, sql, [tq.company_id, *statuses, tq.limit])


def query_crm(conn, tq: TopicQuery) -> list[CrmHit]:
    """Open deals and proposals."""
    rows = _actionable(
        conn, "crm_deals",
        "id, title, client_name, stage, status, priority, value, expected_close_date",
        tq,
    )
    return [CrmHit(*r) for r in rows]


def query_maintenance(conn, tq: TopicQuery) -> list[MaintenanceHit]:
    """Open, scheduled and in-progress maintenance orders."""
    rows = _actionable(
        conn, "maintenance_orders",
        "id, title, condominium_name, equipment, status, priority, scheduled_date",
        tq,
    )
    return [MaintenanceHit(*r) for r in rows]


def query_communications(conn, tq: TopicQuery) -> list[CommunicationHit]:
    rows = _actionable(
        conn, "communications",
        "id, subject, channel, audience, status, priority, publish_date",
        tq,
    )
    return [CommunicationHit(*r) for r in rows]


def query_finance(conn, tq: TopicQuery) -> list[FinanceHit]:
    """Pending and overdue receivables/payables."""
    rows = _actionable(
        conn, "financial_entries",
        "id, description, kind, counterparty, amount, status, priority, due_date",
        tq,
    )
    return [FinanceHit(*r) for r in rows]


def query_projects(conn, tq: TopicQuery) -> list[ProjectHit]:
    rows = _actionable(
        conn, "projects",
        "id, name, status, priority, completion, budget, spent, end_date",
        tq,
    )
    return [ProjectHit(*r) for r in rows]


def query_tasks(conn, tq: TopicQuery) -> list[TaskHit]:
    rows = _actionable(
        conn, "tasks",
        "id, title, assignee, status, priority, due_date",
        tq,
    )
    return [TaskHit(*r) for r in rows]


def query_entity(conn, tq: TopicQuery) -> list[EntityHit]:
    """The tenant's own company record."""
    rows = execute(
        conn,
        "SELECT id, name, trade_name, document, city, state, units, status "
        "FROM companies WHERE id = %s LIMIT %s",
        [tq.company_id, tq.limit],
    )
    return [EntityHit(*r) for r in rows]


def fetch_company_names(conn, company_id: str) -> list[str]:
    """Name and trade name of the tenant's company, used by the entity trigger."""
    rows = execute(
        conn,
        "SELECT name, trade_name FROM companies WHERE id = %s",
        [company_id],
    )
    names = []
    for row in rows:
        names.extend(n for n in row if n)
    return names
