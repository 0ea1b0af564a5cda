"""Topic catalog for heuristic structured retrieval.

The catalog is the source of truth for which topics exist, what activates
them, which lookup they run and how their citations are labeled. Adding or
removing a topic should happen here, not in the retriever.

Triggers match on folded text (NFC, lower-case, accents stripped), so
"manutencao" and "Manutenção" both activate maintenance.
"""

from __future__ import annotations

import re
import unicodedata

from context_engine.heuristics import queries
from context_engine.heuristics.types import TopicQuery, TopicSpec


def fold_text(text: str | None) -> str:
    """Lower-case and strip accents for keyword matching."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", unicodedata.normalize("NFC", text).lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _any_of(*words: str):
    folded = tuple(fold_text(w) for w in words)

    def trigger(tq: TopicQuery) -> bool:
        return any(w in tq.text for w in folded)

    return trigger


def _maintenance_trigger(tq: TopicQuery) -> bool:
    if "manutencao" in tq.text:
        return True
    return "condominio" in tq.text and ("precisa" in tq.text or "urgente" in tq.text)


_project_keywords = _any_of("projeto", "cronograma", "reforma")
# Whole word only: "obra" is a substring of "cobranca", "manobra" and "sobrado"
_OBRA_RE = re.compile(r"\bobras?\b")


def _projects_trigger(tq: TopicQuery) -> bool:
    return _project_keywords(tq) or _OBRA_RE.search(tq.text) is not None


def _entity_trigger(tq: TopicQuery) -> bool:
    return any(name and name in tq.text for name in tq.company_names)


# Ordered: citations are concatenated in this order.
# "inadimplente" is deliberately not a finance trigger.
TOPIC_CATALOG: list[TopicSpec] = [
    TopicSpec(
        topic="crm",
        display_name="CRM",
        source="crm_deals",
        tags=("crm", "negócio"),
        trigger=_any_of("crm", "cliente", "lead", "negócio", "proposta", "venda"),
        query_fn=queries.query_crm,
        default_score=0.9,
        sector_aliases=("crm", "comercial", "vendas"),
    ),
    TopicSpec(
        topic="maintenance",
        display_name="Manutenção",
        source="maintenance_orders",
        tags=("manutenção", "ordem"),
        trigger=_maintenance_trigger,
        query_fn=queries.query_maintenance,
        default_score=0.9,
        sector_aliases=("manutencao",),
    ),
    TopicSpec(
        topic="communication",
        display_name="Comunicação",
        source="communications",
        tags=("comunicação", "comunicado"),
        trigger=_any_of("comunicado", "comunicação", "aviso", "circular", "informativo"),
        query_fn=queries.query_communications,
        default_score=0.85,
        sector_aliases=("comunicacao",),
    ),
    TopicSpec(
        topic="finance",
        display_name="Financeiro",
        source="financial_entries",
        tags=("financeiro", "lançamento"),
        trigger=_any_of(
            "financeiro", "finança", "pagamento", "boleto", "cobrança",
            "pendente", "vencido", "despesa", "receita", "fluxo de caixa",
        ),
        query_fn=queries.query_finance,
        default_score=0.9,
        sector_aliases=("financeiro", "financas"),
    ),
    TopicSpec(
        topic="projects",
        display_name="Projetos",
        source="projects",
        tags=("projeto",),
        trigger=_projects_trigger,
        query_fn=queries.query_projects,
        default_score=0.85,
        sector_aliases=("projetos", "obras"),
    ),
    TopicSpec(
        topic="tasks",
        display_name="Tarefas",
        source="tasks",
        tags=("tarefa",),
        trigger=_any_of("tarefa", "pendência", "to-do", "atividade"),
        query_fn=queries.query_tasks,
        default_score=0.85,
        sector_aliases=("tarefas",),
    ),
    TopicSpec(
        topic="entity",
        display_name="Empresa",
        source="companies",
        tags=("empresa",),
        trigger=_entity_trigger,
        query_fn=queries.query_entity,
        default_score=0.88,
    ),
]

TOPICS_BY_NAME: dict[str, TopicSpec] = {spec.topic: spec for spec in TOPIC_CATALOG}
