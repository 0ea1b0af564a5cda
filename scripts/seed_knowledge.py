#!/usr/bin/env python3
"""Seed the default condominium knowledge set for one company.

Usage:
    python scripts/seed_knowledge.py --company <COMPANY_ID>
    python scripts/seed_knowledge.py --company <COMPANY_ID> --clear
    python scripts/seed_knowledge.py --company <COMPANY_ID> --dry-run
    python scripts/seed_knowledge.py --stats
    python scripts/seed_knowledge.py --init-schema --company <COMPANY_ID>

The company may also come from the COMPANY_ID env var. Each item is
ingested as its own source; re-running replaces the chunks of items that
already exist. Exit code is 1 when any item fails.

Requires:
    DATABASE_URL: PostgreSQL connection string (local DuckDB otherwise)
    OPENROUTER_API_KEY or OPENAI_API_KEY: embeddings
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

# Ensure project root is on sys.path regardless of where script is called from
_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

logger = logging.getLogger("seed_knowledge")

SEED_ITEMS = [
    # Projetos
    {
        "sector": "Projetos",
        "title": "Política de Atrasos de Projetos",
        "content": (
            "Projetos são considerados atrasados quando a data de término prevista é "
            "ultrapassada e o percentual concluído é inferior a 100%. Projetos com avanço "
            "abaixo de 80% a 15 dias do prazo são classificados como em risco."
        ),
        "tags": ["projetos", "atrasos", "gestao"],
    },
    {
        "sector": "Projetos",
        "title": "Regras de Priorização",
        "content": (
            "Em situações de atraso, priorizar projetos por impacto financeiro, criticidade "
            "de segurança e dependências entre frentes. Relatórios semanais devem sinalizar "
            "risco antes de 15 dias do prazo final."
        ),
        "tags": ["projetos", "priorizacao", "riscos"],
    },
    # Financeiro
    {
        "sector": "Financeiro",
        "title": "Política de Inadimplência",
        "content": (
            "Inadimplência é caracterizada por atraso superior a 30 dias no pagamento. "
            "Ações: notificação automática em 5 dias, acordo em até 60 dias, e "
            "encaminhamento jurídico a partir de 90 dias."
        ),
        "tags": ["financeiro", "inadimplencia", "cobranca"],
    },
    {
        "sector": "Financeiro",
        "title": "Critérios de Previsão Orçamentária",
        "content": (
            "A previsão orçamentária anual deve considerar média histórica de despesas, "
            "calendário de sazonalidades (água/energia), provisões para manutenção corretiva "
            "e taxa de inadimplência esperada."
        ),
        "tags": ["financeiro", "orcamento", "previsao"],
    },
    {
        "sector": "Financeiro",
        "title": "Previsão de Caixa",
        "content": (
            "A previsão de caixa deve considerar receitas recorrentes, inadimplência média, "
            "despesas fixas e sazonais, e reservas técnicas para manutenção."
        ),
        "tags": ["financeiro", "caixa", "previsao"],
    },
    # Manutenção
    {
        "sector": "Manutenção",
        "title": "Plano de Manutenção Preventiva",
        "content": (
            "Equipamentos críticos (elevadores, bombas, geradores) devem ter manutenção "
            "preventiva mensal ou trimestral conforme manual do fabricante. Registros devem "
            "ser arquivados e auditáveis."
        ),
        "tags": ["manutencao", "preventiva", "equipamentos"],
    },
    {
        "sector": "Manutenção",
        "title": "SLA de Atendimento de Chamados",
        "content": (
            "Chamados críticos (segurança, riscos de danos) devem ser atendidos em até 4 "
            "horas. Não críticos: até 48 horas. Itens planejados seguem janela semanal "
            "previamente acordada."
        ),
        "tags": ["manutencao", "sla", "chamados"],
    },
    {
        "sector": "Manutenção",
        "title": "Rotina de Inspeção Mensal",
        "content": (
            "Realizar inspeção mensal das áreas comuns (iluminação, extintores, corrimãos, "
            "pisos), registrando achados e prazos de correção em checklist padronizado."
        ),
        "tags": ["manutencao", "inspecao", "checklist"],
    },
    # Comunicação
    {
        "sector": "Comunicação",
        "title": "Boas Práticas de Comunicação com Moradores",
        "content": (
            "Usar canais oficiais (aplicativo, e-mail validado e murais). Responder dúvidas "
            "em até 48h úteis. Evitar informações sensíveis em grupos informais."
        ),
        "tags": ["comunicacao", "moradores", "boas-praticas"],
    },
    {
        "sector": "Comunicação",
        "title": "Padronização de Comunicados",
        "content": (
            "Todo comunicado deve conter: assunto, contexto, ação requerida, prazos, canal "
            "de suporte e responsável. Padrão de linguagem clara e objetiva."
        ),
        "tags": ["comunicacao", "comunicados", "padrao"],
    },
]


def seed_knowledge(company_id: str, clear: bool = False, dry_run: bool = False,
                   store=None) -> dict:
    """Ingest SEED_ITEMS for ``company_id``.

    Returns:
        {"ok": int, "fail": int, "chunks": int}
    """
    from context_engine.rag.chunker import chunk_text
    from context_engine.rag.ingest import ingest_text
    from context_engine.rag.store import get_default_store

    if dry_run:
        chunks = 0
        for item in SEED_ITEMS:
            n = len(chunk_text(item["content"]))
            print(f"  [{item['sector']}] {item['title']}: {n} chunk(s)")
            chunks += n
        return {"ok": len(SEED_ITEMS), "fail": 0, "chunks": chunks}

    store = store or get_default_store()
    if clear:
        logger.info("Clearing knowledge for company %s...", company_id)
        deleted = store.clear_company(company_id)
        logger.info("Cleared %d chunks", deleted)

    ok = fail = chunks = 0
    for item in SEED_ITEMS:
        logger.info("Ingesting [%s] %s", item["sector"], item["title"])
        try:
            chunks += ingest_text(
                company_id, item["sector"], item["title"], item["content"],
                item["tags"], store=store,
            )
            ok += 1
        except Exception as e:
            logger.error("Failed to ingest %r: %s", item["title"], e)
            fail += 1

    logger.info("Seed complete. Success: %d, Failures: %d", ok, fail)
    return {"ok": ok, "fail": fail, "chunks": chunks}


def show_stats(company_id: str | None = None) -> None:
    from context_engine.rag.store import get_default_store

    stats = get_default_store().get_stats(company_id)
    print(f"\n  Knowledge Store Stats{f' ({company_id})' if company_id else ''}")
    print(f"  {'=' * 40}")
    print(f"  Total chunks: {stats['total_chunks']}")
    print(f"  Sources:      {stats['sources']}")
    print(f"  Memories:     {stats['memories']}")
    print("\n  By sector:")
    for sector, count in stats["by_sector"].items():
        print(f"    {sector}: {count}")
    print()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="Seed default condominium knowledge")
    parser.add_argument("--company", default=os.environ.get("COMPANY_ID"),
                        help="Company (tenant) id; defaults to $COMPANY_ID")
    parser.add_argument("--clear", action="store_true",
                        help="Delete the company's existing knowledge first")
    parser.add_argument("--dry-run", action="store_true",
                        help="Preview chunks without embedding or storing")
    parser.add_argument("--stats", action="store_true",
                        help="Show current store statistics and exit")
    parser.add_argument("--init-schema", action="store_true",
                        help="Create tables before seeding")
    args = parser.parse_args(argv)

    if args.init_schema and not args.dry_run:
        from context_engine.db import get_connection, init_schema

        conn = get_connection()
        try:
            init_schema(conn)
        finally:
            conn.close()

    if args.stats:
        show_stats(args.company)
        return 0

    if not args.company:
        parser.print_usage(sys.stderr)
        print("error: --company or COMPANY_ID is required", file=sys.stderr)
        return 1

    result = seed_knowledge(args.company, clear=args.clear, dry_run=args.dry_run)
    if args.dry_run:
        print(f"\nDry run complete: {result['chunks']} chunks would be created")
    else:
        show_stats(args.company)
    return 1 if result["fail"] else 0


if __name__ == "__main__":
    sys.exit(main())
