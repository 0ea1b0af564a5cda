"""Render a retrieval result into the enriched prompt block.

Section order is fixed: query context, user memories (only when present),
relevant knowledge (always present, with a placeholder when empty), the
user's question, instructions. The tenant id is used for scoping only and
never appears in the output.
"""

from __future__ import annotations

from context_engine.models import KnowledgeCitation, RequestContext, UserMemory

NO_KNOWLEDGE_PLACEHOLDER = "(no knowledge found)"


def build_enriched_prompt(
    query: str,
    citations: list[KnowledgeCitation],
    memories: list[UserMemory],
    context: RequestContext,
) -> str:
    lines = [
        "QUERY CONTEXT:",
        f"- User: {context.user_id}",
    ]
    if context.context_mode == "sector":
        lines.append(f"- Mode: sector (Sector: {context.sector})")
    else:
        lines.append("- Mode: general")
    lines.append("")

    if memories:
        lines.append("USER MEMORIES (use them to personalize the answer):")
        for i, memory in enumerate(memories, 1):
            lines.append(f"{i}. [{memory.memory_type.upper()}] {memory.content}")
        lines.append("")

    lines.append("RELEVANT KNOWLEDGE:")
    if citations:
        for i, citation in enumerate(citations, 1):
            lines.append(f"{i}. [{citation.sector}] {citation.content}")
            if citation.tags:
                lines.append(f"   Tags: {', '.join(citation.tags)}")
    else:
        lines.append(NO_KNOWLEDGE_PLACEHOLDER)
    lines.append("")

    lines += ["USER QUESTION:", query, ""]

    if context.context_mode == "sector":
        focus = f"the {context.sector} sector"
    else:
        focus = "the company as a whole"
    lines += [
        "INSTRUCTIONS:",
        "- Ground your answer in the relevant knowledge above",
        "- Use the user's memories to personalize the answer",
        "- If there is not enough information, say so clearly",
        "- Cite sources when appropriate",
        f"- Keep the focus on {focus}",
    ]
    return "\n".join(lines) + "\n"
