"""Harvest user memories from a conversation turn.

After an answer is produced, the user's message is scanned for statements
worth remembering (preferences, company context, rules). Each match is
embedded and stored as a UserMemory for later retrieval.

Extraction is fire-and-forget: nothing here raises to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import re
import unicodedata

from context_engine.models import RequestContext, UserMemory
from context_engine.rag import embeddings
from context_engine.rag.store import KnowledgeStore, get_default_store

logger = logging.getLogger(__name__)

INITIAL_CONFIDENCE = 0.7

# What makes a statement worth remembering
MEMORY_PATTERNS = [
    # explicit preferences
    re.compile(r"eu prefiro|gosto de|não gosto|sempre|nunca|costumo", re.IGNORECASE),
    # company or condominium context
    re.compile(r"nosso condomínio|nossa empresa|nosso setor", re.IGNORECASE),
    # rules and policies
    re.compile(r"nossa política|nossa regra|procedimento|protocolo", re.IGNORECASE),
]

# Memory type classification, first match wins
TYPE_PATTERNS = [
    ("preference", re.compile(r"prefiro|gosto|não gosto", re.IGNORECASE)),
    ("rule", re.compile(r"política|regra|procedimento|protocolo", re.IGNORECASE)),
    ("context", re.compile(r"nosso|nossa|empresa|condomínio", re.IGNORECASE)),
]

_SENTENCE_SPLIT = re.compile(r"[.!?]+")

# Strong references to in-flight extraction tasks
_background_tasks: set[asyncio.Task] = set()


def extract_relevant_sentence(text: str, pattern: re.Pattern) -> str | None:
    """First sentence of ``text`` matching ``pattern``, trimmed, or None."""
    for sentence in _SENTENCE_SPLIT.split(text):
        if pattern.search(sentence):
            return sentence.strip() or None
    return None


def classify_memory_type(content: str) -> str:
    for memory_type, pattern in TYPE_PATTERNS:
        if pattern.search(content):
            return memory_type
    return "fact"


def find_memory_candidates(user_message: str) -> list[str]:
    """Sentences to remember, one per matching pattern, without repeats."""
    text = unicodedata.normalize("NFC", user_message or "")
    found = []
    for pattern in MEMORY_PATTERNS:
        if not pattern.search(text):
            continue
        sentence = extract_relevant_sentence(text, pattern)
        if sentence and sentence not in found:
            found.append(sentence)
    return found


async def _save_memory(content: str, context: RequestContext, store: KnowledgeStore) -> UserMemory | None:
    try:
        embedding = await asyncio.to_thread(embeddings.embed_query, content)
        memory = UserMemory(
            company_id=context.company_id,
            user_id=context.user_id,
            memory_type=classify_memory_type(content),
            content=content,
            embedding=embedding,
            confidence=INITIAL_CONFIDENCE,
            usage_count=0,
        )
        return await asyncio.to_thread(store.save_user_memory, memory)
    except Exception as e:
        logger.error("Error saving memory for user %s: %s", context.user_id, e)
        return None


async def extract_memories(
    user_message: str,
    assistant_response: str,
    context: RequestContext,
    *,
    store: KnowledgeStore | None = None,
) -> None:
    """Scan ``user_message`` and persist any memories found. Never raises."""
    try:
        candidates = find_memory_candidates(user_message)
        if not candidates:
            return
        store = store or get_default_store()
        saved = 0
        for content in candidates:
            if await _save_memory(content, context, store) is not None:
                saved += 1
        logger.info("Extracted %d/%d memories for user %s", saved, len(candidates), context.user_id)
    except Exception as e:
        logger.error("Error extracting memories: %s", e)


def schedule_memory_extraction(
    user_message: str,
    assistant_response: str,
    context: RequestContext,
    *,
    store: KnowledgeStore | None = None,
) -> asyncio.Task:
    """Start extract_memories() in the background and return its task.

    Must be called from a running event loop.
    """
    task = asyncio.get_running_loop().create_task(
        extract_memories(user_message, assistant_response, context, store=store)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
