"""
Per-chunk summarization: one schema-constrained call per pack.
"""
import logging
from typing import List, Optional, Sequence

from core.api_client import GenerateOptions, LLMClient
from core.models import ChunkOutcome, ChunkResult, Dialog, DialogUpdate, MeetingMeta, MiddleSummary
from processing.concurrency import map_with_concurrency
from processing.prompt_manager import PromptManager
from utils.llm_cache import LLMCache

logger = logging.getLogger(__name__)


def merge_dialog_updates(dialogs: Sequence[Dialog], updates: Optional[Sequence[DialogUpdate]]) -> List[Dialog]:
    """Apply per-dialog summaries by order. Unknown orders are ignored; untouched dialogs keep empty fields."""
    by_order = {d.order: d for d in dialogs}
    for update in updates or []:
        dialog = by_order.get(update.order)
        if dialog is None:
            continue
        if update.summary is not None:
            dialog.summary = update.summary
        if update.soft_language is not None:
            dialog.soft_language = update.soft_language
    return list(dialogs)


def normalize_orders(reported: Sequence[int], chunk_orders: Sequence[int]) -> List[int]:
    """Orders the model cited that belong to this chunk; all chunk orders if none do."""
    allowed = set(chunk_orders)
    kept = sorted({o for o in reported if o in allowed})
    return kept or sorted(allowed)


class ChunkSummarizer:
    """Summarizes the chunks of one meeting with bounded concurrency."""

    def __init__(self, llm: LLMClient, prompts: Optional[PromptManager] = None, concurrency: int = 4,
                 options: Optional[GenerateOptions] = None, cache: Optional[LLMCache] = None):
        self.llm = llm
        self.prompts = prompts or PromptManager()
        self.concurrency = concurrency
        self.options = options or GenerateOptions(temperature=0.2)
        self.cache = cache

    async def summarize_chunk(self, meta: MeetingMeta, chunk: List[Dialog],
                              index: int, count: int) -> ChunkOutcome:
        messages = self.prompts.messages('chunk', meta=meta, dialogs=chunk, chunk_index=index, chunk_count=count)
        logger.info(f"Processing chunk {index + 1}/{count} of {meta.id} ({len(chunk)} dialogs)")

        result = await self.llm.generate_object(messages, ChunkResult, self.options)
        orders = [d.order for d in chunk]

        if result.parse_failed:
            part = ChunkResult(middle_summary=MiddleSummary(based_on_orders=sorted(orders)))
        else:
            part = result.value
            part.middle_summary.based_on_orders = normalize_orders(part.middle_summary.based_on_orders, orders)

        dialogs = merge_dialog_updates(chunk, part.dialogs)

        if self.cache:
            self.cache.save_chunk(meta.id, index, count, part.middle_summary.based_on_orders,
                                  result=part, usage=result.usage,
                                  raw_text=result.raw_text if result.parse_failed else None,
                                  locator=result.locator)

        return ChunkOutcome(index=index, dialogs=dialogs, result=part,
                            raw_text=result.raw_text if result.parse_failed else None)

    async def summarize_all(self, meta: MeetingMeta, chunks: List[List[Dialog]]) -> List[ChunkOutcome]:
        """Outcomes in chunk order, whatever order the calls finish in."""
        count = len(chunks)
        return await map_with_concurrency(
            chunks,
            self.concurrency,
            lambda chunk, i: self.summarize_chunk(meta, chunk, i, count),
        )
