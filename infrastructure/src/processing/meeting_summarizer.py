"""
Meeting summarization pipeline: dialogs -> packs -> chunk summaries ->
tree reduction -> aggregated Article, plus order-preserving batches.
"""
import logging
from typing import Callable, List, Optional, Sequence

from core.api_client import GenerateOptions, LLMClient
from core.models import Article, RawMeetingRecord
from core.settings import PipelineSettings
from processing.aggregator import build_article, collect_chunks
from processing.chunk_summarizer import ChunkSummarizer
from processing.concurrency import map_with_concurrency
from processing.dialog_builder import build_dialogs, build_meta
from processing.packing import build_order_len, materialize_chunks, pack_by_greedy
from processing.prompt_manager import PromptManager
from processing.tree_reducer import TreeReducer
from utils.llm_cache import LLMCache

logger = logging.getLogger(__name__)


class MeetingSummarizer:
    """Summarizes whole meetings with one shared LLM client."""

    def __init__(self, llm: LLMClient, settings: Optional[PipelineSettings] = None,
                 prompts: Optional[PromptManager] = None, cache: Optional[LLMCache] = None):
        self.llm = llm
        self.settings = (settings or PipelineSettings()).validate()
        self.prompts = prompts or PromptManager()
        self.cache = cache
        options = GenerateOptions(temperature=self.settings.temperature)
        self.chunk_summarizer = ChunkSummarizer(
            llm, self.prompts, self.settings.chunk_concurrency, options, cache
        )
        self.reducer = TreeReducer(
            llm, self.prompts, self.settings.reduce_group_size, self.settings.reduce_concurrency, options
        )

    async def process_meeting(self, raw: RawMeetingRecord, char_threshold: Optional[int] = None) -> Article:
        threshold = self.settings.char_threshold if char_threshold is None else char_threshold
        meta = build_meta(raw)
        dialogs = build_dialogs(raw)

        packs = pack_by_greedy(build_order_len(dialogs), threshold)
        chunks = materialize_chunks(packs, dialogs)
        total_chars = sum(p.total_len for p in packs)
        logger.info(
            f"Processing meeting {meta.id} ({meta.name_of_meeting}): "
            f"{len(dialogs)} dialogs, {total_chars} chars, {len(chunks)} chunks"
        )

        outcomes = await self.chunk_summarizer.summarize_all(meta, chunks)
        aggregate = collect_chunks(outcomes)

        non_json = [
            {'phase': 'chunk', 'index': o.index, 'text': o.raw_text}
            for o in sorted(outcomes, key=lambda o: o.index) if o.raw_text
        ]
        reduced = await self.reducer.reduce(meta, aggregate.middle_summaries, non_json)
        article = build_article(meta, aggregate, reduced, self.settings.category_top_n)

        if self.cache:
            self.cache.save_reduce(meta.id, reduced, non_json)
            self.cache.write_combined(meta.id, len(chunks))

        logger.info(f"Finished meeting {meta.id}: \"{article.title}\"")
        return article

    async def process_batch(self, raws: Sequence[RawMeetingRecord], concurrency: Optional[int] = None,
                            char_threshold: Optional[int] = None, return_exceptions: bool = False,
                            on_complete: Optional[Callable[[int], None]] = None) -> List:
        """Articles in input order. With return_exceptions, failures are returned in place.

        `on_complete(index)` is called as each meeting finishes, successfully or not.
        """
        limit = self.settings.batch_concurrency if concurrency is None else concurrency

        async def run(raw: RawMeetingRecord, index: int) -> Article:
            try:
                return await self.process_meeting(raw, char_threshold)
            except Exception as e:
                logger.error(f"Failed to process meeting {raw.issue_id}: {e}")
                raise
            finally:
                if on_complete:
                    on_complete(index)

        return await map_with_concurrency(raws, limit, run, return_exceptions=return_exceptions)


async def process_meeting(raw: RawMeetingRecord, instruction: str, output_format: str,
                          char_threshold: int, llm_client: LLMClient,
                          settings: Optional[PipelineSettings] = None) -> Article:
    summarizer = MeetingSummarizer(llm_client, settings, PromptManager(instruction, output_format))
    return await summarizer.process_meeting(raw, char_threshold)


async def process_batch(raws: Sequence[RawMeetingRecord], instruction: str, output_format: str,
                        char_threshold: int, llm_client: LLMClient, concurrency: int,
                        settings: Optional[PipelineSettings] = None,
                        return_exceptions: bool = False) -> List:
    summarizer = MeetingSummarizer(llm_client, settings, PromptManager(instruction, output_format))
    return await summarizer.process_batch(raws, concurrency, char_threshold, return_exceptions)
