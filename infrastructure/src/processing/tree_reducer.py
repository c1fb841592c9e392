"""
Parallel tree reduction of chunk-level middle summaries.

Layers of fixed-size groups are reduced concurrently until one group is
left, giving O(log_g n) sequential LLM rounds. Coverage
(`based_on_orders`) is tracked locally as the union of each group's
inputs, so the root always covers exactly the union of the leaves.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from core.api_client import GenerateOptions, LLMClient
from core.errors import ConfigurationError
from core.models import MeetingMeta, MiddleSummary, ReduceResult, SoftSummary, Summary
from processing.concurrency import chunk_list, map_with_concurrency
from processing.prompt_manager import PromptManager

logger = logging.getLogger(__name__)


def union_orders(summaries: Sequence[MiddleSummary]) -> List[int]:
    orders = set()
    for s in summaries:
        orders.update(s.based_on_orders)
    return sorted(orders)


class TreeReducer:
    def __init__(self, llm: LLMClient, prompts: Optional[PromptManager] = None,
                 group_size: int = 8, concurrency: int = 4,
                 options: Optional[GenerateOptions] = None):
        if group_size < 2:
            raise ConfigurationError(f"reduce group size must be at least 2. Received: {group_size}")
        if concurrency <= 0:
            raise ConfigurationError(f"reduce concurrency must be positive. Received: {concurrency}")
        self.llm = llm
        self.prompts = prompts or PromptManager()
        self.group_size = group_size
        self.concurrency = concurrency
        self.options = options or GenerateOptions(temperature=0.2)

    async def reduce_group(self, meta: MeetingMeta, group: List[MiddleSummary],
                           non_json: Optional[List[Dict[str, Any]]] = None) -> ReduceResult:
        """One reduction call over a group that fits in a single prompt."""
        messages = self.prompts.messages('reduce', meta=meta, middle_summaries=group)
        result = await self.llm.generate_object(messages, ReduceResult, self.options)

        if result.parse_failed:
            # Keep the inputs' text so an unparseable answer loses nothing
            joined = "\n".join(s.summary for s in group if s.summary)
            reduced = ReduceResult(summary=Summary(summary=joined), soft_summary=SoftSummary())
            if non_json is not None:
                non_json.append({'phase': 'reduce', 'text': result.raw_text, 'locator': result.locator})
        else:
            reduced = result.value

        covered = union_orders(group)
        reduced.summary.based_on_orders = covered
        reduced.soft_summary.based_on_orders = list(covered)
        return reduced

    async def _reduce_to_middle(self, meta: MeetingMeta, group: List[MiddleSummary],
                                non_json: Optional[List[Dict[str, Any]]]) -> MiddleSummary:
        reduced = await self.reduce_group(meta, group, non_json)
        return MiddleSummary(based_on_orders=reduced.summary.based_on_orders, summary=reduced.summary.summary)

    async def reduce(self, meta: MeetingMeta, middle_summaries: Sequence[MiddleSummary],
                     non_json: Optional[List[Dict[str, Any]]] = None) -> ReduceResult:
        if not middle_summaries:
            return ReduceResult.empty()

        layer = list(middle_summaries)
        depth = 0
        while len(layer) > self.group_size:
            groups = chunk_list(layer, self.group_size)
            depth += 1
            logger.info(f"Reduce layer {depth} for {meta.id}: {len(layer)} summaries -> {len(groups)} groups")
            layer = await map_with_concurrency(
                groups,
                self.concurrency,
                lambda group, i: self._reduce_to_middle(meta, group, non_json),
            )

        logger.info(f"Final reduce for {meta.id} over {len(layer)} summaries")
        return await self.reduce_group(meta, layer, non_json)
