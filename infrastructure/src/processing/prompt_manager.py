"""
Prompt management for chunk summarization and reduction.
"""
import json
import textwrap
from typing import Dict, List, Sequence

from core.models import Dialog, MeetingMeta, MiddleSummary

DEFAULT_INSTRUCTION = textwrap.dedent("""
    以下の国会会議録の発言をもとに、要約データを構成してください。
    この構造は人間が読むレポートとしてだけでなく、システムが発言と要約を対応付けて処理できるように設計されています。

    1. 中間要約 (middle_summary): 与えられた発言のまとまりを要約する。
       - based_on_orders: 要約の根拠となる dialogs.order の配列
       - summary: 議論の要点
    2. 発言ごとの要約 (dialogs): 各発言について order, summary（主旨の簡潔な要約）,
       soft_language（一般読者にも伝わるやさしい言い換え）を記述する。
    3. 参加者情報 (participants): 主な話者ごとに名前と発言要旨。
    4. 用語の解説 (terms): 一般にはわかりにくい用語の文脈に即した定義。
    5. キーワード (keywords): 議論の焦点となる語と重要度 (high / medium / low)。
    6. カテゴリ (categories): 議論の大まかな分野（例: 「エネルギー」「財政」）。
    7. 全体の要約 (summary) とやさしい要約 (soft_summary): 会議全体の要点と、
       政治に詳しくない読者向けの背景を含めた丁寧な説明。
""").strip()

DEFAULT_OUTPUT_FORMAT = textwrap.dedent("""
    {
      "title": "会議の見出し",
      "description": "この会議についての説明",
      "categories": ["カテゴリ"],
      "summary": {"based_on_orders": [1, 2, 3], "summary": "会議全体の要約"},
      "soft_summary": {"based_on_orders": [1, 2, 3], "summary": "やさしい要約"},
      "middle_summary": {"based_on_orders": [4, 5], "summary": "中間要約"},
      "dialogs": [{"order": 1, "summary": "発言の要約", "soft_language": "やさしい言い換え"}],
      "participants": [{"name": "話者名", "summary": "発言要旨"}],
      "terms": [{"term": "専門用語", "definition": "その説明"}],
      "keywords": [{"keyword": "キーワード", "priority": "high | medium | low"}]
    }
""").strip()

CHUNK_SYSTEM = (
    "You are an expert assistant that summarizes Japanese parliamentary minutes for general readers. "
    "Return ONLY JSON that strictly conforms to the provided schema."
)

REDUCE_SYSTEM = (
    "You consolidate chunk-level middle summaries into final outputs. "
    "Return ONLY JSON that strictly conforms to the provided schema."
)


def _meta_json(meta: MeetingMeta) -> str:
    return json.dumps({
        'id': meta.id,
        'date': meta.date,
        'house': meta.name_of_house,
        'meeting': meta.name_of_meeting,
        'session': meta.session,
    }, ensure_ascii=False)


class PromptManager:
    """Manages prompts for the chunk and reduce stages."""

    def __init__(self, instruction: str = DEFAULT_INSTRUCTION, output_format: str = DEFAULT_OUTPUT_FORMAT):
        self.instruction = instruction
        self.output_format = output_format
        self.prompts = {
            'chunk': (CHUNK_SYSTEM, self._chunk_prompt),
            'reduce': (REDUCE_SYSTEM, self._reduce_prompt),
        }

    def get(self, prompt_type: str, **kwargs) -> str:
        """Get a prompt with interpolated variables."""
        if prompt_type not in self.prompts:
            raise ValueError(f"Unknown prompt type: {prompt_type}")
        return self.prompts[prompt_type][1](**kwargs)

    def messages(self, prompt_type: str, **kwargs) -> List[Dict[str, str]]:
        """System + user message pair for a prompt type."""
        user = self.get(prompt_type, **kwargs)
        return [
            {'role': 'system', 'content': self.prompts[prompt_type][0]},
            {'role': 'user', 'content': user},
        ]

    def _chunk_prompt(self, meta: MeetingMeta, dialogs: Sequence[Dialog],
                      chunk_index: int, chunk_count: int) -> str:
        chunk_info = json.dumps({
            'index': chunk_index,
            'count': chunk_count,
            'based_on_orders': [d.order for d in dialogs],
        })
        dialogs_json = json.dumps([d.model_dump() for d in dialogs], ensure_ascii=False)
        return f"""Return ONLY JSON for the following task.

Instructions:
{self.instruction}

Output format (for reference):
{self.output_format}

Meta:
{_meta_json(meta)}

Chunk info:
{chunk_info}

This chunk is part {chunk_index + 1} of {chunk_count}. Summarize only these dialogs in "middle_summary",
and include "categories": an array of high-level topics for THIS CHUNK.

Dialogs:
{dialogs_json}
"""

    def _reduce_prompt(self, meta: MeetingMeta, middle_summaries: Sequence[MiddleSummary]) -> str:
        summaries_json = json.dumps([m.model_dump() for m in middle_summaries], ensure_ascii=False)
        return f"""Return ONLY JSON.

Instructions:
{self.instruction}

Output format (for reference):
{self.output_format}

Requirements:
- Produce a concise, informative "title" (headline) for the WHOLE meeting.
- Provide "categories" as an array of high-level topics for the WHOLE meeting (e.g., ["エネルギー", "財政"]).
- Keep summaries faithful to the provided middle summaries.

Meta:
{_meta_json(meta)}

Middle summaries:
{summaries_json}
"""
