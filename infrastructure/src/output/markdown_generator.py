"""
Markdown rendering of articles with YAML frontmatter.
"""
import yaml
import logging
from typing import List

from core.models import Article

logger = logging.getLogger(__name__)


class MarkdownGenerator:
    """Generates a readable markdown document for one article."""

    @staticmethod
    def deduplicate_list(items: List[str]) -> List[str]:
        """Drop blanks and case-insensitive duplicates, keeping first occurrence."""
        seen = set()
        unique_items = []
        for item in items:
            item = item.strip()
            if not item or item.lower() in seen:
                continue
            seen.add(item.lower())
            unique_items.append(item)
        return unique_items

    def generate_markdown(self, article: Article) -> str:
        """Generate clean markdown content with proper structure."""
        frontmatter_data = {
            'id': article.id,
            'date': article.date,
            'house': article.name_of_house,
            'meeting': article.name_of_meeting,
            'session': article.session,
            'image_kind': article.image_kind,
            'categories': list(article.categories),
            'tags': self.deduplicate_list([k.keyword for k in article.keywords if k.priority == 'high']),
        }
        fm_yaml = yaml.safe_dump(frontmatter_data, allow_unicode=True, default_flow_style=False, sort_keys=False)

        newline = chr(10)
        content_sections = []

        if article.description:
            content_sections.append(article.description.strip())

        if article.summary.summary:
            content_sections.append(f"## 会議概要{newline}{newline}{article.summary.summary.strip()}")

        if article.soft_summary.summary:
            content_sections.append(f"## やさしい要約{newline}{newline}{article.soft_summary.summary.strip()}")

        middle = [m.summary.strip() for m in article.middle_summary if m.summary.strip()]
        if middle:
            flow_text = (newline + newline).join(middle)
            content_sections.append(f"## 議論の流れ{newline}{newline}{flow_text}")

        if article.participants:
            people = newline.join(f"- **{p.name}**: {p.summary}" for p in article.participants)
            content_sections.append(f"## 参加者{newline}{newline}{people}")

        if article.terms:
            terms = newline.join(f"- **{t.term}**: {t.definition}" for t in article.terms)
            content_sections.append(f"## 用語解説{newline}{newline}{terms}")

        dialog_lines = []
        for d in article.dialogs:
            if not d.summary:
                continue
            speaker = d.speaker + (f"（{d.speaker_position}）" if d.speaker_position else "")
            dialog_lines.append(f"{d.order}. **{speaker}** {d.summary}")
        if dialog_lines:
            content_sections.append(f"## 発言要旨{newline}{newline}{newline.join(dialog_lines)}")

        content_text = (newline + newline).join(content_sections)

        return f"""---
{fm_yaml}---

# {article.title}

{content_text}
"""
