"""
Local article persistence: one JSON document per article, a markdown
rendering, and a JSON index keyed like a single-table store
(PK=ARTICLE#{id}, SK=META, gsi1pk=DATE#{date}).
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.errors import ArticleExistsError
from core.models import Article
from output.markdown_generator import MarkdownGenerator

logger = logging.getLogger(__name__)


class ArticleStore:
    """Stores articles under `root` and tracks them in `root/index.json`."""

    def __init__(self, root: Path, markdown: Optional[MarkdownGenerator] = None, overwrite: bool = False):
        self.root = Path(root)
        self.index_path = self.root / 'index.json'
        self.markdown = markdown or MarkdownGenerator()
        self.overwrite = overwrite
        self.data: Dict[str, Dict[str, Any]] = {}
        self.load()

    def load(self):
        """Load the index from file."""
        if self.index_path.exists():
            try:
                with open(self.index_path, 'r', encoding='utf-8') as f:
                    self.data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load article index: {e}")
                self.data = {}

    def save(self):
        """Save the index to file."""
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.index_path, 'w', encoding='utf-8') as f:
            json.dump(self.data, f, ensure_ascii=False, indent=2)

    @staticmethod
    def key(article_id: str) -> str:
        return f"ARTICLE#{article_id}"

    def exists(self, article_id: str) -> bool:
        return self.key(article_id) in self.data

    def article_path(self, article_id: str) -> Path:
        return self.root / 'articles' / f"{article_id}.json"

    def store(self, article: Article) -> str:
        """Persist one article and return its id. Existing ids are rejected unless overwrite is set."""
        key = self.key(article.id)
        if key in self.data and not self.overwrite:
            raise ArticleExistsError(f"Article already stored: {article.id}")

        json_path = self.article_path(article.id)
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(article.model_dump_json(indent=2), encoding='utf-8')

        md_dir = self.root / 'markdown' / article.month
        md_dir.mkdir(parents=True, exist_ok=True)
        md_path = md_dir / f"{article.id}.md"
        md_path.write_text(self.markdown.generate_markdown(article), encoding='utf-8')

        self.data[key] = {
            'PK': key,
            'SK': 'META',
            'type': 'Article',
            'createdAt': datetime.now(timezone.utc).isoformat(),
            'gsi1pk': f"DATE#{article.date}",
            'gsi1sk': article.id,
            'title': article.title,
            'json': str(json_path.relative_to(self.root)),
            'markdown': str(md_path.relative_to(self.root)),
        }
        self.save()
        logger.info(f"Stored article {article.id} -> {json_path}")
        return article.id

    def get(self, article_id: str) -> Article:
        return Article.model_validate_json(self.article_path(article_id).read_text(encoding='utf-8'))

    def ids_by_date(self, date: str) -> List[str]:
        """Secondary-index lookup: article ids for one meeting date."""
        pk = f"DATE#{date}"
        return sorted(item['gsi1sk'] for item in self.data.values() if item.get('gsi1pk') == pk)
