"""
Local debug cache of per-chunk and reduce LLM results.
"""
import os
import json
import time
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def cache_enabled_from_env() -> bool:
    flag = os.getenv('LLM_CACHE_ENABLED', '').strip().lower()
    if flag in ('1', 'true'):
        return True
    if flag in ('0', 'false'):
        return False
    return os.getenv('APP_ENV', '').strip().lower() == 'local'


def _preview(text: Optional[str], max_chars: int = 200) -> Optional[str]:
    if not text:
        return None
    p = text[:max_chars].replace('\n', '\\n')
    return f"{p}…" if len(text) > max_chars else p


def _dump(obj: Any) -> Any:
    if hasattr(obj, 'model_dump'):
        return obj.model_dump()
    if is_dataclass(obj):
        return asdict(obj)
    return obj


class LLMCache:
    """Writes `{out_dir}/cache/{meeting_id}/` snapshots. Failures are logged, never raised."""

    def __init__(self, out_dir: Path, enabled: Optional[bool] = None):
        self.root = Path(out_dir) / 'cache'
        self.enabled = cache_enabled_from_env() if enabled is None else enabled

    def _write(self, path: Path, body: Dict[str, Any]):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(body, ensure_ascii=False, indent=2, default=str), encoding='utf-8')

    def save_chunk(self, meeting_id: str, chunk_index: int, chunk_count: int,
                   based_on_orders: List[int], result: Any = None, usage: Any = None,
                   raw_text: Optional[str] = None, locator: Optional[str] = None):
        if not self.enabled:
            return
        try:
            self._write(self.root / meeting_id / 'chunks' / f"chunk-{chunk_index:03d}.json", {
                'meetingId': meeting_id,
                'index': chunk_index,
                'count': chunk_count,
                'based_on_orders': based_on_orders,
                'usage': _dump(usage) if usage is not None else None,
                'result': _dump(result),
                'nonJson': {'preview': _preview(raw_text), 'locator': locator} if raw_text else None,
                'createdAt': datetime.now(timezone.utc).isoformat(),
            })
        except Exception as e:
            logger.warning(f"[llmCache] Failed to save chunk cache: {meeting_id}#{chunk_index}: {e}")

    def save_reduce(self, meeting_id: str, result: Any, raw_non_jsons: Optional[List[Dict[str, Any]]] = None):
        if not self.enabled:
            return
        try:
            self._write(self.root / meeting_id / 'reduce.json', {
                'meetingId': meeting_id,
                'reduce': _dump(result),
                'rawNonJsons': [
                    {'phase': r.get('phase'), 'index': r.get('index'),
                     'preview': _preview(r.get('text')), 'locator': r.get('locator')}
                    for r in (raw_non_jsons or [])
                ],
                'createdAt': datetime.now(timezone.utc).isoformat(),
            })
        except Exception as e:
            logger.warning(f"[llmCache] Failed to save reduce cache: {meeting_id}: {e}")

    def cleanup(self, days: int) -> int:
        """Remove cache files older than `days` days."""
        cutoff = time.time() - (days * 24 * 60 * 60)

        removed_count = 0
        for cache_file in self.root.rglob('*.json'):
            try:
                if cache_file.stat().st_mtime < cutoff:
                    cache_file.unlink()
                    removed_count += 1
            except OSError as e:
                logger.warning(f"Failed to remove cache file {cache_file}: {e}")

        logger.info(f"Removed {removed_count} old cache files")
        return removed_count

    def write_combined(self, meeting_id: str, chunk_count: int):
        """Merge chunk files and reduce.json into llm_cache.json."""
        if not self.enabled:
            return
        try:
            root = self.root / meeting_id
            chunks = []
            chunk_dir = root / 'chunks'
            if chunk_dir.exists():
                for i in range(chunk_count):
                    f = chunk_dir / f"chunk-{i:03d}.json"
                    if not f.exists():
                        continue
                    try:
                        chunks.append(json.loads(f.read_text(encoding='utf-8')))
                    except (OSError, ValueError) as e:
                        logger.warning(f"[llmCache] Skipping unreadable {f.name}: {e}")
            reduce = None
            reduce_file = root / 'reduce.json'
            if reduce_file.exists():
                reduce = json.loads(reduce_file.read_text(encoding='utf-8'))
            self._write(root / 'llm_cache.json', {
                'meetingId': meeting_id,
                'chunkCount': chunk_count,
                'chunks': chunks,
                'reduce': reduce,
                'createdAt': datetime.now(timezone.utc).isoformat(),
            })
        except Exception as e:
            logger.warning(f"[llmCache] Failed to write combined cache: {meeting_id}: {e}")
