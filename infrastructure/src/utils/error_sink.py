"""
Audit sink for raw LLM payloads that failed to parse and for run logs.
"""
import json
import uuid
import logging
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MAX_PAYLOAD_CHARS = 1024 * 1024


def serialize_error(error: Any) -> Dict[str, Any]:
    if isinstance(error, BaseException):
        return {
            'name': type(error).__name__,
            'message': str(error),
            'stack': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
    return {'message': str(error)}


def truncate(text: str, max_chars: int = MAX_PAYLOAD_CHARS) -> str:
    return text[:max_chars] + "\n/* truncated */" if len(text) > max_chars else text


class ErrorSink:
    """Interface: persist an error with its raw payload and return a locator."""

    def save(self, error: Any, payload: str, hint: str = 'llm-parse',
             meta: Optional[Dict[str, Any]] = None) -> Optional[str]:
        raise NotImplementedError

    def log(self, kind: str, payload: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError


class NullErrorSink(ErrorSink):
    """Discards everything."""

    def save(self, error, payload, hint='llm-parse', meta=None):
        return None

    def log(self, kind, payload):
        return None


class LocalErrorSink(ErrorSink):
    """Writes one JSON document per event under `root/{prefix}/`."""

    def __init__(self, root: Path, prefix: str = 'error'):
        self.root = Path(root)
        self.prefix = prefix

    def _write(self, folder: str, name: str, body: Dict[str, Any]) -> str:
        out_dir = self.root / folder
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / name
        path.write_text(json.dumps(body, ensure_ascii=False, indent=2), encoding='utf-8')
        return str(path)

    def save(self, error, payload, hint='llm-parse', meta=None):
        now = datetime.now(timezone.utc)
        stamp = now.isoformat().replace(':', '-')
        name = f"{stamp}-{hint}-{uuid.uuid4().hex[:6]}.json"
        body = {
            'time': now.isoformat(),
            'error': serialize_error(error),
            'meta': meta,
            'payload': truncate(payload or ''),
        }
        locator = self._write(self.prefix, name, body)
        logger.error(f"[errorSink] saved to {locator}")
        return locator

    def log(self, kind, payload):
        now = datetime.now(timezone.utc)
        name = f"{now.isoformat().replace(':', '-')}-{uuid.uuid4().hex[:8]}.json"
        return self._write(kind, name, payload)


def save_quietly(sink: Optional[ErrorSink], error: Any, payload: str, hint: str = 'llm-parse',
                 meta: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Best-effort save: sink failures are logged and dropped."""
    if sink is None:
        return None
    try:
        return sink.save(error, payload, hint=hint, meta=meta)
    except Exception as e:
        logger.warning(f"[errorSink] failed to save {hint}: {e}")
        return None
