#!/usr/bin/env python3
"""
PoliTopics - Main Processing Module
Fetches National Diet minutes, summarizes each meeting with an LLM and
stores the resulting articles.
"""
import os
import sys
import uuid
import asyncio
import argparse
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from tqdm import tqdm

# Load environment variables
load_dotenv(Path(__file__).parent / '.env')

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent))

from core.api_client import OpenAIChatClient
from core.errors import ArticleExistsError
from core.models import RawMeetingRecord
from core.rate_limiter import RequestMonitor
from core.settings import ParseErrorPolicy, PipelineSettings
from output.article_store import ArticleStore
from processing.meeting_summarizer import MeetingSummarizer
from processing.prompt_manager import PromptManager
from sources.diet_api import DEFAULT_ENDPOINT, DietAPIClient
from utils.error_sink import LocalErrorSink, serialize_error
from utils.llm_cache import LLMCache

logger = logging.getLogger(__name__)


class PoliTopicsRunner:
    """Main application class for summarizing Diet meetings."""

    def __init__(self, args):
        self.args = args
        self.run_id = str(uuid.uuid4())
        self.settings = self._build_settings()

        out_dir = Path(args.out_dir) if args.out_dir else self.settings.out_dir
        self.monitor = RequestMonitor()
        self.error_sink = LocalErrorSink(out_dir / 'logs')
        self.llm = OpenAIChatClient.from_settings(self.settings, self.error_sink, self.monitor)
        self.cache = LLMCache(out_dir)
        self.summarizer = MeetingSummarizer(self.llm, self.settings, PromptManager(), self.cache)
        self.store = ArticleStore(out_dir, overwrite=args.overwrite)
        self.source = DietAPIClient(endpoint=args.endpoint)

    def _build_settings(self) -> PipelineSettings:
        """Environment settings with command line overrides."""
        settings = PipelineSettings.from_env()
        if self.args.char_threshold is not None:
            settings.char_threshold = self.args.char_threshold
        if self.args.concurrency is not None:
            settings.batch_concurrency = self.args.concurrency
        if self.args.parse_error:
            settings.parse_error_policy = ParseErrorPolicy(self.args.parse_error)
        return settings.validate()

    def find_meetings_to_process(self) -> List[RawMeetingRecord]:
        """Fetch meetings and skip the ones already stored."""
        data = self.source.fetch(self.args.from_date, self.args.until_date)
        meetings = list(data.meeting_record)
        logger.info(f"Found {len(meetings)} meetings")

        if not self.args.overwrite:
            pending = [m for m in meetings if not self.store.exists(m.issue_id)]
            if len(pending) < len(meetings):
                logger.info(f"Skipping {len(meetings) - len(pending)} meetings already stored")
            meetings = pending
        return meetings

    def dry_run(self, meetings: List[RawMeetingRecord]) -> bool:
        """Show what would be processed without calling the LLM."""
        if self.args.dry_run:
            logger.info("Dry run mode - showing what would be processed:")
            for m in meetings:
                chars = sum(len(s.speech or '') for s in m.speech_record)
                print('→', m.issue_id, m.date, m.name_of_house, m.name_of_meeting,
                      f"({len(m.speech_record)} speeches, {chars} chars)")
            return True
        return False

    async def summarize(self, meetings: List[RawMeetingRecord]) -> list:
        bar = tqdm(total=len(meetings), desc='Meeting')
        try:
            return await self.summarizer.process_batch(
                meetings,
                return_exceptions=True,
                on_complete=lambda i: bar.update(1),
            )
        finally:
            bar.close()

    def run(self) -> int:
        """Main execution method. Returns the number of failed meetings."""
        started_at = datetime.now(timezone.utc).isoformat()

        if self.args.cleanup_cache:
            self.cache.cleanup(self.args.cleanup_cache)

        meetings = self.find_meetings_to_process()
        if not meetings or self.dry_run(meetings):
            return 0

        results = asyncio.run(self.summarize(meetings))

        stored_ids = []
        failures = []
        for raw, result in zip(meetings, results):
            if isinstance(result, BaseException):
                failures.append({'id': raw.issue_id, 'error': serialize_error(result)})
                continue
            try:
                stored_ids.append(self.store.store(result))
            except ArticleExistsError as e:
                logger.warning(str(e))

        self.monitor.log_status()
        payload = {
            'runId': self.run_id,
            'startedAt': started_at,
            'finishedAt': datetime.now(timezone.utc).isoformat(),
            'stored': len(stored_ids),
            'storedIds': stored_ids,
            'failed': failures,
            'filters': {'from': self.args.from_date, 'until': self.args.until_date},
        }
        try:
            self.error_sink.log('error' if failures else 'success', payload)
        except OSError as e:
            logger.warning(f"Failed to write run log: {e}")

        logger.info(f'✅ All done. Stored {len(stored_ids)} articles, {len(failures)} failed.')
        return len(failures)


def create_argument_parser():
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(description='Summarize National Diet meeting minutes')

    # Source options
    parser.add_argument('--from', dest='from_date', default=os.getenv('FROM_DATE') or None,
                        help='Start date (YYYY-MM-DD, default: FROM_DATE)')
    parser.add_argument('--until', dest='until_date', default=os.getenv('UNTIL_DATE') or None,
                        help='End date (YYYY-MM-DD, default: UNTIL_DATE or today)')
    parser.add_argument('--endpoint', default=os.getenv('NATIONAL_DIET_API_ENDPOINT') or DEFAULT_ENDPOINT,
                        help='Diet API meeting endpoint (default: NATIONAL_DIET_API_ENDPOINT)')

    # Processing options
    parser.add_argument('--out-dir', help='Output directory (default: OUT_DIR or ./out)')
    parser.add_argument('--char-threshold', type=int, help='Max characters per chunk')
    parser.add_argument('--concurrency', type=int, help='Meetings processed in parallel')
    parser.add_argument('--parse-error', choices=[p.value for p in ParseErrorPolicy],
                        help='What to do when the LLM returns non-JSON')
    parser.add_argument('--overwrite', action='store_true', help='Reprocess stored meetings')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be processed')

    # Maintenance options
    parser.add_argument('--cleanup-cache', type=int, metavar='DAYS',
                        help='Remove LLM cache files older than N days')

    return parser


def main():
    """Main entry point."""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s - %(message)s')
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        app = PoliTopicsRunner(args)
        failed = app.run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        sys.exit(1)
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
