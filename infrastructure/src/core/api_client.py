"""
LLM client with budget gating, concurrency throttling, timeouts, retries
and schema-constrained JSON output.
"""
import os
import time
import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from core.errors import LLMTimeoutError, NonJsonLLMError
from core.json_salvage import parse_json_lenient
from core.rate_limiter import BudgetConfig, BudgetManager, RequestMonitor
from core.retry import RetryPolicy, call_with_retry
from core.settings import ParseErrorPolicy
from utils.error_sink import ErrorSink, save_quietly

logger = logging.getLogger(__name__)

Message = Dict[str, str]
M = TypeVar('M', bound=BaseModel)


@dataclass
class Usage:
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    @classmethod
    def from_openai(cls, usage: Any) -> Optional['Usage']:
        if usage is None:
            return None
        return cls(
            input_tokens=getattr(usage, 'prompt_tokens', None),
            output_tokens=getattr(usage, 'completion_tokens', None),
            total_tokens=getattr(usage, 'total_tokens', None),
        )


@dataclass
class GenerateOptions:
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    timeout: Optional[float] = None  # seconds
    parse_error_policy: Optional[ParseErrorPolicy] = None


@dataclass
class GenerateResult:
    text: str
    usage: Optional[Usage] = None
    raw: Any = None


@dataclass
class ObjectResult:
    """Parsed object, or (with parse_failed) None plus the raw model text."""
    value: Any
    usage: Optional[Usage] = None
    raw_text: Optional[str] = None
    parse_failed: bool = False
    locator: Optional[str] = None


class LLMClient:
    """Uniform call surface over a generative backend.

    Each attempt takes a concurrency slot, passes the budget gate, then runs
    the backend call under a timeout. Attempts are retried per the retry
    policy. Subclasses implement `_complete` and `_open_stream`.
    """

    name = 'llm'

    def __init__(self, budget: Optional[BudgetManager] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 timeout: float = 60.0,
                 max_concurrency: int = 0,
                 parse_error_policy: ParseErrorPolicy = ParseErrorPolicy.THROW,
                 error_sink: Optional[ErrorSink] = None,
                 monitor: Optional[RequestMonitor] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.budget = budget
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop = None
        self.parse_error_policy = parse_error_policy
        self.error_sink = error_sink
        self.monitor = monitor or RequestMonitor()
        self._sleep = sleep

    # ---------------- backend hooks ----------------

    async def _complete(self, messages: List[Message], options: GenerateOptions,
                        schema: Optional[Type[BaseModel]] = None) -> GenerateResult:
        raise NotImplementedError

    async def _open_stream(self, messages: List[Message], options: GenerateOptions) -> AsyncIterator[str]:
        raise NotImplementedError

    async def count_tokens(self, messages: List[Message],
                           options: Optional[GenerateOptions] = None) -> Optional[int]:
        """Token estimate for budgeting, or None if the backend cannot provide one."""
        return None

    # ---------------- call pipeline ----------------

    def _get_semaphore(self) -> Optional[asyncio.Semaphore]:
        """Concurrency cap for the running event loop, created on first use."""
        if self.max_concurrency <= 0:
            return None
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    @asynccontextmanager
    async def _slot(self, enabled: bool = True):
        semaphore = self._get_semaphore() if enabled else None
        if semaphore is None:
            yield
            return
        async with semaphore:
            yield

    async def _expected_tokens(self, messages: List[Message], options: GenerateOptions) -> Optional[int]:
        if not (self.budget and self.budget.strict_tpm):
            return None
        try:
            return await self.count_tokens(messages, options)
        except Exception as e:
            logger.debug(f"{self.name}: token count unavailable ({e})")
            return None

    async def _attempt(self, call: Callable[[], Awaitable[Any]], expected_tokens: Optional[int],
                       options: GenerateOptions, take_slot: bool = True) -> Any:
        timeout = options.timeout if options.timeout is not None else self.timeout
        reserved = 0
        async with self._slot(take_slot):
            if self.budget and self.budget.enabled:
                reserved = await self.budget.acquire_request(expected_tokens)
            start_time = time.time()
            try:
                if timeout and timeout > 0:
                    result = await asyncio.wait_for(call(), timeout)
                else:
                    result = await call()
            except asyncio.TimeoutError:
                self.monitor.record_request(False, 0, time.time() - start_time)
                raise LLMTimeoutError(timeout, self.name)
            except Exception:
                self.monitor.record_request(False, 0, time.time() - start_time)
                raise

        usage = getattr(result, 'usage', None)
        used = usage.total if isinstance(usage, Usage) else 0
        self.monitor.record_request(True, used, time.time() - start_time)
        if self.budget and self.budget.enabled:
            await self.budget.note_usage(used, reserved)
        return result

    async def _run(self, call: Callable[[], Awaitable[Any]], messages: List[Message],
                   options: GenerateOptions, take_slot: bool = True) -> Any:
        expected = await self._expected_tokens(messages, options)
        return await call_with_retry(
            partial(self._attempt, call, expected, options, take_slot),
            self.retry_policy,
            sleep=self._sleep,
        )

    # ---------------- public surface ----------------

    async def generate(self, messages: List[Message],
                       options: Optional[GenerateOptions] = None) -> GenerateResult:
        """Plain text generation."""
        options = options or GenerateOptions()
        return await self._run(lambda: self._complete(messages, options), messages, options)

    async def stream(self, messages: List[Message],
                     options: Optional[GenerateOptions] = None) -> AsyncIterator[str]:
        """Yield text deltas. Only stream creation is retried.

        The concurrency slot is held until the stream is exhausted; errors
        raised while reading deltas propagate without a retry.
        """
        options = options or GenerateOptions()
        async with self._slot():
            deltas = await self._run(lambda: self._open_stream(messages, options), messages, options,
                                     take_slot=False)
            async for delta in deltas:
                yield delta

    async def generate_object(self, messages: List[Message], schema: Type[M],
                              options: Optional[GenerateOptions] = None) -> ObjectResult:
        """Schema-constrained generation parsed into `schema`.

        Non-JSON output is salvaged when a balanced JSON block can be found.
        Otherwise the raw text goes to the error sink and, per the parse
        error policy, NonJsonLLMError is raised or an ObjectResult with
        parse_failed=True is returned.
        """
        options = options or GenerateOptions()
        result = await self._run(lambda: self._complete(messages, options, schema), messages, options)
        text = result.text or ''
        try:
            value = schema.model_validate(parse_json_lenient(text))
            return ObjectResult(value=value, usage=result.usage, raw_text=text)
        except (ValueError, ValidationError) as e:
            locator = save_quietly(
                self.error_sink,
                e,
                text,
                hint=f"{self.name}-nonjson",
                meta={'schema': schema.__name__, 'model': options.model},
            )
            policy = options.parse_error_policy or self.parse_error_policy
            if policy == ParseErrorPolicy.RETURN_RAW:
                logger.warning(f"{self.name}: unparseable {schema.__name__} output kept as raw text")
                return ObjectResult(value=None, usage=result.usage, raw_text=text,
                                    parse_failed=True, locator=locator)
            raise NonJsonLLMError(text, result.usage, locator, self.name) from e


def gateway_base_url() -> Optional[str]:
    """Cloudflare AI Gateway URL when configured in the environment."""
    account_id = os.getenv('CLOUDFLARE_ACCOUNT_ID')
    gateway_id = os.getenv('CLOUDFLARE_GATEWAY_ID')
    if account_id and gateway_id and account_id != '{account_id}' and gateway_id != '{gateway_id}':
        return f"https://gateway.ai.cloudflare.com/v1/{account_id}/{gateway_id}/openai"
    return None


class OpenAIChatClient(LLMClient):
    """OpenAI-compatible Chat Completions backend (OpenAI, Groq, Gemini's OpenAI endpoint)."""

    name = 'openai'

    def __init__(self, model: str = 'gpt-4o-mini', api_key: Optional[str] = None,
                 base_url: Optional[str] = None, client: Optional[AsyncOpenAI] = None, **kwargs):
        super().__init__(**kwargs)
        if client is None:
            base_url = base_url or gateway_base_url()
            # Retries are handled by this class, not the SDK
            client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
            logger.info(f"Using {'gateway ' + base_url if base_url else 'direct OpenAI API'}")
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings, error_sink: Optional[ErrorSink] = None,
                      monitor: Optional[RequestMonitor] = None) -> 'OpenAIChatClient':
        return cls(
            model=settings.model,
            base_url=settings.base_url,
            budget=BudgetManager(BudgetConfig.from_settings(settings)),
            retry_policy=RetryPolicy.from_settings(settings),
            timeout=settings.timeout_ms / 1000,
            max_concurrency=settings.max_concurrency,
            parse_error_policy=settings.parse_error_policy,
            error_sink=error_sink,
            monitor=monitor,
        )

    def _request_kwargs(self, messages: List[Message], options: GenerateOptions) -> Dict[str, Any]:
        kwargs = {
            'model': options.model or self.model,
            'messages': [{'role': m['role'], 'content': m['content']} for m in messages],
        }
        if options.temperature is not None:
            kwargs['temperature'] = options.temperature
        if options.top_p is not None:
            kwargs['top_p'] = options.top_p
        if options.max_tokens is not None:
            kwargs['max_tokens'] = options.max_tokens
        return kwargs

    async def _complete(self, messages, options, schema=None):
        kwargs = self._request_kwargs(messages, options)
        if schema is not None:
            kwargs['response_format'] = {
                'type': 'json_schema',
                'json_schema': {'name': schema.__name__, 'schema': schema.model_json_schema()},
            }
        resp = await self.client.chat.completions.create(**kwargs)
        text = (resp.choices[0].message.content or '') if resp.choices else ''
        return GenerateResult(text=text.strip(), usage=Usage.from_openai(resp.usage), raw=resp)

    async def _open_stream(self, messages, options):
        stream = await self.client.chat.completions.create(stream=True, **self._request_kwargs(messages, options))

        async def deltas():
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content

        return deltas()

    async def count_tokens(self, messages, options=None):
        max_tokens = (options.max_tokens if options else None) or 0
        return sum(len(m['content']) // 4 for m in messages) + max_tokens
