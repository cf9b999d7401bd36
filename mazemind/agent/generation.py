"""
Generation services and the per-agent request slot

A generation service is anything with

    async synthesize(prompt, system_prompt=None, max_tokens=300, temperature=0.7) -> str

OpenAIGenerator talks to an OpenAI-compatible chat endpoint; ProviderGenerator
adapts chat-style provider objects (chat / response_no_stream / generate).

synthesize_within bounds a single call. RequestSlot serializes the generation
work of one agent: at most one job in flight, idle -> pending ->
resolved/failed, outcome collected by the engine between ticks. Its timeout
is a ceiling for the whole job.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Optional, Protocol
import asyncio

from loguru import logger

from mazemind.config import GenerationConfig
from mazemind.errors import ConfigurationError, GenerationTimeout

TAG = __name__


class GenerationService(Protocol):
    async def synthesize(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ) -> str:
        ...


async def synthesize_within(generator: GenerationService, prompt: str, timeout: Optional[float] = None, **kwargs) -> str:
    """
    one generation call bounded by timeout seconds (None = unbounded)

    Raises GenerationTimeout when the call does not finish in time.
    """
    if timeout is None:
        return await generator.synthesize(prompt, **kwargs)
    try:
        return await asyncio.wait_for(generator.synthesize(prompt, **kwargs), timeout=timeout)
    except asyncio.TimeoutError:
        raise GenerationTimeout(f"generation call timed out after {timeout}s") from None


class OpenAIGenerator:
    """generation service backed by an OpenAI-compatible chat completions API"""

    def __init__(self, model: str = "gpt-4o-mini", api_key: Optional[str] = None, base_url: Optional[str] = None):
        from openai import AsyncOpenAI

        self.model = model
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

        logger.bind(tag=TAG).info(f"OpenAIGenerator initialized with model={model}")

    async def synthesize(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return response.choices[0].message.content or ""


class ProviderGenerator:
    """
    adapt a chat-style provider object to the generation service interface

    Supports:
    1. providers with chat(messages=..., tools=..., max_tokens=..., temperature=...)
    2. providers with response_no_stream(system_prompt=..., user_prompt=..., max_tokens=...)
    3. providers with generate(prompt)
    """

    def __init__(self, llm):
        if not any(hasattr(llm, name) for name in ("chat", "response_no_stream", "generate")):
            raise ConfigurationError(
                f"LLM instance {type(llm).__name__} has no compatible method (chat, response_no_stream, or generate)"
            )
        self.llm = llm

    async def synthesize(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ) -> str:
        system_prompt = system_prompt or "You are a helpful assistant."

        if hasattr(self.llm, 'chat'):
            messages = [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ]
            response = await self.llm.chat(
                messages=messages,
                tools=None,
                max_tokens=max_tokens,
                temperature=temperature,
            )
            return getattr(response, 'content', response) or ""

        if hasattr(self.llm, 'response_no_stream'):
            return await self.llm.response_no_stream(
                system_prompt=system_prompt,
                user_prompt=prompt,
                max_tokens=max_tokens,
            )

        return await self.llm.generate(f"{system_prompt}\n\n{prompt}")


def create_generator(config: GenerationConfig) -> Optional[GenerationService]:
    """build the configured generation service (None = heuristics only)"""
    config.validate()
    if config.provider == "openai":
        return OpenAIGenerator(model=config.model, api_key=config.api_key, base_url=config.base_url)
    return None


class RequestState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class RequestOutcome:
    """result of one generation request, applied by the engine between ticks"""

    kind: str
    epoch: int
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RequestSlot:
    """
    one in-flight generation request per agent

    submit() schedules the coroutine as an asyncio task and returns
    immediately; collect() hands back a finished outcome exactly once and
    returns the slot to idle.
    """

    def __init__(self, timeout: float = 10.0, owner: str = ""):
        if timeout <= 0:
            raise ConfigurationError("generation timeout must be positive")
        self.timeout = timeout
        self.owner = owner
        self.state = RequestState.IDLE
        self.kind: Optional[str] = None
        self.epoch = 0
        self.closed = False

        self._task: Optional[asyncio.Task] = None
        self._outcome: Optional[RequestOutcome] = None

        self.submitted = 0
        self.rejected = 0
        self.failures = 0

    @property
    def busy(self) -> bool:
        return self.state != RequestState.IDLE

    def submit(self, kind: str, work: Awaitable[Any], epoch: int = 0) -> bool:
        """
        start a request

        Returns False (and closes the coroutine) if a request is already in
        flight, an outcome is waiting to be collected, the slot is closed or
        no event loop is running.
        """
        if self.closed or self.busy:
            self.rejected += 1
            _close(work)
            logger.bind(tag=TAG).debug(
                f"[{self.owner}] rejected {kind} request: slot is {'closed' if self.closed else self.state.value}"
            )
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.rejected += 1
            _close(work)
            logger.bind(tag=TAG).debug(f"[{self.owner}] no running event loop, {kind} request skipped")
            return False

        self.state = RequestState.PENDING
        self.kind = kind
        self.epoch = epoch
        self.submitted += 1
        self._task = loop.create_task(self._run(kind, epoch, work))

        logger.bind(tag=TAG).debug(f"[{self.owner}] submitted {kind} request (epoch {epoch})")
        return True

    async def _run(self, kind: str, epoch: int, work: Awaitable[Any]):
        try:
            value = await asyncio.wait_for(work, timeout=self.timeout)
        except asyncio.TimeoutError:
            self._finish(RequestOutcome(kind, epoch, error=GenerationTimeout(
                f"{kind} request timed out after {self.timeout}s"
            )))
        except Exception as e:
            self._finish(RequestOutcome(kind, epoch, error=e))
        else:
            self._finish(RequestOutcome(kind, epoch, value=value))

    def _finish(self, outcome: RequestOutcome):
        if self.closed:
            return
        self._outcome = outcome
        if outcome.ok:
            self.state = RequestState.RESOLVED
        else:
            self.failures += 1
            self.state = RequestState.FAILED
            logger.bind(tag=TAG).warning(f"[{self.owner}] {outcome.kind} request failed: {outcome.error!r}")

    def collect(self) -> Optional[RequestOutcome]:
        """take the finished outcome, if any, and return to idle"""
        if self.state not in (RequestState.RESOLVED, RequestState.FAILED):
            return None
        outcome = self._outcome
        self._outcome = None
        self._task = None
        self.kind = None
        self.state = RequestState.IDLE
        return outcome

    def cancel(self):
        """cancel the in-flight request and refuse further work; late results are dropped"""
        self.closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._outcome = None
        self.kind = None
        self.state = RequestState.IDLE

    async def wait(self):
        """wait until the in-flight request (if any) has finished"""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    def to_dict(self):
        return {
            'state': self.state.value,
            'kind': self.kind,
            'epoch': self.epoch,
            'submitted': self.submitted,
            'rejected': self.rejected,
            'failures': self.failures,
            'closed': self.closed,
        }


def _close(work: Awaitable[Any]):
    # a rejected coroutine is never awaited
    close = getattr(work, 'close', None)
    if close is not None:
        close()
