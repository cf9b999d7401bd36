"""
Tests for generation adapters and the per-agent request slot.
"""

import asyncio
import inspect

import pytest

from mazemind.agent.generation import (
    ProviderGenerator,
    RequestSlot,
    RequestState,
    create_generator,
    synthesize_within,
)
from mazemind.config import GenerationConfig
from mazemind.errors import ConfigurationError, GenerationTimeout

from tests.conftest import SlowGenerator


async def answer(value, delay=0.0):
    await asyncio.sleep(delay)
    return value


async def explode():
    raise RuntimeError("boom")


# =============================================================================
# RequestSlot
# =============================================================================

class TestRequestSlot:

    def test_resolves_and_collects_once(self):
        async def scenario():
            slot = RequestSlot(timeout=1.0, owner="alice")
            assert slot.submit("plan", answer("done"), epoch=3)
            assert slot.state == RequestState.PENDING
            await slot.wait()
            assert slot.state == RequestState.RESOLVED

            outcome = slot.collect()
            assert outcome.ok
            assert (outcome.kind, outcome.epoch, outcome.value) == ("plan", 3, "done")
            assert slot.collect() is None
            assert slot.state == RequestState.IDLE

        asyncio.run(scenario())

    def test_second_submission_is_rejected(self):
        async def scenario():
            slot = RequestSlot(timeout=1.0)
            assert slot.submit("plan", answer(1, delay=0.05))
            second = answer(2)
            assert not slot.submit("reflection", second)
            assert inspect.getcoroutinestate(second) == inspect.CORO_CLOSED
            assert slot.rejected == 1

            await slot.wait()
            # an uncollected outcome still occupies the slot
            assert not slot.submit("reflection", answer(3))
            assert slot.collect().value == 1
            assert slot.submit("reflection", answer(4))
            await slot.wait()

        asyncio.run(scenario())

    def test_timeout_gives_failed_outcome(self):
        async def scenario():
            slot = RequestSlot(timeout=0.05)
            slot.submit("plan", SlowGenerator(delay=5).synthesize("x"))
            await slot.wait()
            assert slot.state == RequestState.FAILED

            outcome = slot.collect()
            assert not outcome.ok
            assert isinstance(outcome.error, GenerationTimeout)
            assert slot.failures == 1

        asyncio.run(scenario())

    def test_exception_gives_failed_outcome(self):
        async def scenario():
            slot = RequestSlot()
            slot.submit("reflection", explode())
            await slot.wait()
            outcome = slot.collect()
            assert isinstance(outcome.error, RuntimeError)

        asyncio.run(scenario())

    def test_cancel_drops_late_result(self):
        async def scenario():
            slot = RequestSlot(timeout=1.0)
            slot.submit("plan", answer("late", delay=0.05))
            slot.cancel()
            await asyncio.sleep(0.1)

            assert slot.collect() is None
            assert slot.closed
            assert not slot.submit("plan", answer("again"))

        asyncio.run(scenario())

    def test_no_running_loop(self):
        slot = RequestSlot()
        work = answer("x")
        assert not slot.submit("plan", work)
        assert inspect.getcoroutinestate(work) == inspect.CORO_CLOSED
        assert slot.state == RequestState.IDLE

    def test_invalid_timeout(self):
        with pytest.raises(ConfigurationError):
            RequestSlot(timeout=0)


# =============================================================================
# Generation adapters
# =============================================================================

class ChatProvider:
    def __init__(self):
        self.messages = None

    async def chat(self, messages, tools=None, max_tokens=300, temperature=0.7):
        self.messages = messages

        class Response:
            content = "GOAL: chat"
        return Response()


class LegacyProvider:
    async def response_no_stream(self, system_prompt, user_prompt, max_tokens=300):
        return f"{system_prompt}|{user_prompt}"


class PlainProvider:
    async def generate(self, prompt):
        return prompt.upper()


class PlainGenerator:
    async def synthesize(self, prompt, system_prompt=None, max_tokens=300, temperature=0.7):
        return f"{system_prompt}:{prompt}"


class TestGenerationAdapters:

    def test_chat_provider(self):
        provider = ChatProvider()
        text = asyncio.run(ProviderGenerator(provider).synthesize("plan please", system_prompt="sys"))
        assert text == "GOAL: chat"
        assert provider.messages == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "plan please"},
        ]

    def test_response_no_stream_provider(self):
        text = asyncio.run(ProviderGenerator(LegacyProvider()).synthesize("hi", system_prompt="sys"))
        assert text == "sys|hi"

    def test_generate_provider(self):
        text = asyncio.run(ProviderGenerator(PlainProvider()).synthesize("hi", system_prompt="sys"))
        assert text == "SYS\n\nHI"

    def test_incompatible_provider(self):
        with pytest.raises(ConfigurationError):
            ProviderGenerator(object())

    def test_heuristic_provider_has_no_generator(self):
        assert create_generator(GenerationConfig()) is None
        with pytest.raises(ConfigurationError):
            create_generator(GenerationConfig(provider="carrier-pigeon"))


class TestSynthesizeWithin:

    def test_call_within_timeout(self):
        text = asyncio.run(synthesize_within(PlainGenerator(), "hi", timeout=1.0, system_prompt="sys"))
        assert text == "sys:hi"

    def test_slow_call_raises_timeout(self):
        generator = SlowGenerator(delay=5)
        with pytest.raises(GenerationTimeout):
            asyncio.run(synthesize_within(generator, "hi", timeout=0.05))
        assert generator.calls == 1

    def test_no_timeout(self):
        assert asyncio.run(synthesize_within(PlainGenerator(), "hi")) == "None:hi"
