from __future__ import annotations

import asyncio
import contextlib

import pytest

from llmx.backend.base import BackendStrategy, ChatStream
from llmx.core.abort import AbortRegistry
from llmx.core.context import ContextBuilder
from llmx.core.errors import TransportError, UnsupportedCapabilityError
from llmx.core.generation import GenerationManager, GenerationState
from llmx.models.chat import Persona
from llmx.models.connection import ConnectionConfig
from llmx.services.attachments import AttachmentResolver, MemoryAttachmentCache


class ScriptedBackend(BackendStrategy):
    name = "scripted"

    def __init__(self, chunks, *, info=None, error=None, hold_after=None, gate=None) -> None:
        self.chunks = list(chunks)
        self.info = info
        self.error = error
        self.hold_after = hold_after
        self.gate = gate
        self.calls: list[dict] = []

    def generate_chat(self, prompt, model, parameters, cancel_token, *, endpoint, generation_info_header):
        self.calls.append(
            {"prompt": list(prompt), "model": model, "parameters": dict(parameters), "endpoint": endpoint}
        )

        async def produce():
            for index, chunk in enumerate(self.chunks):
                yield chunk
                if self.hold_after is not None and index + 1 == self.hold_after:
                    await (self.gate or asyncio.Event()).wait()

        async def source(stream: ChatStream):
            async for chunk in cancel_token.guard(produce()):
                yield chunk
            if cancel_token.cancelled:
                stream.cancelled = True
                return
            if self.error is not None:
                raise self.error
            stream.set_generation_info(self.info)

        return ChatStream(source)


class RecordingRegistry(AbortRegistry):
    def __init__(self) -> None:
        super().__init__()
        self.registered: list[str] = []

    def register(self, generation_id, cancel_fn) -> None:
        self.registered.append(generation_id)
        super().register(generation_id, cancel_fn)


def make_manager(stub_logger, backend, registry=None, *, proxy=None) -> GenerationManager:
    builder = ContextBuilder(AttachmentResolver(MemoryAttachmentCache(), logger=stub_logger))
    return GenerationManager(
        context_builder=builder,
        backends={"direct": backend, "proxy": proxy or backend},
        logger=stub_logger,
        registry=registry,
    )


def make_connection(**overrides) -> ConnectionConfig:
    values = {
        "label": "local",
        "host": "http://llm.local:11434",
        "model": "llama3",
        "parameters": {"temperature": 0.2},
    }
    values.update(overrides)
    return ConnectionConfig(**values)


def conversation(make_node):
    user = make_node("n1", "Hi")
    target = make_node("n2", "", from_bot=True, variant_id="target")
    return [user, target], target


def collect(generation):
    async def run():
        return [chunk async for chunk in generation]

    return asyncio.run(run())


def test_chunks_are_forwarded_in_order_and_metadata_merged(stub_logger, make_node):
    backend = ScriptedBackend(["He", "llo", " world"], info={"eval_count": 3})
    registry = RecordingRegistry()
    manager = make_manager(stub_logger, backend, registry)
    ancestry, target = conversation(make_node)

    generation = manager.generate(ancestry, target.id, target.selected_variant, make_connection())
    chunks = collect(generation)

    assert chunks == ["He", "llo", " world"]
    assert "".join(chunks) == "Hello world"
    assert generation.state is GenerationState.COMPLETED
    variant = target.selected_variant
    assert variant.extra_details.sent_with == {"temperature": 0.2}
    assert variant.extra_details.returned_with == {"eval_count": 3}
    assert registry.registered == ["target"]
    assert not manager.is_generating("target")
    assert "generation.complete" in stub_logger.names()


def test_request_uses_context_model_and_parameters(stub_logger, make_node):
    backend = ScriptedBackend(["ok"])
    manager = make_manager(stub_logger, backend)
    ancestry, target = conversation(make_node)
    persona = Persona(name="terse", description="You are terse.")

    collect(manager.generate(ancestry, target.id, target.selected_variant, make_connection(), persona))

    [call] = backend.calls
    assert call["model"] == "llama3"
    assert call["parameters"] == {"temperature": 0.2}
    assert call["endpoint"] == "http://llm.local:11434/api/chat"
    assert [(m.role, m.content) for m in call["prompt"]] == [("system", "You are terse."), ("user", "Hi")]


def test_missing_metadata_leaves_returned_with_absent(stub_logger, make_node):
    manager = make_manager(stub_logger, ScriptedBackend(["a", "b"], info=None))
    ancestry, target = conversation(make_node)

    chunks = collect(manager.generate(ancestry, target.id, target.selected_variant, make_connection()))

    assert chunks == ["a", "b"]
    assert target.selected_variant.extra_details.sent_with == {"temperature": 0.2}
    assert target.selected_variant.extra_details.returned_with is None


@pytest.mark.parametrize(
    "connection",
    [
        None,
        ConnectionConfig(label="no-host", host=None, model="llama3"),
        ConnectionConfig(label="blank-host", host="  ", model="llama3"),
        ConnectionConfig(label="no-model", host="http://llm.local", model=None),
    ],
)
def test_missing_configuration_yields_nothing(stub_logger, make_node, connection):
    backend = ScriptedBackend(["never"])
    registry = RecordingRegistry()
    manager = make_manager(stub_logger, backend, registry)
    ancestry, target = conversation(make_node)

    generation = manager.generate(ancestry, target.id, target.selected_variant, connection)
    assert collect(generation) == []
    assert generation.state is GenerationState.IDLE
    assert registry.registered == []
    assert backend.calls == []
    assert target.selected_variant.extra_details.sent_with is None


def test_transport_error_propagates_and_cleans_up(stub_logger, make_node):
    error = TransportError("Backend request failed with status: 502", status_code=502)
    manager = make_manager(stub_logger, ScriptedBackend(["partial"], error=error))
    ancestry, target = conversation(make_node)
    generation = manager.generate(ancestry, target.id, target.selected_variant, make_connection())
    received = []

    async def run():
        async for chunk in generation:
            received.append(chunk)

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(run())

    assert excinfo.value.status_code == 502
    assert received == ["partial"]
    assert generation.state is GenerationState.FAILED
    assert not manager.is_generating("target")
    assert "generation.failed" in stub_logger.names()


def test_registry_entry_exists_only_while_streaming(stub_logger, make_node):
    manager = make_manager(stub_logger, ScriptedBackend(["a", "b"]))
    ancestry, target = conversation(make_node)
    generation = manager.generate(ancestry, target.id, target.selected_variant, make_connection())
    observed = []

    async def run():
        assert not manager.is_generating("target")
        async for _ in generation:
            observed.append((manager.is_generating("target"), generation.state))

    asyncio.run(run())
    assert observed == [(True, GenerationState.STREAMING), (True, GenerationState.STREAMING)]
    assert not manager.is_generating("target")


def test_cancel_by_id_stops_a_blocked_stream(stub_logger, make_node):
    manager = make_manager(stub_logger, ScriptedBackend(["first", "second"], info={"x": 1}, hold_after=1))
    ancestry, target = conversation(make_node)
    generation = manager.generate(ancestry, target.id, target.selected_variant, make_connection())
    received = []

    async def run():
        async def consume():
            async for chunk in generation:
                received.append(chunk)

        task = asyncio.create_task(consume())
        while not received:
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)
        assert manager.cancel("target") is True
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(run())

    assert received == ["first"]
    assert generation.state is GenerationState.CANCELLED
    assert target.selected_variant.extra_details.returned_with is None
    assert not manager.is_generating("target")
    assert manager.cancel("target") is False
    assert "generation.cancelled" in stub_logger.names()


def test_consumer_breaking_early_counts_as_cancelled(stub_logger, make_node):
    manager = make_manager(stub_logger, ScriptedBackend(["a", "b", "c"]))
    ancestry, target = conversation(make_node)
    generation = manager.generate(ancestry, target.id, target.selected_variant, make_connection())

    async def run():
        async for _ in generation:
            break
        await generation.aclose()

    asyncio.run(run())
    assert generation.state is GenerationState.CANCELLED
    assert not manager.is_generating("target")


def test_same_id_overwrites_and_first_finish_keeps_second_entry(stub_logger, make_node):
    manager = make_manager(stub_logger, ScriptedBackend(["one", "two"]))
    ancestry, target = conversation(make_node)
    variant = target.selected_variant

    async def run():
        first = manager.generate(ancestry, target.id, variant, make_connection())
        second = manager.generate(ancestry, target.id, variant, make_connection())
        await first.__anext__()
        await second.__anext__()
        # Drain the first; its cleanup must not remove the second's handle.
        async for _ in first:
            pass
        still_registered = manager.is_generating(variant.id)
        async for _ in second:
            pass
        return still_registered

    assert asyncio.run(run()) is True
    assert not manager.is_generating(variant.id)


def test_generate_images_is_unsupported(stub_logger):
    manager = make_manager(stub_logger, ScriptedBackend([]))
    with pytest.raises(UnsupportedCapabilityError):
        asyncio.run(manager.generate_images(make_connection(), "a cat"))


def test_consumer_breaking_inside_aclosing_releases_the_entry(stub_logger, make_node):
    manager = make_manager(stub_logger, ScriptedBackend(["a", "b", "c"]))
    ancestry, target = conversation(make_node)
    generation = manager.generate(ancestry, target.id, target.selected_variant, make_connection())

    async def run():
        async with contextlib.aclosing(generation) as chunks:
            async for _ in chunks:
                break

    asyncio.run(run())
    assert generation.state is GenerationState.CANCELLED
    assert not manager.is_generating("target")


def test_different_ids_stream_and_cancel_independently(stub_logger, make_node):
    user = make_node("n1", "Hi")
    node_a = make_node("na", "", from_bot=True, variant_id="a")
    node_b = make_node("nb", "", from_bot=True, variant_id="b")

    async def run():
        gate = asyncio.Event()
        held = ScriptedBackend(["a1", "a2"], info={"side": "a"}, hold_after=1)
        gated = ScriptedBackend(["b1", "b2"], info={"side": "b"}, hold_after=1, gate=gate)
        manager = make_manager(stub_logger, held, proxy=gated)
        gen_a = manager.generate([user, node_a], node_a.id, node_a.selected_variant, make_connection())
        gen_b = manager.generate([user, node_b], node_b.id, node_b.selected_variant, make_connection(kind="proxy"))
        received = {"a": [], "b": []}

        async def consume(generation, key):
            async for chunk in generation:
                received[key].append(chunk)

        task_a = asyncio.create_task(consume(gen_a, "a"))
        task_b = asyncio.create_task(consume(gen_b, "b"))
        while not (received["a"] and received["b"]):
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)
        both_active = manager.is_generating("a") and manager.is_generating("b")

        assert manager.cancel("a") is True
        await asyncio.wait_for(task_a, timeout=1)
        b_after_cancel = (manager.is_generating("a"), manager.is_generating("b"), gen_b.state)

        gate.set()
        await asyncio.wait_for(task_b, timeout=1)
        return manager, gen_a, gen_b, received, both_active, b_after_cancel

    manager, gen_a, gen_b, received, both_active, b_after_cancel = asyncio.run(run())

    assert both_active is True
    assert b_after_cancel == (False, True, GenerationState.STREAMING)
    assert received == {"a": ["a1"], "b": ["b1", "b2"]}
    assert gen_a.state is GenerationState.CANCELLED
    assert gen_b.state is GenerationState.COMPLETED
    assert node_a.selected_variant.extra_details.returned_with is None
    assert node_b.selected_variant.extra_details.returned_with == {"side": "b"}
    assert not manager.is_generating("a")
    assert not manager.is_generating("b")
