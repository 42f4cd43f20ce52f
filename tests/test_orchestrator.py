import asyncio
import re
import time
from unittest.mock import AsyncMock, Mock, patch

import pytest
from conftest import (
    ASSISTANT_ID,
    CONVERSATION_ID,
    FakeLLM,
    FakeRetriever,
    FakeStorage,
    make_request,
    make_sources,
    seeded_tables,
)

from aida.config import Settings
from aida.services.content_service import VERIFICATION_DISCLAIMER
from aida.services.errors import ErrorType
from aida.services.escalation_service import ESCALATION_RESPONSES
from aida.services.orchestrator import (
    FALLBACK_CONTENT,
    ResponseOrchestrator,
    build_system_prompt,
    generate_request_id,
    resolve_options,
)
from aida.services.response_types import (
    AssistantRecord,
    ConversationContext,
    ConversationRecord,
    CustomerMetadata,
    CustomerProfile,
)

ANSWER = (
    "Funcionamos de segunda a sábado, das 9h às 19h. Aos domingos abrimos das 10h às 16h. "
    "Agende pelo WhatsApp quando quiser!"
)


@pytest.fixture(autouse=True)
def alerts():
    with patch("aida.services.orchestrator.alert_error", new_callable=AsyncMock) as mock_alert:
        yield mock_alert


def _settings(**overrides):
    values = {"database_url": "sqlite:///:memory:", "response_timeout_seconds": 5.0}
    values.update(overrides)
    return Settings(**values)


def build(storage=None, retriever=None, llm=None, settings=None, **kwargs):
    return ResponseOrchestrator(
        storage=storage if storage is not None else FakeStorage(seeded_tables()),
        retriever=retriever if retriever is not None else FakeRetriever(),
        llm_provider=llm if llm is not None else FakeLLM(ANSWER),
        settings=settings or _settings(),
        **kwargs,
    )


def respond(orchestrator, request):
    async def scenario():
        result = await orchestrator.generate_response(request)
        await orchestrator.drain_alerts()
        return result

    return asyncio.run(scenario())


class TestGeneratedResponse:
    def test_confidence_example_with_sources(self):
        retriever = FakeRetriever(sources=make_sources(0.9, 0.9))
        llm = FakeLLM(ANSWER)
        orchestrator = build(retriever=retriever, llm=llm)

        result = asyncio.run(orchestrator.generate_response(make_request()))

        assert len(ANSWER) >= 50
        assert result.success is True
        assert result.error is None
        assert result.response.confidence == 0.98
        assert result.response.should_escalate is False
        assert result.response.formatted_messages == [ANSWER]
        assert result.response.content.intent == "business_hours"
        assert result.response.content.tokens_used == 42
        assert result.metadata.fallback_used is False
        assert result.metadata.conversation_id == CONVERSATION_ID
        assert result.metadata.assistant_id == ASSISTANT_ID
        assert re.match(r"^req_\d+_[a-z0-9]{9}$", result.metadata.request_id)

        assert len(llm.calls) == 1
        call = llm.calls[0]
        assert "Fact 0" in call["context_text"]
        assert call["current_message"] == make_request().message
        assert call["history"] == [
            {"role": "user", "content": "Oi, tudo bom?"},
            {"role": "assistant", "content": "Olá! Como posso ajudar?"},
        ]
        assert "You are Aida" in call["system_prompt"]

    def test_confidence_rounded_to_two_decimals(self):
        orchestrator = build(retriever=FakeRetriever(sources=make_sources(0.37, 0.52, 0.91)))
        result = asyncio.run(orchestrator.generate_response(make_request()))

        confidence = result.response.confidence
        assert 0.0 <= confidence <= 1.0
        assert round(confidence, 2) == confidence

    def test_without_rag_skips_retrieval(self):
        retriever = FakeRetriever(sources=make_sources(0.9))
        llm = FakeLLM(ANSWER)
        orchestrator = build(retriever=retriever, llm=llm)

        result = asyncio.run(
            orchestrator.generate_response(make_request(processing_options={"include_rag": False, "use_memory": False}))
        )

        assert result.success is True
        assert retriever.calls == []
        assert llm.calls[0]["context_text"] == ""
        assert llm.calls[0]["history"] == []
        assert result.response.confidence == 0.8

    def test_personalizes_with_customer_name(self):
        orchestrator = build()
        request = make_request(customer_metadata=CustomerMetadata(name="Maria"))

        result = asyncio.run(orchestrator.generate_response(request))

        assert result.response.content.content.startswith("Maria, ")
        assert result.response.formatted_messages[0].startswith("Maria, ")


class TestEscalation:
    def test_portuguese_escalation_skips_generation(self):
        retriever = FakeRetriever(sources=make_sources(0.9))
        llm = FakeLLM(ANSWER)
        orchestrator = build(retriever=retriever, llm=llm)

        result = asyncio.run(orchestrator.generate_response(make_request("quero cancelar, isso é um absurdo")))

        assert result.success is True
        assert result.response.confidence == 0.9
        assert result.response.should_escalate is True
        assert result.response.content.intent == "escalation_request"
        assert result.response.content.content == ESCALATION_RESPONSES["friendly"]
        assert llm.calls == []
        assert retriever.calls == []

    def test_assistant_keywords(self):
        storage = FakeStorage(seeded_tables(assistant_settings={"escalation_keywords": ["gerente"]}))
        llm = FakeLLM(ANSWER)
        orchestrator = build(storage=storage, llm=llm)

        result = asyncio.run(orchestrator.generate_response(make_request("Quero falar com o GERENTE")))

        assert result.response.should_escalate is True
        assert result.response.confidence == 0.9
        assert llm.calls == []

    def test_response_style_from_assistant_settings(self):
        storage = FakeStorage(seeded_tables(assistant_settings={"response_style": "professional"}))
        result = asyncio.run(build(storage=storage).generate_response(make_request("I want a refund")))

        assert result.response.content.content == ESCALATION_RESPONSES["professional"]


class TestConfidenceThreshold:
    def test_below_threshold_forces_escalation(self):
        storage = FakeStorage(seeded_tables(assistant_settings={"confidence_threshold": 0.95}))
        result = asyncio.run(build(storage=storage).generate_response(make_request()))

        assert result.success is True
        assert result.response.confidence == 0.8
        assert result.response.should_escalate is True
        assert result.response.content.metadata["low_confidence"] is True

    def test_request_override_wins(self):
        storage = FakeStorage(seeded_tables(assistant_settings={"confidence_threshold": 0.95}))
        request = make_request(processing_options={"confidence_threshold": 0.5})

        result = asyncio.run(build(storage=storage).generate_response(request))

        assert result.response.should_escalate is False

    def test_global_threshold(self):
        orchestrator = build(settings=_settings(confidence_threshold=0.9))
        result = asyncio.run(orchestrator.generate_response(make_request()))

        assert result.response.should_escalate is True


class TestFallback:
    def test_llm_error_returns_success_with_fallback(self):
        orchestrator = build(llm=FakeLLM(error=RuntimeError("provider down")))

        result = asyncio.run(orchestrator.generate_response(make_request()))

        assert result.success is True
        assert result.metadata.fallback_used is True
        assert result.response.should_escalate is True
        assert result.response.content.intent == "technical_error"
        assert result.response.content.content == FALLBACK_CONTENT + VERIFICATION_DISCLAIMER
        assert result.response.confidence == 0.4
        assert result.response.content.metadata["fallback"] is True

    def test_empty_llm_content_uses_fallback(self):
        result = asyncio.run(build(llm=FakeLLM("   ")).generate_response(make_request()))

        assert result.success is True
        assert result.metadata.fallback_used is True

    def test_retrieval_error_uses_fallback_without_llm_call(self):
        llm = FakeLLM(ANSWER)
        orchestrator = build(retriever=FakeRetriever(error=RuntimeError("qdrant down")), llm=llm)

        result = asyncio.run(orchestrator.generate_response(make_request()))

        assert result.success is True
        assert result.metadata.fallback_used is True
        assert llm.calls == []


class TestDeduplication:
    def test_concurrent_duplicates_run_once(self):
        llm = FakeLLM(ANSWER, delay=0.05)
        orchestrator = build(llm=llm)
        request = make_request()

        async def scenario():
            return await asyncio.gather(
                orchestrator.generate_response(request),
                orchestrator.generate_response(request),
            )

        first, second = asyncio.run(scenario())

        assert first is second
        assert len(llm.calls) == 1
        assert orchestrator.get_stats().total_requests == 1
        assert orchestrator.deduplicator.in_flight_count == 0

    def test_sequential_repeat_runs_again(self):
        llm = FakeLLM(ANSWER)
        orchestrator = build(llm=llm)

        async def scenario():
            await orchestrator.generate_response(make_request())
            await orchestrator.generate_response(make_request())

        asyncio.run(scenario())
        assert len(llm.calls) == 2


class TestFailures:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"message": "   "},
            {"message": "x" * 4001},
            {"business_id": ""},
            {"conversation_id": ""},
            {"assistant_id": ""},
            {"processing_options": {"escalation_keywords": "refund"}},
            {"processing_options": {"confidence_threshold": "0.5"}},
            {"processing_options": {"confidence_threshold": 1.5}},
            {"processing_options": {"include_rag": "yes"}},
            {"processing_options": {"max_context_length": 0}},
            {"processing_options": {"response_style": 3}},
        ],
    )
    def test_validation_failure_before_io(self, overrides, alerts):
        storage = FakeStorage(seeded_tables())
        storage.failing.update({("query", "assistants"), ("query", "conversations")})
        llm = FakeLLM(ANSWER)
        orchestrator = build(storage=storage, llm=llm)

        result = respond(orchestrator, make_request(**overrides))

        assert result.success is False
        assert result.error.type == ErrorType.VALIDATION
        assert result.response is None
        assert llm.calls == []
        assert storage.inserts == []
        alerts.assert_awaited_once()

    def test_message_at_limit_is_accepted(self):
        result = asyncio.run(build().generate_response(make_request("a" * 4000)))
        assert result.success is True

    def test_unknown_assistant_is_not_found(self, alerts):
        orchestrator = build()

        result = respond(orchestrator, make_request(assistant_id="missing"))

        assert result.success is False
        assert result.error.type == ErrorType.NOT_FOUND
        assert "missing" in result.error.message
        assert orchestrator.get_stats().failed_requests == 1
        alerts.assert_awaited_once()
        assert alerts.await_args[0][1]["error_type"] == "not_found"

    def test_alert_transport_error_does_not_escape(self, alerts):
        alerts.side_effect = RuntimeError("Invalid non-printable ASCII character in URL")
        orchestrator = build()

        result = respond(orchestrator, make_request(assistant_id="missing"))

        assert result.success is False
        assert result.error.type == ErrorType.NOT_FOUND
        stats = orchestrator.get_stats()
        assert stats.total_requests == 1
        assert stats.failed_requests == 1
        assert orchestrator.pending_alerts == 0

    def test_slow_alert_does_not_delay_timeout_result(self, alerts):
        async def slow_alert(*args, **kwargs):
            await asyncio.sleep(1.0)

        alerts.side_effect = slow_alert
        orchestrator = build(llm=FakeLLM(ANSWER, delay=1.0), settings=_settings(response_timeout_seconds=0.05))

        async def scenario():
            started = time.perf_counter()
            result = await orchestrator.generate_response(make_request())
            return result, time.perf_counter() - started, orchestrator.pending_alerts

        result, elapsed, pending = asyncio.run(scenario())

        assert result.error.type == ErrorType.TIMEOUT
        assert elapsed < 0.5
        assert pending == 1

    def test_keyword_override_is_matched_as_list(self):
        llm = FakeLLM(ANSWER)
        request = make_request("Qual o horario de funcionamento?", processing_options={"escalation_keywords": ["refund"]})

        result = asyncio.run(build(llm=llm).generate_response(request))

        assert result.response.should_escalate is False
        assert len(llm.calls) == 1

    def test_storage_error_on_context_load_is_processing(self):
        storage = FakeStorage(seeded_tables())
        storage.failing.add(("query", "assistants"))

        result = asyncio.run(build(storage=storage).generate_response(make_request()))

        assert result.success is False
        assert result.error.type == ErrorType.PROCESSING

    def test_formatter_error_is_processing(self):
        formatter = Mock()
        formatter.format.side_effect = RuntimeError("formatter broke")

        result = asyncio.run(build(formatter=formatter).generate_response(make_request()))

        assert result.success is False
        assert result.error.type == ErrorType.PROCESSING
        assert "formatter broke" in result.error.message

    def test_timeout_cancels_pipeline(self):
        storage = FakeStorage(seeded_tables())
        llm = FakeLLM(ANSWER, delay=1.0)
        orchestrator = build(storage=storage, llm=llm, settings=_settings(response_timeout_seconds=0.05))

        result = asyncio.run(orchestrator.generate_response(make_request()))

        assert result.success is False
        assert result.error.type == ErrorType.TIMEOUT
        assert storage.inserts == []
        assert orchestrator.get_stats().failed_requests == 1


class TestPersistence:
    def test_stores_messages_and_metrics(self):
        storage = FakeStorage(seeded_tables())
        message = "Quais são os horários de funcionamento no sábado e no domingo, por favor?"

        result = asyncio.run(build(storage=storage).generate_response(make_request(message)))

        assert result.success is True
        inserted = [row for table, row in storage.inserts if table == "messages"]
        assert [row["sender_type"] for row in inserted] == ["customer", "assistant"]
        assert inserted[0]["content"] == message
        assistant_row = inserted[1]
        assert assistant_row["content"] == ANSWER
        assert assistant_row["is_processed"] is True
        assert set(assistant_row["metadata"]) == {
            "confidence_score",
            "intent",
            "entities",
            "processing_time_ms",
            "sources",
        }

        conversation_patches = [patch for table, _, patch in storage.updates if table == "conversations"]
        assert conversation_patches[0] == {"context_summary": ". Latest: " + message[:100]}
        assert "last_message_at" in conversation_patches[-1]

        metrics = next(patch["metrics"] for table, _, patch in storage.updates if table == "assistants")
        assert metrics["total_messages"] == 5
        assert "last_active_at" in metrics

    def test_running_average(self):
        storage = FakeStorage(seeded_tables())
        storage.tables["assistants"][0]["metrics"] = {"total_messages": 1, "avg_response_time_ms": 1000}

        asyncio.run(build(storage=storage).generate_response(make_request()))

        metrics = storage.tables["assistants"][0]["metrics"]
        assert metrics["total_messages"] == 2
        assert 500 <= metrics["avg_response_time_ms"] < 1000

    def test_persistence_failure_is_swallowed(self):
        storage = FakeStorage(seeded_tables())
        storage.failing.add(("insert", "messages"))

        result = asyncio.run(build(storage=storage).generate_response(make_request()))

        assert result.success is True
        assert result.response.formatted_messages == [ANSWER]


class TestStatsAndHealth:
    def test_stats_after_mixed_results(self):
        orchestrator = build()

        async def scenario():
            await orchestrator.generate_response(make_request())
            await orchestrator.generate_response(make_request("quero cancelar, isso é um absurdo"))
            await orchestrator.generate_response(make_request(""))

        asyncio.run(scenario())
        stats = orchestrator.get_stats()

        assert stats.total_requests == 3
        assert stats.successful_requests == 2
        assert stats.failed_requests == 1
        assert stats.escalations == 1
        assert stats.escalation_rate == pytest.approx(1 / 3)
        assert stats.fallback_rate == pytest.approx(1 / 3)
        assert stats.average_confidence == pytest.approx(0.85)

    def test_health_check_healthy(self):
        health = asyncio.run(build().health_check())

        assert health["status"] == "healthy"
        assert health["components"] == {"storage": True, "retriever": True, "llm": True}
        assert health["in_flight_requests"] == 0

    def test_health_check_degraded_on_probe_error(self):
        llm = FakeLLM(ANSWER)
        llm.is_available = AsyncMock(side_effect=RuntimeError("no network"))

        health = asyncio.run(build(llm=llm).health_check())

        assert health["status"] == "degraded"
        assert health["components"]["llm"] is False


class TestUpdateConfig:
    def test_threshold_change_applies(self):
        orchestrator = build()
        orchestrator.update_config(confidence_threshold=0.95)

        result = asyncio.run(orchestrator.generate_response(make_request()))

        assert orchestrator.settings.confidence_threshold == 0.95
        assert result.response.should_escalate is True

    def test_components_updated(self):
        orchestrator = build()
        orchestrator.update_config(
            response_timeout_seconds=12.0,
            enable_personalization=False,
            dedup_hash="sha256",
            history_messages=3,
        )

        assert orchestrator.timeout_guard.timeout_seconds == 12.0
        assert orchestrator.post_processor.enable_personalization is False
        assert orchestrator.deduplicator.hash_mode == "sha256"
        assert orchestrator.context_aggregator.history_messages == 3

    def test_unknown_setting(self):
        with pytest.raises(ValueError):
            build().update_config(not_a_setting=True)

    def test_invalid_hash_mode(self):
        with pytest.raises(ValueError):
            build().update_config(dedup_hash="md5")


class TestHelpers:
    def _context(self, settings=None):
        return ConversationContext(
            assistant=AssistantRecord(
                id="asst-1",
                business_id="biz-1",
                name="Aida",
                personality_prompt="Warm",
                system_prompt="Help with bookings",
                settings=settings or {},
            ),
            conversation=ConversationRecord(id="c1", business_id="biz-1"),
            business_id="biz-1",
            customer_profile=CustomerProfile(name="Maria", previous_interactions=3, sentiment="positive"),
        )

    def test_request_id_format(self):
        assert re.match(r"^req_\d+_[a-z0-9]{9}$", generate_request_id())
        assert generate_request_id() != generate_request_id()

    def test_resolve_options_precedence(self):
        context = self._context({"max_response_length": 300, "confidence_threshold": 0.8, "response_style": "casual"})
        request = make_request(processing_options={"response_style": "professional", "unknown": 1})

        options = resolve_options(request, context, _settings())

        assert options.max_context_length == 300
        assert options.confidence_threshold == 0.8
        assert options.response_style == "professional"
        assert options.include_rag is True

    def test_resolve_options_defaults(self):
        options = resolve_options(make_request(), self._context(), _settings(confidence_threshold=0.65))

        assert options.max_context_length == 500
        assert options.confidence_threshold == 0.65
        assert options.escalation_keywords == []
        assert options.response_style == "friendly"

    def test_invalid_style_falls_back(self):
        request = make_request(processing_options={"response_style": "pirate"})
        assert resolve_options(request, self._context(), _settings()).response_style == "friendly"

    def test_system_prompt_contents(self):
        context = self._context()
        options = resolve_options(make_request(), context, _settings())

        prompt = build_system_prompt(context, options)

        assert "You are Aida, an AI assistant for biz-1." in prompt
        assert "PERSONALITY: Warm" in prompt
        assert "INSTRUCTIONS: Help with bookings" in prompt
        assert "friendly tone" in prompt
        assert "max 500 characters" in prompt
        assert "Customer name: Maria" in prompt
        assert "Previous interactions: 3" in prompt
        assert "KNOWLEDGE BASE" in prompt
