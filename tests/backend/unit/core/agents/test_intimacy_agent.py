"""Tests for the intimacy (register analysis) agent."""

from __future__ import annotations

import json
import uuid

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from core.agents.intimacy import IntimacyAgent, parse_intimacy_response
from integrations.completion_client import CompletionResult
from models.agent_models import INTIMACY_PARSE_FAILURE_FEEDBACK, IntimacyResult


class TestParseIntimacyResponse:
    def test_full_object(self) -> None:
        text = json.dumps(
            {
                "detectedLevel": 2,
                "correctedSentence": "식사하셨어요?",
                "feedback": {"ko": "좋아요", "en": "Nice"},
                "corrections": "어미를 바꿨어요",
            },
            ensure_ascii=False,
        )

        result = parse_intimacy_response(text)

        assert result.detected_level == 2
        assert result.corrected_sentence == "식사하셨어요?"
        assert result.feedback.en == "Nice"
        assert result.has_corrections

    def test_fenced_with_prose(self) -> None:
        text = '분석 결과입니다:\n```json\n{"detectedLevel": 3, "correctedSentence": "밥 먹었어?"}\n```'

        result = parse_intimacy_response(text)

        assert result.detected_level == 3
        assert result.corrected_sentence == "밥 먹었어?"

    def test_feedback_string_goes_to_korean(self) -> None:
        result = parse_intimacy_response('{"detectedLevel": 1, "feedback": "존댓말을 잘 썼어요"}')

        assert result.feedback.ko == "존댓말을 잘 썼어요"
        assert result.feedback.en == ""

    def test_corrections_list_joined(self) -> None:
        result = parse_intimacy_response('{"corrections": ["어미 수정", " ", "호칭 수정"]}')

        assert result.corrections == "어미 수정; 호칭 수정"

    @pytest.mark.parametrize(("raw", "expected"), [(0, 1), (9, 3), ("2", 2), ("high", 1), (None, 1)])
    def test_level_clamped(self, raw: object, expected: int) -> None:
        assert parse_intimacy_response(json.dumps({"detectedLevel": raw})).detected_level == expected

    def test_empty_output_is_plain_default(self) -> None:
        assert parse_intimacy_response("   ") == IntimacyResult()

    @pytest.mark.parametrize("text", ["no json here", "[1, 2, 3]"])
    def test_unusable_output_raises(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_intimacy_response(text)


class TestIntimacyAgent:
    @pytest.fixture
    def prompt_service(self) -> MagicMock:
        service = MagicMock()
        service.build_intimacy_prompt = AsyncMock(return_value="ANALYZE")
        return service

    @pytest.mark.asyncio
    async def test_analyze_success(self, mock_completion_client: MagicMock, prompt_service: MagicMock) -> None:
        mock_completion_client.complete.return_value = CompletionResult(
            text='{"detectedLevel": 3, "correctedSentence": "응 좋아"}'
        )
        agent = IntimacyAgent(mock_completion_client, prompt_service)
        room = uuid.uuid4()

        result = await agent.analyze(room, "네 좋아요", intimacy_level=3)

        assert result.detected_level == 3
        prompt_service.build_intimacy_prompt.assert_awaited_once_with(room, 3)
        system_prompt, content, _config = mock_completion_client.complete.await_args.args
        assert (system_prompt, content) == ("ANALYZE", "네 좋아요")

    @pytest.mark.asyncio
    async def test_unparseable_output_falls_back(
        self, mock_completion_client: MagicMock, prompt_service: MagicMock
    ) -> None:
        mock_completion_client.complete.return_value = CompletionResult(text="죄송합니다, 분석할 수 없어요")
        agent = IntimacyAgent(mock_completion_client, prompt_service)

        result = await agent.analyze(uuid.uuid4(), "hello")

        assert result.feedback.ko == INTIMACY_PARSE_FAILURE_FEEDBACK
        assert result.detected_level == 1

    @pytest.mark.asyncio
    async def test_transport_failure_falls_back(
        self, mock_completion_client: MagicMock, prompt_service: MagicMock
    ) -> None:
        mock_completion_client.complete.side_effect = httpx.ConnectError("down")
        agent = IntimacyAgent(mock_completion_client, prompt_service)

        result = await agent.analyze(uuid.uuid4(), "hello")

        assert result == IntimacyResult.fallback()

    @pytest.mark.asyncio
    async def test_prompt_failure_falls_back(
        self, mock_completion_client: MagicMock, prompt_service: MagicMock
    ) -> None:
        prompt_service.build_intimacy_prompt.side_effect = RuntimeError("db down")
        agent = IntimacyAgent(mock_completion_client, prompt_service)

        result = await agent.analyze(uuid.uuid4(), "hello")

        assert result == IntimacyResult.fallback()
        mock_completion_client.complete.assert_not_awaited()
