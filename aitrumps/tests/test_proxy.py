"""Tests for aitrumps.ai.proxy — GenerationProxy, fence stripping, image checks.

All tests use MockProvider; no real API calls. Retry delays go through
the fake_sleep fixture, so the backoff sequence is asserted, not waited.
"""

import base64
import json
import logging

import pytest

from aitrumps.ai.providers.base import ProviderError, ProviderTimeout
from aitrumps.ai.proxy import (
    MIN_IMAGE_BASE64_LENGTH,
    GenerationProxy,
    InvalidGenerationRequest,
    InvalidImageError,
    ProviderParseError,
    ProviderRejected,
    ProviderUnavailable,
    parse_model_json,
    strip_fences,
)
from aitrumps.cards import log_key
from aitrumps.hooks.interfaces import StorageError
from aitrumps.hooks.storage import LocalCardStorage
from aitrumps.models import GEMINI_FLASH, IMAGEN_3
from aitrumps.schemas import GenerateRequest, ImageEnvelope, JsonEnvelope


def _text(prompt: str = "Suggest three stats") -> GenerateRequest:
    return GenerateRequest(prompt=prompt, model_kind="text")


def _image(**overrides) -> GenerateRequest:
    fields = {"prompt": "A T-Rex", "model_kind": "image"}
    fields.update(overrides)
    return GenerateRequest(**fields)


def _audit_lines(storage: LocalCardStorage, level: str = "error") -> list[dict]:
    path = storage.base_path / log_key(level)
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines()]


class _BrokenImageStorage(LocalCardStorage):
    async def save_image(self, card_id, data, series):
        raise StorageError("bucket offline", transient=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestStripFences:
    @pytest.mark.parametrize(
        "text",
        ['```json\n{"a": 1}\n```', '```\n{"a": 1}\n```', '  ```JSON {"a": 1}```  ', '{"a": 1}'],
    )
    def test_fences_removed(self, text) -> None:
        assert strip_fences(text) == '{"a": 1}'

    def test_inner_backticks_kept(self) -> None:
        assert strip_fences('{"code": "`x`"}') == '{"code": "`x`"}'


class TestParseModelJson:
    def test_fenced_array(self) -> None:
        assert parse_model_json('```json\n["Strength", "Speed"]\n```') == ["Strength", "Speed"]

    def test_not_json_keeps_raw(self) -> None:
        with pytest.raises(ProviderParseError) as exc_info:
            parse_model_json("not json")
        assert exc_info.value.raw == "not json"
        assert exc_info.value.code == "PARSE_ERROR"


# ---------------------------------------------------------------------------
# Text generation
# ---------------------------------------------------------------------------


class TestTextGeneration:
    @pytest.mark.asyncio
    async def test_fenced_reply_parsed(self, proxy, provider, make_identity) -> None:
        provider.text = '```json\n["Strength", "Speed", "Intelligence"]\n```'
        envelope = await proxy.generate(_text(), make_identity())
        assert isinstance(envelope, JsonEnvelope)
        assert envelope.data == ["Strength", "Speed", "Intelligence"]

    @pytest.mark.asyncio
    async def test_uses_configured_model_and_timeout(self, proxy, provider) -> None:
        await proxy.generate(_text(), None)
        assert provider.calls == [{"kind": "text", "model_id": GEMINI_FLASH, "timeout": 10.0}]

    @pytest.mark.asyncio
    async def test_unparseable_reply(self, proxy, provider, storage) -> None:
        provider.text = "not json"
        with pytest.raises(ProviderParseError) as exc_info:
            await proxy.generate(_text(), None)
        assert exc_info.value.raw == "not json"
        assert _audit_lines(storage)[-1]["code"] == "PARSE_ERROR"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_fields",
        [{"prompt": "", "model_kind": "text"}, {"prompt": "   ", "model_kind": "text"},
         {"prompt": "hi"}],
    )
    async def test_invalid_request(self, proxy, provider, request_fields) -> None:
        with pytest.raises(InvalidGenerationRequest):
            await proxy.generate(GenerateRequest(**request_fields), None)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_usage_logged(self, proxy, make_identity, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="aitrumps.ai.usage"):
            await proxy.generate(_text("twelve chars"), make_identity())
        record = [r for r in caplog.records if r.name == "aitrumps.ai.usage"][-1]
        assert record.outcome == "ok"
        assert record.model_kind == "text"
        assert record.prompt_length == 12
        assert record.player_code == "TIGER34"
        assert record.attempts == 1


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, proxy, provider, sleeps) -> None:
        provider.errors = [ProviderError("503", transient=True), ProviderTimeout("slow")]
        envelope = await proxy.generate(_text(), None)
        assert envelope.data == ["Strength", "Speed", "Intelligence"]
        assert len(provider.calls) == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, proxy, provider, sleeps, caplog) -> None:
        provider.error = ProviderError("503", transient=True)
        with caplog.at_level(logging.WARNING, logger="aitrumps.ai.usage"):
            with pytest.raises(ProviderUnavailable) as exc_info:
                await proxy.generate(_text(), None)
        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 502
        usage = [r for r in caplog.records if r.name == "aitrumps.ai.usage"][-1]
        assert usage.outcome == "PROVIDER_UNAVAILABLE"
        assert usage.attempts == 3

    @pytest.mark.asyncio
    async def test_non_transient_not_retried(self, proxy, provider, sleeps) -> None:
        provider.error = ProviderError("400 bad request", status_code=400)
        with pytest.raises(ProviderRejected):
            await proxy.generate(_text(), None)
        assert len(provider.calls) == 1
        assert sleeps == []


# ---------------------------------------------------------------------------
# Image generation
# ---------------------------------------------------------------------------


class TestImageGeneration:
    @pytest.mark.asyncio
    async def test_returns_base64_without_persistence(self, proxy, provider) -> None:
        envelope = await proxy.generate(_image(), None)
        assert isinstance(envelope, ImageEnvelope)
        assert envelope.data == provider.image
        assert envelope.mime == "image/jpeg"
        assert envelope.persistent_url is None
        assert provider.calls[0]["model_id"] == IMAGEN_3
        assert provider.calls[0]["timeout"] == 30.0

    @pytest.mark.asyncio
    async def test_persisted_when_card_and_series_given(self, proxy, storage) -> None:
        envelope = await proxy.generate(_image(card_id="card-7", series="Dinosaurs"), None)
        assert envelope.persistent_url.startswith("/dev-storage/images/Dinosaurs/")
        assert envelope.persistent_url.endswith("/card-7.jpg")
        stats = await storage.get_storage_stats()
        assert stats["images"] == 1

    @pytest.mark.asyncio
    async def test_not_persisted_without_series(self, proxy, storage) -> None:
        envelope = await proxy.generate(_image(card_id="card-7"), None)
        assert envelope.persistent_url is None
        assert (await storage.get_storage_stats())["images"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "image",
        [None, "", base64.b64encode(b"x" * 50).decode(), "!" * MIN_IMAGE_BASE64_LENGTH],
    )
    async def test_invalid_image(self, proxy, provider, image) -> None:
        provider.image = image
        with pytest.raises(InvalidImageError, match="Generated image data is invalid"):
            await proxy.generate(_image(), None)

    @pytest.mark.asyncio
    async def test_image_length_threshold(self, proxy, provider) -> None:
        assert MIN_IMAGE_BASE64_LENGTH == 1000
        provider.image = "QUJD" * 249
        with pytest.raises(InvalidImageError):
            await proxy.generate(_image(), None)
        provider.image = "QUJD" * 250
        envelope = await proxy.generate(_image(), None)
        assert envelope.data == provider.image

    @pytest.mark.asyncio
    async def test_persistence_failure_still_returns_image(
        self, provider, tmp_path, fake_sleep, make_identity
    ) -> None:
        storage = _BrokenImageStorage(base_path=tmp_path / "broken")
        proxy = GenerationProxy(
            provider=provider,
            storage=storage,
            text_model=GEMINI_FLASH,
            image_model=IMAGEN_3,
            sleep=fake_sleep,
        )
        envelope = await proxy.generate(
            _image(card_id="card-7", series="Dinosaurs"), make_identity()
        )
        assert envelope.data == provider.image
        assert envelope.persistent_url is None
        line = _audit_lines(storage)[-1]
        assert line["message"] == "Image persistence failed"
        assert line["cardId"] == "card-7"


# ---------------------------------------------------------------------------
# Card ideas
# ---------------------------------------------------------------------------


class TestCardIdeas:
    @pytest.mark.asyncio
    async def test_mixed_shapes_normalised(self, proxy, provider) -> None:
        provider.text = json.dumps({
            "cards": [
                {"title": "Raptor", "stats": {"Speed": 90}, "imagePrompt": "leaping"},
                {"card_title": "Stego", "statistics": [{"name": "Armour", "value": "80"}],
                 "ai_image_prompt": "plated"},
                {"title": "Nameless"},
            ]
        })
        ideas, rejected = await proxy.generate_card_ideas("dinosaurs", None)
        assert [i.title for i in ideas] == ["Raptor", "Stego"]
        assert ideas[1].stats[0].value == 80
        assert [(r.index, r.reason) for r in rejected] == [(2, "missing image prompt")]

    @pytest.mark.asyncio
    async def test_blank_prompt(self, proxy) -> None:
        with pytest.raises(InvalidGenerationRequest):
            await proxy.generate_card_ideas("  ", None)
