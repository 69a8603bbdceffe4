"""Tests for the LLM annotator against a mocked Ollama endpoint."""
import json

import httpx
import pytest

from folio.errors import ResponseFormatError, UpstreamUnavailable
from folio.services.annotator import AIAnnotator


def _annotator(handler, **kwargs) -> AIAnnotator:
    return AIAnnotator(
        base_url="http://llm.test/",
        model="test-model",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _reply(text: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"response": text})
    return handler


CONCEPTS_JSON = [
    {
        "term": "Photosynthesis",
        "definition": "Turning light into sugar.",
        "category": "Concept",
        "importance": 5,
        "occurrences": [{"position": 0, "context": "Photosynthesis is"}],
        "relatedTerms": ["Chlorophyll"],
    },
    {
        "term": "Chlorophyll",
        "definition": "A green pigment.",
        "category": "term",
    },
]


# ---------------------------------------------------------------------------
# Free text
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_summarize_posts_generate_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": "  A summary.  "})

    annotator = _annotator(handler, max_input_chars=20)
    result = await annotator.summarize("x" * 100, length="short", language="de")

    assert result == "A summary."
    assert seen["url"] == "http://llm.test/api/generate"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["stream"] is False
    assert "language: de" in seen["body"]["prompt"]
    assert "x" * 21 not in seen["body"]["prompt"]


@pytest.mark.asyncio
async def test_empty_response_is_format_error():
    with pytest.raises(ResponseFormatError):
        await _annotator(_reply("   ")).restructure("text")


@pytest.mark.asyncio
async def test_http_error_status_is_upstream_unavailable():
    def handler(request):
        return httpx.Response(500, text="model crashed")

    with pytest.raises(UpstreamUnavailable) as info:
        await _annotator(handler).summarize("text")
    assert "500" in info.value.message


@pytest.mark.asyncio
async def test_connection_error_is_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamUnavailable):
        await _annotator(handler).summarize("text")


@pytest.mark.asyncio
async def test_non_json_envelope_is_format_error():
    def handler(request):
        return httpx.Response(200, text="<html>proxy error</html>")

    with pytest.raises(ResponseFormatError):
        await _annotator(handler).summarize("text")


# ---------------------------------------------------------------------------
# Structured output
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concepts_from_code_fenced_json_with_trailing_commas():
    body = json.dumps(CONCEPTS_JSON).replace('"term"}', '"term",}')[:-1] + ",]"
    text = f"```json\n{body}\n```"

    concepts = await _annotator(_reply(text)).extract_concepts("text")

    assert [c.term for c in concepts] == ["Photosynthesis", "Chlorophyll"]
    assert concepts[0].category.value == "concept"
    assert concepts[0].related_terms == ["Chlorophyll"]
    assert concepts[0].occurrences[0].confidence == 1.0
    assert concepts[1].importance == 3


@pytest.mark.asyncio
async def test_concepts_wrapped_in_object_and_prose():
    text = "Here you go: " + json.dumps({"concepts": CONCEPTS_JSON}) + " Hope this helps!"
    concepts = await _annotator(_reply(text)).extract_concepts("text", max_concepts=1)
    assert [c.term for c in concepts] == ["Photosynthesis"]


@pytest.mark.asyncio
async def test_concepts_schema_violation_is_format_error():
    bad = [{"term": "Cell", "definition": "Unit of life", "category": "animal"}]
    with pytest.raises(ResponseFormatError):
        await _annotator(_reply(json.dumps(bad))).extract_concepts("text")


@pytest.mark.asyncio
async def test_unparseable_output_is_format_error():
    with pytest.raises(ResponseFormatError):
        await _annotator(_reply("I could not find any concepts.")).extract_concepts("text")


@pytest.mark.asyncio
async def test_exercises_normalize_answers():
    exercises = [
        {"type": "true_false", "question": "Leaves are green.", "correctAnswer": True},
        {
            "type": "multiple_choice",
            "question": "Plants need?",
            "options": ["Light", "Noise"],
            "correctAnswer": "Light",
        },
    ]
    result = await _annotator(_reply(json.dumps(exercises))).generate_exercises(
        "text", count=5, types=["true_false", "multiple_choice"]
    )
    assert result[0].correct_answer == "true"
    assert result[1].options == ["Light", "Noise"]


@pytest.mark.asyncio
async def test_exercises_need_options_for_multiple_choice():
    exercises = [{"type": "multiple_choice", "question": "Q?", "options": ["Only"], "correctAnswer": "Only"}]
    with pytest.raises(ResponseFormatError):
        await _annotator(_reply(json.dumps(exercises))).generate_exercises("text")


@pytest.mark.asyncio
async def test_exercises_of_unrequested_type_rejected():
    exercises = [{"type": "short_answer", "question": "Why?", "correctAnswer": "Because"}]
    with pytest.raises(ResponseFormatError):
        await _annotator(_reply(json.dumps(exercises))).generate_exercises(
            "text", types=["true_false"]
        )


@pytest.mark.asyncio
async def test_mind_map_accepts_mermaid_key():
    payload = {"title": "Plants", "mermaid": "mindmap\n  Plants\n    Light"}
    result = await _annotator(_reply(json.dumps(payload))).generate_mind_map("text")
    assert result.title == "Plants"
    assert result.diagram_source.startswith("mindmap")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_check_health():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": []})

    assert await _annotator(handler).check_health() is True


@pytest.mark.asyncio
async def test_check_health_unreachable():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    assert await _annotator(handler).check_health() is False
