"""
AI annotation service over an Ollama-compatible /api/generate endpoint.

Five operations, each with a fixed output contract:

  restructure(text, style, language)                          -> markdown
  summarize(text, length, language, include_key_points)       -> markdown
  extract_concepts(text, max_concepts, language)              -> List[ConceptPayload]
  generate_exercises(text, count, types, difficulty, language)-> List[ExercisePayload]
  generate_mind_map(text, max_nodes, language, style)         -> MindMapPayload

Model output is untrusted.  Structured responses go through tolerant JSON
recovery and then strict pydantic validation; anything that does not fit is
discarded with ``ResponseFormatError``.  Transport problems raise
``UpstreamUnavailable``.  Nothing is retried here.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, List, Optional, Sequence, Tuple

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from folio.errors import ResponseFormatError, UpstreamUnavailable
from folio.models.schemas import ConceptPayload, ExercisePayload, MindMapPayload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_RESTRUCTURE_PROMPT = """\
Reorganize the following document into clean, well-structured markdown.
Style: {style}. Write in language: {language}.
Keep every fact; fix broken line wraps; use headings for sections.

---
{text}
---

Return only the markdown document.\
"""

_SUMMARY_PROMPT = """\
Summarize the following document. Length: {length}. Write in language: {language}.
{key_points}

---
{text}
---

Return only the summary as markdown.\
"""

_CONCEPT_PROMPT = """\
Identify up to {max_concepts} key concepts in the following document.
Write definitions in language: {language}.

---
{text}
---

For each concept provide:
- term: the concept name as written in the text
- definition: one or two sentences
- category: one of person, place, concept, term, formula, theory, other
- importance: integer 1 (minor) to 5 (central)
- occurrences: list of {{"position": character offset, "context": short quote, "confidence": 0.0-1.0}}
- relatedTerms: list of other terms from your answer

Respond ONLY with a valid JSON array. No explanation, no markdown.\
"""

_EXERCISE_PROMPT = """\
Write {count} {difficulty} exercises about the following document.
Allowed types: {types}. Write in language: {language}.

---
{text}
---

Each exercise is an object with:
- type: one of {types}
- question
- options: list of choices (multiple_choice only, at least two)
- correctAnswer: the answer ("true" or "false" for true_false)
- explanation

Respond ONLY with a valid JSON array. No explanation, no markdown.\
"""

_MINDMAP_PROMPT = """\
Draw a Mermaid mind map of the following document with at most {max_nodes} nodes.
Style: {style}. Write labels in language: {language}.
Use the "mindmap" diagram type, two-space indentation per level and plain
labels without brackets, braces, parentheses or pipes.

---
{text}
---

Respond ONLY with JSON: {{"title": "...", "diagramSource": "mindmap\\n  root\\n    child"}}\
"""

_LENGTH_HINTS = {
    "short": "about 100 words",
    "medium": "about 250 words",
    "long": "about 500 words",
}


class AIAnnotator:
    """
    Language-model client for document annotation.

    Limits concurrency to ``max_concurrent`` simultaneous model calls and
    truncates input to ``max_input_chars``.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 300.0,
        max_concurrent: int = 2,
        max_input_chars: int = 12000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self.max_input_chars = max_input_chars
        self._transport = transport
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @classmethod
    def from_settings(cls, settings) -> "AIAnnotator":
        return cls(
            base_url=settings.LLM_BASE_URL,
            model=settings.LLM_MODEL,
            timeout=float(settings.LLM_TIMEOUT),
            max_concurrent=settings.LLM_MAX_CONCURRENT,
            max_input_chars=settings.LLM_MAX_INPUT_CHARS,
        )

    # ------------------------------------------------------------------
    # Free-text operations
    # ------------------------------------------------------------------

    async def restructure(self, text: str, style: str = "structured", language: str = "en") -> str:
        prompt = _RESTRUCTURE_PROMPT.format(
            style=style, language=language, text=self._clip(text)
        )
        return self._non_empty(await self._call_llm(prompt, max_tokens=4000), "restructure")

    async def summarize(
        self,
        text: str,
        length: str = "medium",
        language: str = "en",
        include_key_points: bool = True,
    ) -> str:
        prompt = _SUMMARY_PROMPT.format(
            length=_LENGTH_HINTS.get(length, length),
            language=language,
            key_points="Finish with a bulleted list of key points." if include_key_points else "",
            text=self._clip(text),
        )
        return self._non_empty(await self._call_llm(prompt, max_tokens=1500), "summarize")

    # ------------------------------------------------------------------
    # Structured operations
    # ------------------------------------------------------------------

    async def extract_concepts(
        self, text: str, max_concepts: int = 20, language: str = "en"
    ) -> List[ConceptPayload]:
        prompt = _CONCEPT_PROMPT.format(
            max_concepts=max_concepts, language=language, text=self._clip(text)
        )
        raw = await self._call_llm_json(prompt, "extract_concepts", max_tokens=3000)
        if isinstance(raw, dict):
            raw = raw.get("concepts", raw)
        concepts = self._validate(List[ConceptPayload], raw, "extract_concepts")
        return concepts[:max_concepts]

    async def generate_exercises(
        self,
        text: str,
        count: int = 10,
        types: Sequence[str] = ("multiple_choice", "true_false", "short_answer"),
        difficulty: str = "medium",
        language: str = "en",
    ) -> List[ExercisePayload]:
        type_names = [getattr(t, "value", t) for t in types]
        prompt = _EXERCISE_PROMPT.format(
            count=count,
            difficulty=difficulty,
            types=", ".join(type_names),
            language=language,
            text=self._clip(text),
        )
        raw = await self._call_llm_json(prompt, "generate_exercises", max_tokens=3000)
        if isinstance(raw, dict):
            raw = raw.get("exercises", raw)
        exercises = self._validate(List[ExercisePayload], raw, "generate_exercises")
        unexpected = {e.type.value for e in exercises} - set(type_names)
        if unexpected:
            raise ResponseFormatError(
                f"generate_exercises: model returned unrequested types {sorted(unexpected)}"
            )
        return exercises[:count]

    async def generate_mind_map(
        self,
        text: str,
        max_nodes: int = 30,
        language: str = "en",
        style: str = "hierarchical",
    ) -> MindMapPayload:
        prompt = _MINDMAP_PROMPT.format(
            max_nodes=max_nodes, style=style, language=language, text=self._clip(text)
        )
        raw = await self._call_llm_json(prompt, "generate_mind_map", max_tokens=2000)
        return self._validate(MindMapPayload, raw, "generate_mind_map")

    async def check_health(self) -> bool:
        """Return True when the model endpoint answers /api/tags with 200."""
        try:
            async with self._client(timeout=10.0) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("LLM health check failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Core LLM caller
    # ------------------------------------------------------------------

    def _client(self, timeout=None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport)

    async def _call_llm(self, prompt: str, max_tokens: int = 1000) -> str:
        """
        POST to /api/generate and return the response text.

        Raises UpstreamUnavailable on timeout, connection failure or a
        non-2xx response.
        """
        async with self._semaphore:
            try:
                async with self._client() as client:
                    resp = await client.post(
                        f"{self.base_url}/api/generate",
                        json={
                            "model": self.model,
                            "prompt": prompt,
                            "stream": False,
                            "options": {
                                "num_predict": max_tokens,
                                "temperature": 0.2,
                            },
                        },
                    )
            except httpx.TimeoutException as exc:
                raise UpstreamUnavailable(f"LLM request timed out: {exc}") from exc
            except httpx.HTTPError as exc:
                raise UpstreamUnavailable(f"LLM request failed: {exc}") from exc

        if not resp.is_success:
            raise UpstreamUnavailable(
                f"LLM returned HTTP {resp.status_code}: {resp.text[:300]}"
            )
        try:
            return str(resp.json().get("response", ""))
        except (json.JSONDecodeError, ValueError, AttributeError) as exc:
            raise ResponseFormatError(f"LLM envelope is not JSON: {exc}") from exc

    async def _call_llm_json(self, prompt: str, operation: str, max_tokens: int = 1500) -> Any:
        response_text = await self._call_llm(prompt, max_tokens)
        ok, parsed = self._parse_json_robust(response_text)
        if not ok:
            raise ResponseFormatError(f"{operation}: response is not parseable JSON")
        return parsed

    @staticmethod
    def _validate(schema, raw: Any, operation: str):
        try:
            return TypeAdapter(schema).validate_python(raw)
        except PydanticValidationError as exc:
            logger.warning("%s: response failed schema validation: %s", operation, exc)
            raise ResponseFormatError(
                f"{operation}: response does not match the expected structure"
            ) from exc

    @staticmethod
    def _non_empty(text: str, operation: str) -> str:
        text = text.strip()
        if not text:
            raise ResponseFormatError(f"{operation}: model returned an empty response")
        return text

    def _clip(self, text: str) -> str:
        return text[: self.max_input_chars]

    # ------------------------------------------------------------------
    # Tolerant JSON parsing
    # ------------------------------------------------------------------

    def _parse_json_robust(self, response: str) -> Tuple[bool, Any]:
        """
        Try several strategies to parse JSON from messy model output.

        Handles:
        - Markdown code fences (```json … ```, ``` … ```)
        - Trailing commas before ] or }
        - Python-style True / False / None
        - Surrounding prose (first balanced [...] or {...} block)

        Returns ``(success, parsed_value)``.
        """
        if not response or not response.strip():
            return False, None

        text = response.strip()

        ok, val = self._try_json(text)
        if ok:
            return True, val

        stripped = self._strip_code_fences(text)
        if stripped != text:
            ok, val = self._try_json(stripped)
            if ok:
                return True, val
            text = stripped

        ok, val = self._try_json(self._fix_json_issues(text))
        if ok:
            return True, val

        for bracket_pair in (("[", "]"), ("{", "}")):
            fragment = self._extract_json_structure(text, *bracket_pair)
            if fragment:
                ok, val = self._try_json(fragment)
                if ok:
                    return True, val
                ok, val = self._try_json(self._fix_json_issues(fragment))
                if ok:
                    return True, val

        logger.warning("_parse_json_robust: all strategies failed. Preview: %s", response[:400])
        return False, None

    @staticmethod
    def _try_json(text: str) -> Tuple[bool, Any]:
        try:
            return True, json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return False, None

    @staticmethod
    def _strip_code_fences(text: str) -> str:
        """Remove ```json / ``` delimiters that models often wrap output in."""
        text = re.sub(r"^```(?:json|javascript|text)?\s*\n?", "", text, flags=re.IGNORECASE)
        text = re.sub(r"\n?```\s*$", "", text)
        return text.strip()

    @staticmethod
    def _fix_json_issues(text: str) -> str:
        """Repair the most common JSON mangling patterns."""
        text = re.sub(r",(\s*[}\]])", r"\1", text)
        text = re.sub(r"\bTrue\b", "true", text)
        text = re.sub(r"\bFalse\b", "false", text)
        text = re.sub(r"\bNone\b", "null", text)
        return text.strip()

    @staticmethod
    def _extract_json_structure(text: str, open_b: str, close_b: str) -> str:
        """
        Find the first complete balanced open_b … close_b structure in *text*.
        Returns the matched fragment, or empty string if not found.
        """
        start = text.find(open_b)
        if start == -1:
            return ""

        depth = 0
        in_string = False
        escape_next = False

        for i, ch in enumerate(text[start:], start=start):
            if escape_next:
                escape_next = False
                continue
            if ch == "\\" and in_string:
                escape_next = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch == open_b:
                depth += 1
            elif ch == close_b:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        return ""
