"""
AI evaluation collaborator

Builds a rubric-driven prompt, calls the configured LLM provider in JSON
mode and returns the parsed scoring:

    {overallScore, overallFeedback, rubricSnapshot, criteria, usage, raw, model}

Providers are chosen by model name: "gemini*" goes to Gemini, anything
else to Groq. A missing API key for the chosen provider raises
AIServiceNotConfiguredError before any network call.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import google.generativeai as genai
from groq import AsyncGroq

from program_backend.config.settings import settings
from program_backend.errors import AIServiceError, AIServiceNotConfiguredError
from program_backend.services.rubric_service import build_rubric_snapshot

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert evaluator of innovation and entrepreneurship programs "
    "who applies structured rubrics objectively. Respond only with valid JSON."
)

RESPONSE_SHAPE = """{
  "overallScore": number,
  "overallFeedback": string,
  "criteria": [
    {
      "criterionId": number,
      "score": number,
      "feedback": string
    }
  ]
}"""


@dataclass
class LLMCompletion:
    """Standardized LLM response."""
    text: str
    model: str
    latency_ms: int
    usage: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScoreRange:
    minimum: float
    maximum: float


# ================= PROVIDER ADAPTER =================

class EvaluationLLMAdapter:
    """
    Thin adapter over Groq and Gemini with a unified `complete` call.
    Clients are created lazily so a missing key only fails the request
    that needs it.
    """

    def __init__(self):
        self._groq_client = None
        self._gemini_configured = False

    def _groq(self) -> AsyncGroq:
        if self._groq_client is None:
            api_key = settings.groq_api_key()
            if not api_key:
                logger.warning("GROQ_API_KEY not set, AI evaluation unavailable")
                raise AIServiceNotConfiguredError("AI service not configured (GROQ_API_KEY missing)")
            self._groq_client = AsyncGroq(api_key=api_key)
            logger.info("✓ Groq evaluation client initialized")
        return self._groq_client

    def _gemini(self, model: str):
        if not self._gemini_configured:
            api_key = settings.gemini_api_key()
            if not api_key:
                logger.warning("GEMINI_API_KEY not set, AI evaluation unavailable")
                raise AIServiceNotConfiguredError("AI service not configured (GEMINI_API_KEY missing)")
            genai.configure(api_key=api_key)
            self._gemini_configured = True
            logger.info("✓ Gemini evaluation client initialized")
        return genai.GenerativeModel(model, system_instruction=SYSTEM_PROMPT)

    async def complete(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float
    ) -> LLMCompletion:
        start_time = time.time()
        try:
            if model.startswith("gemini"):
                completion = await self._call_gemini(prompt, model, temperature, max_tokens, timeout_seconds)
            else:
                completion = await self._call_groq(prompt, model, temperature, max_tokens, timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"AI evaluation timeout after {timeout_seconds}s (model={model})")
            raise AIServiceError(f"AI evaluation timed out after {timeout_seconds}s")
        except (AIServiceError, AIServiceNotConfiguredError):
            raise
        except Exception as e:
            logger.error(f"AI evaluation call failed (model={model}): {type(e).__name__}: {e}")
            raise AIServiceError("AI evaluation provider call failed") from e

        completion.latency_ms = int((time.time() - start_time) * 1000)
        return completion

    async def _call_groq(self, prompt, model, temperature, max_tokens, timeout_seconds) -> LLMCompletion:
        client = self._groq()
        chat_completion = await asyncio.wait_for(
            client.chat.completions.create(
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"}
            ),
            timeout=timeout_seconds
        )

        usage = {}
        if getattr(chat_completion, "usage", None) is not None:
            usage = {
                "prompt_tokens": chat_completion.usage.prompt_tokens,
                "completion_tokens": chat_completion.usage.completion_tokens,
                "total_tokens": chat_completion.usage.total_tokens,
            }

        return LLMCompletion(
            text=chat_completion.choices[0].message.content or "",
            model=model,
            latency_ms=0,
            usage=usage,
        )

    async def _call_gemini(self, prompt, model, temperature, max_tokens, timeout_seconds) -> LLMCompletion:
        gemini_model = self._gemini(model)
        generation_config = genai.types.GenerationConfig(
            max_output_tokens=max_tokens,
            temperature=temperature,
            response_mime_type="application/json"
        )
        response = await asyncio.wait_for(
            gemini_model.generate_content_async(prompt, generation_config=generation_config),
            timeout=timeout_seconds
        )

        usage = {}
        if getattr(response, "usage_metadata", None) is not None:
            usage = {
                "prompt_tokens": response.usage_metadata.prompt_token_count,
                "completion_tokens": response.usage_metadata.candidates_token_count,
                "total_tokens": response.usage_metadata.total_token_count,
            }

        return LLMCompletion(text=response.text or "", model=model, latency_ms=0, usage=usage)


_adapter: Optional[EvaluationLLMAdapter] = None
_client_override = None


def set_llm_client(client) -> None:
    """Swap the provider adapter (tests). Pass None to restore the default."""
    global _client_override
    _client_override = client


def get_llm_client():
    global _adapter
    if _client_override is not None:
        return _client_override
    if _adapter is None:
        _adapter = EvaluationLLMAdapter()
    return _adapter


# ================= PROMPT =================

def _describe_criteria(snapshot: Dict[str, Any]) -> str:
    lines = []
    for criterion in snapshot["criteria"]:
        limits = f"weight {criterion['weight']}"
        if criterion.get("maxScore"):
            limits += f", max {criterion['maxScore']}"
        lines.append(
            f"- [{criterion['id']}] {criterion['title']} ({limits}): "
            f"{criterion.get('description') or 'No additional description'}"
        )
    return "\n".join(lines)


def _describe_submission(submission, task=None) -> str:
    parts = []
    if task is not None:
        parts.append(f"Task: {task.title}")
        if task.description:
            parts.append(f"Task description: {task.description}")
    parts.append(f"Submitted content:\n{submission.content or 'No text provided'}")
    if submission.attachment_url:
        parts.append(f"Attachment URL: {submission.attachment_url}")
    if submission.files:
        parts.append("Attached files:\n" + "\n".join(
            f"* {file.original_name or file.url} ({file.mime_type}, {file.size_bytes} bytes) -> {file.url}"
            for file in submission.files
        ))
    else:
        parts.append("No attached files.")
    return "\n\n".join(parts)


def build_evaluation_prompt(
    snapshot: Dict[str, Any],
    deliverables: str,
    locale: str,
    score_range: ScoreRange,
    extra_instructions: Optional[str] = None
) -> str:
    instructions = [
        f"Required response language: {locale}.",
        "Score the deliverable(s) criterion by criterion and give actionable feedback.",
        "Respond strictly in JSON with the following structure:",
        RESPONSE_SHAPE,
        "Criterion scores must respect the rubric scale (scaleMin, scaleMax, or maxScore when present).",
        f"overallScore must be between {score_range.minimum:g} and {score_range.maximum:g}.",
        "Feedback must be specific, improvement oriented and cite evidence from the deliverable.",
    ]
    if extra_instructions:
        instructions.append(extra_instructions.strip())

    return (
        "\n".join(instructions)
        + "\n\nRubric:\n"
        + f"Name: {snapshot['name']}\n"
        + f"Global scale: {snapshot['scaleMin']:g} - {snapshot['scaleMax']:g}\n"
        + "Criteria:\n"
        + _describe_criteria(snapshot)
        + "\n\nDeliverable(s) to evaluate:\n"
        + deliverables
    )


def parse_evaluation_response(text: str) -> Dict[str, Any]:
    if not text:
        raise AIServiceError("AI response has no content")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Could not parse AI evaluation response: {e}; raw={text[:500]!r}")
        raise AIServiceError("AI response is not valid JSON")
    if not isinstance(parsed, dict):
        logger.error(f"AI evaluation response is not an object: raw={text[:500]!r}")
        raise AIServiceError("AI response is not a JSON object")
    return parsed


# ================= ENTRY POINTS =================

async def _run(snapshot, prompt: str, event=None) -> Dict[str, Any]:
    model = (event.ai_evaluation_model if event is not None else None) or settings.AI_EVALUATION_MODEL
    temperature = settings.AI_EVALUATION_TEMPERATURE
    if event is not None and event.ai_evaluation_temperature is not None:
        temperature = event.ai_evaluation_temperature
    max_tokens = (event.ai_evaluation_max_tokens if event is not None else None) or settings.AI_EVALUATION_MAX_TOKENS

    completion = await get_llm_client().complete(
        prompt=prompt,
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout_seconds=settings.AI_EVALUATION_TIMEOUT_SECONDS,
    )
    parsed = parse_evaluation_response(completion.text)

    logger.info(
        f"AI evaluation completed (rubric={snapshot['id']}, model={completion.model}, "
        f"latency={completion.latency_ms}ms)"
    )
    return {
        "rubricSnapshot": snapshot,
        "overallScore": parsed.get("overallScore"),
        "overallFeedback": parsed.get("overallFeedback") or "",
        "criteria": parsed.get("criteria") if isinstance(parsed.get("criteria"), list) else [],
        "raw": parsed,
        "usage": completion.usage,
        "model": completion.model,
    }


async def generate_ai_evaluation(
    rubric,
    submission,
    task=None,
    locale: Optional[str] = None,
    score_range: Optional[ScoreRange] = None,
    event=None
) -> Dict[str, Any]:
    """Score a single submission against a rubric."""
    snapshot = build_rubric_snapshot(rubric)
    prompt = build_evaluation_prompt(
        snapshot,
        _describe_submission(submission, task),
        locale or settings.DEFAULT_LOCALE,
        score_range or ScoreRange(0, 10),
        extra_instructions=event.ai_evaluation_prompt if event is not None else None,
    )
    return await _run(snapshot, prompt, event)


async def generate_multi_submission_ai_evaluation(
    rubric,
    submissions: Sequence,
    tasks: Sequence,
    locale: Optional[str] = None,
    score_range: Optional[ScoreRange] = None,
    event=None
) -> Dict[str, Any]:
    """Score several submissions (one per task of a phase or project) as a whole."""
    snapshot = build_rubric_snapshot(rubric)
    tasks_by_id = {task.id: task for task in tasks}
    sections: List[str] = []
    for index, submission in enumerate(submissions, start=1):
        sections.append(
            f"### Deliverable {index} (submission {submission.id})\n"
            + _describe_submission(submission, tasks_by_id.get(submission.task_id))
        )

    prompt = build_evaluation_prompt(
        snapshot,
        "\n\n".join(sections) if sections else "No deliverables were submitted.",
        locale or settings.DEFAULT_LOCALE,
        score_range or ScoreRange(0, 100),
        extra_instructions=event.ai_evaluation_prompt if event is not None else None,
    )
    return await _run(snapshot, prompt, event)
