"""
Client for the language model that rewrites prompts (OpenAI chat completions).
Any failure, including a timeout or an unusable answer, is raised as
RewriteUpstreamFailure.
"""
import json
import logging
from dataclasses import dataclass, field

import httpx

from app.core.config import OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL, REWRITE_TIMEOUT_SECONDS
from app.core.exceptions import RewriteUpstreamFailure
from app.core.plan_limits import SUPPORTED_FOCUS_AREAS

logger = logging.getLogger(__name__)

_FOCUS_RULES = {
    "specificity": "- Add specific details, examples, and parameters where helpful",
    "clarity": "- Improve structure, eliminate ambiguity, and use clear language",
    "ctas": "- Add clear calls-to-action for specific outputs/formats",
    "engagement": "- Make the prompt more engaging and attention-grabbing",
}


@dataclass
class RewriteResult:
    rewritten_text: str
    rationale: str
    improvements: list[str] = field(default_factory=list)


def build_system_prompt(audience: str, focus_areas: list[str]) -> str:
    rules = [_FOCUS_RULES[area] for area in focus_areas if area in _FOCUS_RULES]
    if audience != "general":
        rules.append(f"- Adapt language and terminology for a {audience} audience")
    return (
        "You are an expert in optimizing prompts for large language models.\n"
        f"TARGET AUDIENCE: {audience}\n"
        f"OPTIMIZATION FOCUS: {', '.join(focus_areas)}\n\n"
        "RULES:\n" + "\n".join(rules) + "\n\n"
        "Preserve the original intent completely and keep the result concise.\n"
        'Answer with a JSON object: {"optimizedPrompt": str, "reasoning": str, "improvements": [str]}'
    )


def parse_completion(body: dict) -> RewriteResult:
    try:
        content = body["choices"][0]["message"]["content"] or "{}"
        data = json.loads(content)
    except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
        raise RewriteUpstreamFailure(f"Unreadable rewrite response: {e}")

    rewritten = data.get("optimizedPrompt") if isinstance(data, dict) else None
    if not rewritten:
        raise RewriteUpstreamFailure("Rewrite response is missing optimizedPrompt")

    improvements = data.get("improvements")
    if not isinstance(improvements, list):
        improvements = []
    return RewriteResult(
        rewritten_text=rewritten,
        rationale=data.get("reasoning") or "Prompt optimized for better AI understanding and response",
        improvements=[str(item) for item in improvements],
    )


class PromptRewriter:
    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        base_url: str = OPENAI_BASE_URL,
        model: str = OPENAI_MODEL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.transport = transport

    async def rewrite(
        self,
        text: str,
        audience: str,
        focus_areas: list[str],
        timeout: float = REWRITE_TIMEOUT_SECONDS,
    ) -> RewriteResult:
        unsupported = [area for area in focus_areas if area not in SUPPORTED_FOCUS_AREAS]
        if unsupported:
            logger.warning("Unsupported focus areas provided: %s", unsupported)

        if not self.api_key:
            raise RewriteUpstreamFailure("Rewrite service not configured. Missing: OPENAI_API_KEY")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": build_system_prompt(audience, focus_areas)},
                {"role": "user", "content": text},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.3,
            "max_tokens": 1500,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                r = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Rewrite request timed out after %ss: %s", timeout, e)
            raise RewriteUpstreamFailure("Rewrite service timed out")
        except httpx.RequestError as e:
            logger.warning("Rewrite request failed: %s", e)
            raise RewriteUpstreamFailure(f"Rewrite request failed: {e}")

        if r.status_code != 200:
            logger.warning("Rewrite service returned %s: %s", r.status_code, r.text[:500] if r.text else "NO_BODY")
            raise RewriteUpstreamFailure(f"Rewrite service error: {r.status_code}")

        try:
            body = r.json()
        except ValueError:
            raise RewriteUpstreamFailure("Rewrite service returned invalid JSON")
        return parse_completion(body)


def get_prompt_rewriter() -> PromptRewriter:
    return PromptRewriter()
