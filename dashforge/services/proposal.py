"""
AI proposal collaborator client.

Sends the current dashboard document, the available dataset fields and a
natural-language request to an OpenAI-compatible chat-completions endpoint
and parses the answer into a PatchProposal:

    {"patch": [...], "summary": [...], "warnings": [...], "confidence": 0.0-1.0}

The model is a black box. Its output is never trusted: a reply that is not a
valid proposal is a PARSE_ERROR, and a valid proposal is only ever simulated,
never committed, by the caller.

Error mapping:
- endpoint not configured -> CONFIG_ERROR
- HTTP 429 -> RATE_LIMITED (not retried)
- other HTTP or transport failures after retries -> AI_ERROR
- unparseable reply -> PARSE_ERROR

Dependencies:
    - httpx: async HTTP client for the chat-completions call
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from dashforge.core.config import Settings
from dashforge.core.errors import ProposalParseError, ServiceError
from dashforge.models.enums import ErrorCode
from dashforge.models.schemas import PatchProposal
from dashforge.services.path_policy import PathPolicyConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Prompt
# =============================================================================

SYSTEM_PROMPT = (
    "You edit dashboard specifications. Answer ONLY with a JSON object of the form "
    '{"patch": [<JSON Patch operations>], "summary": [<short strings>], '
    '"warnings": [<short strings>], "confidence": <number between 0 and 1>}. '
    "Never include explanations outside the JSON object."
)


def build_edit_prompt(
    user_request: str,
    current_document: Dict[str, Any],
    available_fields: List[str],
    policy: PathPolicyConfig,
) -> str:
    """
    Build the user message for a dashboard edit request.

    Args:
        user_request: What the user asked for, in natural language.
        current_document: Dashboard document the patch will target.
        available_fields: Dataset columns the dashboard may reference.
        policy: Path policy; its lists and limits are stated as rules.

    Returns:
        Prompt text.
    """
    rules = [
        "Use JSON Patch operations: add, remove, replace, move, copy, test.",
        f"Only edit these paths: {', '.join(policy.allowed_paths)}.",
        f"Never touch: {', '.join(policy.blocked_paths)}.",
        f"At most {policy.max_kpis} KPIs, {policy.max_charts} charts, "
        f"{policy.max_funnel_steps} funnel steps, {policy.max_filters} filters "
        f"and {policy.max_tabs} tabs.",
        f"Never remove these tabs: {', '.join(policy.protected_tabs) or 'none'}.",
        "Only reference columns from the available fields list.",
        "Append to arrays with the '-' index.",
    ]
    if not policy.allow_create_new_tabs:
        rules.append("Do not create new tabs.")
    if not policy.allow_remove_tabs:
        rules.append("Do not remove tabs.")

    return "\n".join([
        "RULES:",
        *(f"- {rule}" for rule in rules),
        "",
        "CURRENT DASHBOARD:",
        json.dumps(current_document, indent=2, ensure_ascii=False),
        "",
        "AVAILABLE FIELDS:",
        json.dumps(available_fields, ensure_ascii=False),
        "",
        "REQUEST:",
        user_request,
    ])


# =============================================================================
# Parsing
# =============================================================================

def _extract_json_object(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, str):
        raise ProposalParseError(
            "AI response content is not text",
            {"type": type(raw).__name__},
        )
    text = raw.strip()
    if not text:
        raise ProposalParseError("Empty response from AI collaborator")

    try:
        result = json.loads(text)
        if isinstance(result, dict):
            return result
    except json.JSONDecodeError:
        pass

    block = re.search(r'```(?:json)?\s*\n(.*?)\n\s*```', text, re.DOTALL)
    if block:
        try:
            result = json.loads(block.group(1).strip())
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            pass

    braces = re.search(r'\{.*\}', text, re.DOTALL)
    if braces:
        try:
            result = json.loads(braces.group(0))
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            pass

    raise ProposalParseError(
        "AI response is not valid JSON",
        {"preview": text[:200]},
    )


def parse_proposal(raw: str) -> PatchProposal:
    """
    Parse an AI reply into a PatchProposal.

    Accepts plain JSON, a fenced ```json block, or a JSON object embedded in
    surrounding text. The `patch` list is required; a missing confidence
    defaults to 0.8.

    Raises:
        ProposalParseError: If the reply holds no valid proposal.

    Example:
        >>> parse_proposal('```json\\n{"patch": [], "summary": ["noop"]}\\n```').summary
        ['noop']
    """
    data = _extract_json_object(raw)
    if 'patch' not in data:
        raise ProposalParseError("AI response has no 'patch' list", {"keys": sorted(data)})
    if not isinstance(data['patch'], list):
        raise ProposalParseError("'patch' must be a list of operations")
    try:
        return PatchProposal.model_validate(data)
    except ValidationError as e:
        raise ProposalParseError(
            "AI response is not a valid patch proposal",
            {"errors": [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]},
        )


# =============================================================================
# Client
# =============================================================================

class ProposalClient:
    """
    Chat-completions client producing patch proposals.

    Args:
        url: Endpoint base URL or full /chat/completions URL.
        api_key: Bearer token.
        model: Model name.
        temperature: Sampling temperature.
        max_tokens: Output token budget.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt (429 is never retried).
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str],
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        timeout: float = 30.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = url if '/chat/completions' in url else url.rstrip('/') + '/chat/completions'
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> 'ProposalClient':
        """
        Raises:
            ServiceError: CONFIG_ERROR when no endpoint is configured.
        """
        if not settings.ai_api_url:
            raise ServiceError(ErrorCode.CONFIG_ERROR, "AI endpoint is not configured")
        return cls(
            url=settings.ai_api_url,
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            temperature=settings.ai_temperature,
            max_tokens=settings.ai_max_tokens,
            timeout=settings.ai_timeout_seconds,
            max_retries=settings.ai_max_retries,
        )

    async def complete(self, system_prompt: str, user_message: str) -> str:
        """
        Run one chat completion and return the message content.

        Raises:
            ServiceError: RATE_LIMITED or AI_ERROR.
            ProposalParseError: If the message content is not text.
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(self.endpoint, headers=headers, json=body)
                    response.raise_for_status()
                    payload = response.json()
                content = payload["choices"][0]["message"]["content"]
                if content is None:
                    return ""
                if not isinstance(content, str):
                    raise ProposalParseError(
                        "AI response content is not text",
                        {"type": type(content).__name__},
                    )
                return content
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429:
                    logger.warning("AI collaborator rate limited the request")
                    raise ServiceError(ErrorCode.RATE_LIMITED, "AI rate limit exceeded, try again later")
                last_error = e
                logger.warning(
                    f"AI call failed (HTTP {status}), attempt {attempt + 1}/{self.max_retries + 1}: "
                    f"{e.response.text[:200]}"
                )
            except httpx.RequestError as e:
                last_error = e
                logger.warning(f"AI request error, attempt {attempt + 1}/{self.max_retries + 1}: {e}")
            except (KeyError, IndexError, TypeError, ValueError) as e:
                last_error = e
                logger.warning(f"Unexpected AI response shape, attempt {attempt + 1}/{self.max_retries + 1}: {e}")

        raise ServiceError(
            ErrorCode.AI_ERROR,
            f"AI call failed after {self.max_retries + 1} attempt(s)",
            {"reason": str(last_error)},
        )

    async def propose(
        self,
        current_document: Dict[str, Any],
        available_fields: List[str],
        user_request: str,
        policy: PathPolicyConfig,
    ) -> PatchProposal:
        """
        Ask the collaborator for a patch.

        Raises:
            ServiceError: RATE_LIMITED, AI_ERROR or PARSE_ERROR.
        """
        prompt = build_edit_prompt(user_request, current_document, available_fields, policy)
        raw = await self.complete(SYSTEM_PROMPT, prompt)
        proposal = parse_proposal(raw)
        logger.info(
            f"AI proposal received: {len(proposal.patch)} operation(s), confidence {proposal.confidence:.2f}"
        )
        return proposal
