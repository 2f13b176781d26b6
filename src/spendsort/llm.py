"""LLM adapters for category suggestion and direction inference.

Two implementations of the classifier interfaces consumed by
:mod:`spendsort.resolver`:

- AnthropicAdapter: calls the Anthropic Messages API via httpx.
- NullAdapter: no-op adapter for --no-llm mode.

Failures of the Anthropic adapter (missing key, network, HTTP status,
unparseable reply) raise :class:`~spendsort.errors.ExternalServiceError`.
The adapter never retries; the caller decides what to do.
"""

from __future__ import annotations

import json
import logging
import os

import httpx

from spendsort.errors import ExternalServiceError
from spendsort.models import (
    DIRECTION_EXPENSE,
    DIRECTION_INCOME,
    DIRECTION_TRANSFER,
    DIRECTION_UNKNOWN,
    AISuggestion,
    CategoryRanking,
    DirectionSuggestion,
)

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"

_VALID_DIRECTIONS = {DIRECTION_INCOME, DIRECTION_EXPENSE, DIRECTION_TRANSFER}


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def _build_category_prompt(transaction: dict, count: int, categories: list[dict]) -> str:
    """Construct the single-merchant categorization prompt.

    Args:
        transaction: Sample transaction dict with merchant, description,
            amount, date and direction.
        count: Number of transactions from this merchant.
        categories: Taxonomy dicts with ``name`` and ``description``.

    Returns:
        The fully formatted prompt string.
    """
    taxonomy_lines: list[str] = []
    for cat in categories:
        description = cat.get("description", "")
        if description:
            taxonomy_lines.append(f"- {cat['name']}: {description}")
        else:
            taxonomy_lines.append(f"- {cat['name']}")
    taxonomy_text = "\n".join(taxonomy_lines)

    return (
        "You are categorizing household financial transactions.\n"
        "Pick the most appropriate category for the merchant below.\n"
        "\n"
        "## Categories\n"
        f"{taxonomy_text}\n"
        "\n"
        "## Transaction\n"
        f"Merchant: {transaction.get('merchant', '')}\n"
        f"Description: {transaction.get('description', '')}\n"
        f"Amount: {transaction.get('amount', '')}\n"
        f"Date: {transaction.get('date', '')}\n"
        f"Direction: {transaction.get('direction', DIRECTION_UNKNOWN)}\n"
        f"Transactions from this merchant: {count}\n"
        "\n"
        "## Response Format\n"
        "Return a single JSON object:\n"
        '{"category": "...", "confidence": 0.0-1.0, "is_new_category": false,\n'
        ' "category_description": "...", "reasoning": "...",\n'
        ' "rankings": [{"category": "...", "score": 0.0-1.0}]}\n'
        "\n"
        "Prefer an existing category. Only set is_new_category to true when no\n"
        "existing category fits, and then describe the new category."
    )


def _build_direction_prompt(merchant: str, sample: dict, count: int) -> str:
    return (
        "Decide whether transactions from this merchant are income, an expense,\n"
        "or a transfer between the user's own accounts.\n"
        "\n"
        f"Merchant: {merchant}\n"
        f"Sample description: {sample.get('description', '')}\n"
        f"Sample amount: {sample.get('amount', '')}\n"
        f"Transactions from this merchant: {count}\n"
        "\n"
        "Return a single JSON object:\n"
        '{"direction": "income" | "expense" | "transfer", "confidence": 0.0-1.0,\n'
        ' "reasoning": "..."}'
    )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _extract_json_object(text: str) -> dict:
    """Extract the JSON object from the LLM response text.

    The LLM may wrap the JSON in markdown code fences or include
    explanatory text, so everything between the first '{' and the last '}'
    is parsed.

    Raises:
        ExternalServiceError: If no JSON object can be parsed.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ExternalServiceError("LLM response does not contain a JSON object")
    try:
        result = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ExternalServiceError(f"Failed to parse JSON from LLM response: {exc}") from exc
    if not isinstance(result, dict):
        raise ExternalServiceError("LLM response JSON is not an object")
    return result


def _clamp_confidence(value) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def _parse_category_response(text: str) -> AISuggestion:
    data = _extract_json_object(text)
    category = str(data.get("category", "")).strip()
    if not category:
        raise ExternalServiceError("LLM response is missing a category")

    rankings: list[CategoryRanking] = []
    for item in data.get("rankings") or []:
        if not isinstance(item, dict) or not item.get("category"):
            logger.warning("Skipping malformed ranking in LLM response: %s", item)
            continue
        rankings.append(
            CategoryRanking(
                category=str(item["category"]),
                score=_clamp_confidence(item.get("score")),
                description=str(item.get("description", "")),
            )
        )

    return AISuggestion(
        category=category,
        confidence=_clamp_confidence(data.get("confidence")),
        is_new_category=bool(data.get("is_new_category", False)),
        category_description=str(data.get("category_description", "") or ""),
        reasoning=str(data.get("reasoning", "") or ""),
        rankings=rankings,
    )


def _parse_direction_response(text: str) -> DirectionSuggestion:
    data = _extract_json_object(text)
    direction = str(data.get("direction", "")).strip().lower()
    if direction not in _VALID_DIRECTIONS:
        raise ExternalServiceError(f"LLM returned an unknown direction: {direction!r}")
    return DirectionSuggestion(
        direction=direction,
        confidence=_clamp_confidence(data.get("confidence")),
        reasoning=str(data.get("reasoning", "") or ""),
    )


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class AnthropicAdapter:
    """LLM adapter that calls the Anthropic Messages API via httpx.

    Reads the API key from the environment variable named in config
    (``api_key_env``).  Each call sends one prompt and parses one JSON
    object from the reply.

    Args:
        model: The Anthropic model identifier, e.g. "claude-sonnet-4-20250514".
        api_key_env: Name of the environment variable containing the API key.
        max_tokens: Maximum tokens in the LLM response. Default: 1024.
        timeout: HTTP request timeout in seconds. Default: 60.
    """

    def __init__(
        self,
        model: str,
        api_key_env: str,
        max_tokens: int = 1024,
        timeout: float = 60.0,
    ) -> None:
        self.model = model
        self.api_key_env = api_key_env
        self.max_tokens = max_tokens
        self.timeout = timeout

    def suggest_category(
        self,
        transaction: dict,
        count: int,
        categories: list[dict],
    ) -> AISuggestion:
        """Ask the LLM for a category for one merchant group.

        Args:
            transaction: Sample transaction dict (see
                :meth:`spendsort.models.Transaction.to_context`).
            count: Number of transactions in the merchant group.
            categories: Taxonomy dicts with ``name`` and ``description``.

        Raises:
            ExternalServiceError: On any failure.
        """
        prompt = _build_category_prompt(transaction, count, categories)
        return _parse_category_response(self._send(prompt))

    def infer_direction(self, merchant: str, sample: dict, count: int) -> DirectionSuggestion:
        """Ask the LLM whether a merchant's transactions are income, expense or transfer."""
        prompt = _build_direction_prompt(merchant, sample, count)
        return _parse_direction_response(self._send(prompt))

    def _send(self, prompt: str) -> str:
        api_key = os.environ.get(self.api_key_env, "")
        if not api_key:
            raise ExternalServiceError(
                f"LLM API key not found in environment variable '{self.api_key_env}'"
            )

        request_body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": prompt,
                }
            ],
        }

        headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

        try:
            response = httpx.post(
                ANTHROPIC_API_URL,
                json=request_body,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExternalServiceError("LLM request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                f"LLM API returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"LLM request failed: {exc}") from exc

        try:
            body = response.json()
            text_parts = [
                block["text"] for block in body.get("content", []) if block.get("type") == "text"
            ]
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            raise ExternalServiceError(f"Failed to extract text from LLM response: {exc}") from exc

        response_text = "\n".join(text_parts)
        if not response_text:
            raise ExternalServiceError("LLM response contained no text content")
        logger.debug("LLM response: %s", response_text[:500])
        return response_text


class NullAdapter:
    """No-op adapter for --no-llm mode.

    Suggests nothing and leaves directions unknown, so every transaction
    without a confident rule goes to the interactive prompt.
    """

    def suggest_category(
        self,
        transaction: dict,
        count: int,
        categories: list[dict],
    ) -> AISuggestion | None:
        return None

    def infer_direction(self, merchant: str, sample: dict, count: int) -> DirectionSuggestion:
        return DirectionSuggestion(direction=DIRECTION_UNKNOWN, confidence=0.0, reasoning="")
