"""AI classifier adapter for transaction categorization.

Wraps a local Ollama server. Features:
- Cascading model fallback (fast -> slow)
- Response caching keyed by prompt version and inputs
- Concurrency limiting via semaphore
- Robust JSON extraction from chatty model output

Every failure (disabled service, timeout, HTTP error, malformed or
out-of-taxonomy answer) surfaces as ClassificationError. Callers decide how
to degrade; the adapter never guesses a category on its own.

Privacy: prompts and descriptions are never logged at INFO level.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

import httpx

from ..categorization.taxonomy import TAXONOMY_VERSION
from ..errors import ClassificationError
from ..schemas.transaction import TransactionCategory, TransactionType
from .prompts import PROMPT_VERSION, CategoryPrompt, MappingRulePrompt

if TYPE_CHECKING:
    from ..config import LLMConfig
    from ..state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    """Result of classifying one transaction."""

    category: TransactionCategory
    type: TransactionType
    confidence: float
    reason: str = ""
    model: str = ""
    from_cache: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "category": self.category.value,
            "type": self.type.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "model": self.model,
            "from_cache": self.from_cache,
        }


@dataclass
class MappingSuggestion:
    """Suggested canonical category for an external category label."""

    native_category: str
    category: TransactionCategory
    confidence: float
    reason: str = ""


class LLMConcurrencyLimiter:
    """Semaphore-based concurrency limiter for LLM requests.

    Ingestion runs several account workers at once; this keeps them from
    overwhelming the Ollama server.
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        self._semaphore = threading.Semaphore(max_concurrent)
        self._active_count = 0
        self._lock = threading.Lock()

    def acquire(self, timeout: float | None = None) -> bool:
        """Acquire a slot. Returns False on timeout."""
        acquired = self._semaphore.acquire(blocking=True, timeout=timeout)
        if acquired:
            with self._lock:
                self._active_count += 1
        return acquired

    def release(self) -> None:
        with self._lock:
            self._active_count -= 1
        self._semaphore.release()

    @property
    def active_requests(self) -> int:
        with self._lock:
            return self._active_count


def _clamp_confidence(value: object) -> float:
    try:
        confidence = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return max(0.0, min(1.0, confidence))


def parse_json_response(content: str) -> dict:
    """Parse a JSON object from LLM output.

    Handles markdown code fences, surrounding prose, trailing commas and
    unquoted keys.

    Raises:
        json.JSONDecodeError: If no JSON object can be recovered.
    """
    if not content or not content.strip():
        raise json.JSONDecodeError("Empty response", content or "", 0)

    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    content = content.strip()

    candidates = [content]
    match = re.search(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}", content, re.DOTALL)
    if match:
        candidates.append(match.group())

    for candidate in list(candidates):
        cleaned = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", candidate)
        cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)
        cleaned = re.sub(r"(\{|,)\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*:", r'\1"\2":', cleaned)
        candidates.append(cleaned)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise json.JSONDecodeError(f"Could not parse JSON from response: {content[:200]}", content, 0)


class AIClassifier:
    """LLM-backed classifier.

    Args:
        llm_config: LLM settings (URL, models, timeouts, concurrency).
        state_store: Optional store used for response caching.
        client: Optional pre-built httpx client (tests inject one).
    """

    def __init__(
        self,
        llm_config: LLMConfig,
        state_store: StateStore | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.llm_config = llm_config
        self.store = state_store

        headers = {}
        if llm_config.auth_header:
            # Support formats: "Bearer token" or "Custom-Header: value"
            if ":" in llm_config.auth_header:
                key, value = llm_config.auth_header.split(":", 1)
                headers[key.strip()] = value.strip()
            else:
                headers["Authorization"] = llm_config.auth_header

        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(llm_config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=headers,
        )
        self._category_prompt = CategoryPrompt()
        self._mapping_prompt = MappingRulePrompt()
        self._limiter = LLMConcurrencyLimiter(max_concurrent=llm_config.max_concurrent)

    @property
    def is_enabled(self) -> bool:
        return self.llm_config.enabled

    def classify(
        self,
        description: str,
        amount: Decimal | str | float,
        vendor: str | None = None,
        use_cache: bool = True,
    ) -> Classification:
        """
        Classify a transaction into the canonical taxonomy.

        Args:
            description: Transaction description.
            amount: Signed amount.
            vendor: Counterparty name, if known.
            use_cache: Whether to consult and fill the response cache.

        Returns:
            Classification with confidence clamped to [0, 1].

        Raises:
            ClassificationError: On any adapter failure.
        """
        if not self.is_enabled:
            raise ClassificationError("LLM classifier is disabled")

        amount_str = f"{Decimal(str(amount)):.2f}"
        cache_key = self._build_cache_key("classify", description, amount_str, vendor)

        if use_cache and self.store is not None:
            cached = self.store.get_llm_cache(cache_key)
            if cached:
                try:
                    result = self._to_classification(
                        json.loads(cached["response_json"]), amount_str, cached["model"]
                    )
                    result.from_cache = True
                    return result
                except (json.JSONDecodeError, ClassificationError) as e:
                    logger.warning("Ignoring invalid cached classification: %s", e)

        user_message = self._category_prompt.format_user_message(
            description=description, amount=amount_str, vendor=vendor
        )
        response = self._complete(self._category_prompt.system_prompt, user_message)

        try:
            data = parse_json_response(response["content"])
        except json.JSONDecodeError as e:
            raise ClassificationError(f"Malformed classifier response: {e.msg}") from e

        result = self._to_classification(data, amount_str, response["model"])

        if self.store is not None:
            self.store.set_llm_cache(
                cache_key=cache_key,
                model=response["model"],
                prompt_version=PROMPT_VERSION,
                response_json=json.dumps(data),
                ttl_days=self.llm_config.cache_ttl_days,
            )
        return result

    def suggest_mapping(
        self,
        platform: str,
        native_category: str,
        samples: list[tuple[str, str]] | None = None,
    ) -> MappingSuggestion:
        """
        Ask the model which canonical category an external label means.

        Raises:
            ClassificationError: On any adapter failure.
        """
        if not self.is_enabled:
            raise ClassificationError("LLM classifier is disabled")

        user_message = self._mapping_prompt.format_user_message(
            platform=platform, native_category=native_category, samples=samples
        )
        response = self._complete(self._mapping_prompt.system_prompt, user_message)
        try:
            data = parse_json_response(response["content"])
        except json.JSONDecodeError as e:
            raise ClassificationError(f"Malformed mapping response: {e.msg}") from e

        raw_category = data.get("category") or data.get("standardCategory")
        category = TransactionCategory.parse(raw_category if isinstance(raw_category, str) else None)
        if category is None:
            raise ClassificationError(f"Model suggested unknown category {raw_category!r}")

        return MappingSuggestion(
            native_category=native_category,
            category=category,
            confidence=_clamp_confidence(data.get("confidence")),
            reason=str(data.get("reason") or data.get("mappingRule") or ""),
        )

    def _to_classification(self, data: dict, amount_str: str, model: str) -> Classification:
        raw_category = data.get("category")
        category = TransactionCategory.parse(raw_category if isinstance(raw_category, str) else None)
        if category is None:
            raise ClassificationError(f"Model suggested unknown category {raw_category!r}")

        raw_type = data.get("type")
        tx_type = TransactionType.parse(raw_type if isinstance(raw_type, str) else None)
        if tx_type is None:
            tx_type = TransactionType.from_amount(Decimal(amount_str))

        return Classification(
            category=category,
            type=tx_type,
            confidence=_clamp_confidence(data.get("confidence")),
            reason=str(data.get("reason") or ""),
            model=model,
        )

    def _build_cache_key(self, prefix: str, *args: str | None) -> str:
        """SHA256 cache key over prompt and taxonomy versions and inputs."""
        components = [prefix, PROMPT_VERSION, TAXONOMY_VERSION, *[str(a) for a in args if a]]
        return hashlib.sha256("|".join(components).encode()).hexdigest()

    def _complete(self, system_prompt: str, user_message: str) -> dict:
        """Run the fast model, then the fallback model; raise if both fail."""
        result = self._call_ollama(self.llm_config.model_fast, system_prompt, user_message)
        if result is None and self.llm_config.model_fallback:
            logger.info("Fast model failed, falling back to %s", self.llm_config.model_fallback)
            result = self._call_ollama(
                self.llm_config.model_fallback, system_prompt, user_message
            )
        if result is None:
            raise ClassificationError("No model produced a response")
        return result

    def _call_ollama(self, model: str, system_prompt: str, user_message: str) -> dict | None:
        """Call Ollama chat API with concurrency limiting.

        Returns:
            Dict with "content" and "model" keys, or None on failure.
        """
        if not self._limiter.acquire(timeout=self.llm_config.timeout_seconds):
            logger.warning(
                "LLM request timed out waiting for concurrency slot (max=%d, active=%d)",
                self.llm_config.max_concurrent,
                self._limiter.active_requests,
            )
            return None

        try:
            url = f"{self.llm_config.ollama_url.rstrip('/')}/api/chat"
            payload = {
                "model": model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                "stream": False,
                "format": "json",
                "options": {"temperature": 0.2},
            }
            logger.debug("Calling Ollama model %s", model)

            response = self._client.post(url, json=payload)
            response.raise_for_status()
            body = response.json()
            message = body.get("message") if isinstance(body, dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, str):
                logger.warning("Ollama %s returned an unexpected body shape", model)
                return None

            logger.debug("Ollama %s returned %d chars", model, len(content))
            return {"content": content, "model": model}

        except httpx.TimeoutException:
            logger.warning("Ollama request timed out after %ds", self.llm_config.timeout_seconds)
            return None
        except httpx.HTTPStatusError as e:
            logger.error(
                "Ollama API error %s for model '%s'", e.response.status_code, model
            )
            return None
        except httpx.RequestError as e:
            logger.error("Ollama request failed: %s", e)
            return None
        except ValueError as e:
            # Body was not JSON
            logger.warning("Ollama returned a non-JSON body: %s", e)
            return None
        finally:
            self._limiter.release()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AIClassifier:
        return self

    def __exit__(self, *args) -> None:
        self.close()
