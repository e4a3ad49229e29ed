"""
DeepSeek LLM Client - advisory second opinion on entries and exits
"""
import asyncio
import json
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import openai
from loguru import logger

from scalper.llm.circuit_breaker import CircuitBreaker
from scalper.llm.errors import (
    LLMCircuitOpenError,
    LLMError,
    LLMRateLimitError,
    LLMServiceError,
    LLMTimeoutError,
    LLMValidationError,
)
from scalper.types import Position, utc_now


VALID_ACTIONS = {"LONG", "SHORT", "HOLD", "EXIT"}
KLINE_HISTORY = 20

SYSTEM_PROMPT = (
    "You are a crypto futures scalping assistant. You review a proposed trade or an open "
    "position and answer with a single JSON object: "
    '{"action": "LONG|SHORT|HOLD|EXIT", "confidence": 0-100, "reason": "<one sentence>"}. '
    "Be conservative: answer HOLD when the setup is unclear."
)


@dataclass
class AdvisoryResult:
    """Advisor answer"""
    action: str
    confidence: float
    reason: str
    agrees: bool


class DeepSeekClient:
    """DeepSeek LLM client for trade advice"""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "deepseek-chat",
        base_url: str = "https://api.deepseek.com",
        enabled: bool = True,
        temperature: float = 0.3,
        max_tokens: int = 512,
        timeout: float = 5.0,
        max_retries: int = 3,
        initial_delay_ms: int = 500,
        max_delay_ms: int = 5000,
        backoff_multiplier: float = 2.0,
        jitter: bool = True,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[Any] = None,
    ):
        """Initialize DeepSeek client"""
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.enabled = bool(enabled and api_key)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="deepseek")
        self._rate_limited_until = 0.0

        # Retries are handled here, so the SDK's own retry loop is off
        self.client = client
        if self.client is None and self.enabled:
            self.client = openai.OpenAI(
                api_key=api_key,
                base_url=base_url,
                max_retries=0,
                timeout=timeout,
            )

        if self.enabled:
            logger.info(f"DeepSeek client initialized with model: {model}")
        else:
            logger.info("DeepSeek advisor disabled (no API key or LLM_ENABLED=false)")

    @classmethod
    def from_settings(cls, settings, client: Optional[Any] = None) -> "DeepSeekClient":
        return cls(
            api_key=settings.api_key,
            model=settings.model,
            base_url=settings.base_url,
            enabled=settings.enabled,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            initial_delay_ms=settings.initial_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            backoff_multiplier=settings.backoff_multiplier,
            jitter=settings.jitter,
            circuit_breaker=CircuitBreaker(
                failure_threshold=settings.failure_threshold,
                success_threshold=settings.success_threshold,
                timeout=settings.circuit_timeout_seconds,
                name="deepseek",
            ),
            client=client,
        )

    async def analyze_entry(
        self,
        symbol: str,
        direction: str,
        indicators: Dict[str, Any],
        reasons: Sequence[str],
        klines: Sequence[Any],
    ) -> AdvisoryResult:
        """
        Ask for a second opinion on a proposed entry

        Returns:
            AdvisoryResult; ``agrees`` is True when the advisor picks the same direction
        """
        direction = direction.upper()
        if not self.enabled:
            return AdvisoryResult(direction, 50, "LLM disabled", True)

        prompt = (
            f"Proposed entry: {direction} {symbol}\n"
            f"Signal reasons: {', '.join(reasons) or 'none'}\n"
            f"Indicators: {json.dumps(indicators, default=str)}\n"
            f"Recent candles (oldest first): {self._format_klines(klines)}\n"
            "Should this entry be taken? Answer LONG, SHORT or HOLD."
        )
        result = await self._advise(prompt, f"entry {symbol}")
        result.agrees = result.confidence > 0 and result.action == direction
        return result

    async def analyze_exit(
        self,
        position: Position,
        indicators: Dict[str, Any],
        klines: Sequence[Any],
        now: Optional[datetime] = None,
    ) -> AdvisoryResult:
        """
        Ask whether an open position should be closed

        Returns:
            AdvisoryResult; ``agrees`` is True when the advisor recommends EXIT
        """
        if not self.enabled:
            return AdvisoryResult("HOLD", 50, "LLM disabled", False)

        age = position.age_minutes(now or utc_now())
        prompt = (
            f"Open position: {position.side.value.upper()} {position.symbol}\n"
            f"Entry {position.entry_price}, current {position.current_price}, "
            f"ROE {position.unrealized_roe:.2f}% (peak {position.highest_roe:.2f}%, "
            f"low {position.lowest_roe:.2f}%), held {age:.1f}min\n"
            f"Indicators: {json.dumps(indicators, default=str)}\n"
            f"Recent candles (oldest first): {self._format_klines(klines)}\n"
            "Should this position be closed now? Answer EXIT or HOLD."
        )
        result = await self._advise(prompt, f"exit {position.symbol}")
        result.agrees = result.confidence > 0 and result.action == "EXIT"
        return result

    async def _advise(self, prompt: str, label: str) -> AdvisoryResult:
        """Call the model and turn every failure into a neutral HOLD"""
        try:
            content = await self._call_with_retry(prompt)
            result = self._parse_response(content)
            logger.info(f"LLM {label}: {result.action} ({result.confidence:.0f}) - {result.reason}")
            return result
        except LLMRateLimitError as e:
            logger.warning(f"LLM rate limited on {label}: {e}")
            return self._create_safe_result(f"LLM rate limit: {e}")
        except LLMError as e:
            logger.error(f"LLM call failed on {label}: {e}")
            return self._create_safe_result(f"LLM error: {e}")
        except Exception as e:
            logger.exception(f"Unexpected LLM failure on {label}: {e}")
            return self._create_safe_result(f"LLM error: {e}")

    async def _call_with_retry(self, prompt: str) -> str:
        remaining = self._rate_limited_until - time.monotonic()
        if remaining > 0:
            raise LLMRateLimitError(f"backing off for {remaining:.0f}s", retry_after=remaining)

        if not self.circuit_breaker.allow_request():
            raise LLMCircuitOpenError(
                f"circuit open, retry in {self.circuit_breaker.retry_in():.0f}s",
                retry_in=self.circuit_breaker.retry_in(),
            )

        for attempt in range(self.max_retries + 1):
            try:
                content = await self._call_deepseek(prompt)
                self.circuit_breaker.record_success()
                return content

            except LLMRateLimitError as e:
                if e.retry_after:
                    self._rate_limited_until = time.monotonic() + e.retry_after
                raise

            except (LLMTimeoutError, LLMServiceError) as e:
                if not e.retryable or attempt >= self.max_retries:
                    self.circuit_breaker.record_failure()
                    raise
                delay = self._backoff_delay(attempt)
                logger.warning(
                    f"LLM call failed (attempt {attempt + 1}/{self.max_retries + 1}): {e}, "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        raise LLMServiceError("retries exhausted")

    def _backoff_delay(self, attempt: int) -> float:
        delay_ms = min(self.max_delay_ms, self.initial_delay_ms * self.backoff_multiplier ** attempt)
        if self.jitter:
            delay_ms *= 0.5 + random.random() / 2
        return delay_ms / 1000

    async def _call_deepseek(self, user_prompt: str) -> str:
        """Make API call to DeepSeek"""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.chat.completions.create,
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    response_format={"type": "json_object"},
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise LLMTimeoutError(f"request timed out after {self.timeout}s")
        except openai.RateLimitError as e:
            raise LLMRateLimitError("HTTP 429", retry_after=self._retry_after(e)) from e
        except openai.APITimeoutError as e:
            raise LLMTimeoutError(str(e)) from e
        except openai.APIConnectionError as e:
            raise LLMServiceError(f"connection error: {e}") from e
        except openai.APIStatusError as e:
            raise LLMServiceError(f"HTTP {e.status_code}", status_code=e.status_code) from e

        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise LLMValidationError(f"malformed completion: {e}") from e

    @staticmethod
    def _retry_after(error: openai.APIStatusError) -> Optional[float]:
        value = error.response.headers.get("retry-after") if error.response is not None else None
        try:
            return float(value) if value else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _format_klines(klines: Sequence[Any]) -> str:
        recent: List[Any] = list(klines)[-KLINE_HISTORY:]
        return json.dumps(recent, default=str)

    def _parse_response(self, content: str) -> AdvisoryResult:
        """Parse LLM response, JSON first then ACTION/CONFIDENCE/REASON lines"""
        text = content.strip()
        if text.startswith("```"):
            text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text)

        data: Optional[Dict[str, Any]] = None
        try:
            parsed = json.loads(text)
            if isinstance(parsed, dict):
                data = parsed
        except json.JSONDecodeError:
            data = None

        if data is None:
            data = self._parse_text(text)

        action = str(data.get("action") or "").strip().upper()
        if action not in VALID_ACTIONS:
            raise LLMValidationError(f"unrecognised action {action!r}")

        try:
            confidence = float(data.get("confidence", 50))
        except (TypeError, ValueError):
            confidence = 50.0
        confidence = max(0.0, min(100.0, confidence))

        reason = str(data.get("reason") or "No reason given").strip()
        return AdvisoryResult(action=action, confidence=confidence, reason=reason, agrees=False)

    @staticmethod
    def _parse_text(text: str) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        action = re.search(r"ACTION:\s*([A-Za-z]+)", text, re.IGNORECASE)
        confidence = re.search(r"CONFIDENCE:\s*([\d.]+)", text, re.IGNORECASE)
        reason = re.search(r"REASON:\s*(.+)", text, re.IGNORECASE)

        if not action:
            raise LLMValidationError("response is neither JSON nor ACTION/CONFIDENCE/REASON text")

        data["action"] = action.group(1)
        if confidence:
            data["confidence"] = confidence.group(1)
        if reason:
            data["reason"] = reason.group(1)
        return data

    def _create_safe_result(self, error_reason: str) -> AdvisoryResult:
        """Create a neutral HOLD when the advisor fails"""
        return AdvisoryResult(action="HOLD", confidence=0, reason=error_reason, agrees=False)
