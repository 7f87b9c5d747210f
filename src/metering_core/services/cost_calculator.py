"""
Cost estimation for raw provider usage.

Costs are advisory (not authoritative billing): malformed input degrades to a
zero cost instead of raising.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Optional, Union

from metering_core.config import MeteringConfig, metering_config

PROVIDER_LLM_INFERENCE = "llm-inference"
PROVIDER_SPEECH = "speech"
PROVIDER_TELEPHONY = "telephony"

# Vendor names used by the calling subsystems
PROVIDER_ALIASES = {
    "groq": PROVIDER_LLM_INFERENCE,
    "deepgram": PROVIDER_SPEECH,
    "twilio": PROVIDER_TELEPHONY,
}

# Platform tokens billed per second of call audio
TOKENS_PER_SECOND = Decimal("0.013")

ZERO = Decimal("0")


@dataclass(frozen=True)
class CostRates:
    """Per-provider pricing table."""

    price_per_token: Decimal = Decimal("0.0000001")
    price_per_second: Decimal = Decimal("0.0025")
    price_per_minute: Decimal = Decimal("0.0085")
    price_per_call: Decimal = Decimal("0.0075")

    @classmethod
    def from_config(cls, config: MeteringConfig) -> "CostRates":
        return cls(
            price_per_token=config.PRICE_PER_TOKEN,
            price_per_second=config.PRICE_PER_SECOND,
            price_per_minute=config.PRICE_PER_MINUTE,
            price_per_call=config.PRICE_PER_CALL,
        )


DEFAULT_COST_RATES = CostRates.from_config(metering_config)


@dataclass(frozen=True)
class ProviderUsage:
    """One raw usage event reported by a provider integration."""

    provider: str
    tokens: Any = 0
    duration: Any = 0  # seconds
    calls: Any = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProviderUsage":
        return cls(
            provider=data.get("provider") or "",
            tokens=data.get("tokens", 0),
            duration=data.get("duration", data.get("duration_seconds", 0)),
            calls=data.get("calls", 0),
        )

    @property
    def normalized_provider(self) -> str:
        name = str(self.provider or "").strip().lower()
        return PROVIDER_ALIASES.get(name, name)


def non_negative_quantity(value: Any) -> Decimal:
    """Coerce to a non-negative Decimal; anything unusable becomes 0."""
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    if not number.is_finite() or number < 0:
        return ZERO
    return number


def calculate_costs(
    usage: Union[ProviderUsage, Mapping[str, Any], None],
    rates: Optional[CostRates] = None,
) -> Decimal:
    """
    Estimate the monetary cost of a usage event.

    Exactly one provider formula applies:
    - llm-inference: tokens * price_per_token
    - speech: duration * price_per_second
    - telephony: ceil(duration / 60) * price_per_minute + calls * price_per_call
    - anything else: 0

    Args:
        usage: ProviderUsage or mapping with provider, tokens, duration, calls
        rates: Pricing table (defaults to the configured rates)

    Returns:
        Non-negative Decimal cost
    """
    if usage is None:
        return ZERO
    if not isinstance(usage, ProviderUsage):
        if not isinstance(usage, Mapping):
            return ZERO
        usage = ProviderUsage.from_mapping(usage)
    rates = rates or DEFAULT_COST_RATES

    provider = usage.normalized_provider
    if provider == PROVIDER_LLM_INFERENCE:
        return non_negative_quantity(usage.tokens) * rates.price_per_token
    if provider == PROVIDER_SPEECH:
        return non_negative_quantity(usage.duration) * rates.price_per_second
    if provider == PROVIDER_TELEPHONY:
        minutes = math.ceil(non_negative_quantity(usage.duration) / 60)
        return (
            minutes * rates.price_per_minute
            + non_negative_quantity(usage.calls) * rates.price_per_call
        )
    return ZERO


def estimate_tokens_from_duration(duration_seconds: Any) -> Decimal:
    """Platform tokens for a call of the given length, rounded to 2 places."""
    seconds = non_negative_quantity(duration_seconds)
    if seconds == 0:
        return ZERO
    return (seconds * TOKENS_PER_SECOND).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
