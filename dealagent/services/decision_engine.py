"""
Decision engine for buyer-side negotiation.

WHAT: Decide whether to negotiate and how to answer each seller offer
WHY: A malfunctioning model must degrade to "no deal", never to an unvalidated action
HOW: Render prompt, call LLMProvider, strict JSON + pydantic parse, safe defaults
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..agents.prompts import (
    render_offer_prompt,
    render_opportunity_prompt,
    strategy_from_preferences,
)
from ..llm.provider import LLMProvider
from ..llm.types import (
    ChatMessage,
    ProviderDisabledError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ..models.negotiation import (
    BehaviorSignal,
    NegotiationPreferences,
    NegotiationStep,
    ProductRef,
)
from ..utils.parsing import Invalid, Parsed, ParseResult, extract_json_object, parse_model
from ..utils.text import truncate
from ..utils.logger import get_logger

logger = get_logger(__name__)

PROVIDER_ERRORS = (
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderResponseError,
    ProviderDisabledError,
)

ANALYSIS_FAILED = "Failed to analyze opportunity"
OFFER_ANALYSIS_FAILED = "Failed to analyze offer"


class _LLMReply(BaseModel):
    """Replies use camelCase keys; python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OpportunityAssessment(_LLMReply):
    should_negotiate: bool = Field(strict=True)
    reasoning: str
    target_price: float | None = Field(default=None, gt=0)
    strategy: str | None = None


class NextAction(_LLMReply):
    type: Literal["price_offer", "bundle_request", "quantity_offer", "walk_away"]
    parameters: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _price_offer_needs_price(self) -> "NextAction":
        if self.type == "price_offer":
            price = self.parameters.get("price")
            if isinstance(price, bool) or not isinstance(price, (int, float)) or price <= 0:
                raise ValueError("price_offer requires a positive numeric price")
        return self

    @property
    def price(self) -> float | None:
        value = self.parameters.get("price")
        return float(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None

    @property
    def quantity(self) -> int | None:
        value = self.parameters.get("quantity")
        return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0 else None

    @property
    def message(self) -> str | None:
        value = self.parameters.get("message")
        return value if isinstance(value, str) and value.strip() else None

    @property
    def bundle_items(self) -> list[str] | None:
        value = self.parameters.get("bundleItems") or self.parameters.get("items")
        return [str(item) for item in value] if isinstance(value, list) else None


class OfferDecision(_LLMReply):
    decision: Literal["accept", "reject", "counter"]
    reasoning: str = ""
    next_action: NextAction | None = None
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("decision", mode="before")
    @classmethod
    def _normalize_decision(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "continue":
                return "counter"
        return value

    @classmethod
    def safe_default(cls, reasoning: str = OFFER_ANALYSIS_FAILED) -> "OfferDecision":
        return cls(decision="reject", reasoning=reasoning, confidence=0.0)


@dataclass
class NegotiationContext:
    """Everything the engine knows about the session it is deciding for."""
    product: ProductRef
    behavior: BehaviorSignal = field(default_factory=BehaviorSignal)
    preferences: NegotiationPreferences | None = None
    seller_capabilities: list[str] = field(default_factory=list)


class DecisionEngine:
    """
    LLM-backed accept/reject/counter decisions.

    Never raises for provider or parse problems; those collapse to
    should_negotiate=False or decision=reject with confidence 0.
    """

    def __init__(
        self,
        provider: LLMProvider | None = None,
        max_rounds: int | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ):
        from ..core.config import settings

        self._provider = provider
        self.max_rounds = max_rounds or settings.MAX_NEGOTIATION_ROUNDS
        self.temperature = temperature if temperature is not None else settings.LLM_DEFAULT_TEMPERATURE
        self.max_tokens = max_tokens or settings.LLM_DEFAULT_MAX_TOKENS
        self.model = model

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            from ..llm.provider_factory import get_provider
            self._provider = get_provider()
        return self._provider

    async def assess_opportunity(self, context: NegotiationContext) -> OpportunityAssessment:
        """
        Decide whether to negotiate at all.

        Explicit preferences short-circuit: the user already asked for a
        negotiation, so the model is not consulted.
        """
        if context.preferences is not None:
            return OpportunityAssessment(
                should_negotiate=True,
                reasoning="User has explicitly set negotiation preferences",
                target_price=context.preferences.max_price,
                strategy=strategy_from_preferences(context.preferences),
            )

        messages = render_opportunity_prompt(context.product, context.behavior, context.seller_capabilities)
        result = await self._ask(messages, OpportunityAssessment)
        if isinstance(result, Invalid):
            logger.warning(f"Opportunity analysis unusable for {context.product.id}: {result.reason}")
            return OpportunityAssessment(should_negotiate=False, reasoning=ANALYSIS_FAILED)

        assessment = result.value
        logger.info(
            f"Opportunity for {context.product.id}: negotiate={assessment.should_negotiate} "
            f"target={assessment.target_price}"
        )
        return assessment

    async def evaluate_offer(
        self,
        context: NegotiationContext,
        offer: dict[str, Any],
        round: int,
        history: list[NegotiationStep],
    ) -> OfferDecision:
        """
        Decide how to answer the seller's latest offer.

        A counter without next_action is returned unchanged; the caller
        decides what that means for the session.
        """
        messages = render_offer_prompt(
            context.product,
            context.behavior,
            context.preferences,
            offer,
            round,
            self.max_rounds,
            history,
        )
        result = await self._ask(messages, OfferDecision)
        if isinstance(result, Invalid):
            logger.warning(f"Offer evaluation unusable at round {round}: {result.reason}")
            return OfferDecision.safe_default()

        decision = result.value
        logger.info(
            f"Round {round} decision: {decision.decision} "
            f"(confidence {decision.confidence:.2f}, next={decision.next_action.type if decision.next_action else None})"
        )
        return decision

    async def health_check(self) -> bool:
        try:
            status = await self.provider.ping()
        except PROVIDER_ERRORS as e:
            logger.warning(f"Decision engine provider unavailable: {e}")
            return False
        return status.available

    async def _ask(self, messages: list[ChatMessage], model: type[_LLMReply]) -> ParseResult:
        try:
            reply = await self.provider.generate(
                messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                model=self.model,
            )
        except PROVIDER_ERRORS as e:
            return Invalid(f"provider error: {e}")

        extracted = extract_json_object(reply.text)
        if isinstance(extracted, Invalid):
            logger.debug(f"Unparseable model reply: {truncate(reply.text)}")
            return extracted
        parsed = parse_model(model, extracted.value)
        if isinstance(parsed, Parsed):
            return parsed
        logger.debug(f"Model reply failed validation ({parsed.reason}): {truncate(reply.text)}")
        return parsed
