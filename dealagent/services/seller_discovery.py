"""
Seller discovery against the external registry.

WHAT: Find, validate, filter, score and cache candidate sellers
WHY: The orchestrator needs a ranked best-effort seller list for each product
HOW: httpx registry search with BackoffPolicy retries, TTL cache, demo-seller fallback
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Tuple, Union

import httpx

from ..core.config import settings
from ..models.seller import (
    ADVANCED_CAPABILITIES,
    SellerContact,
    SellerEndpoint,
    SellerMetadata,
    SellerRegistration,
    SellerSearchCriteria,
)
from ..utils.backoff import BackoffPolicy
from ..utils.parsing import Invalid, Parsed, ParseResult, parse_model
from ..utils.logger import get_logger

logger = get_logger(__name__)

USER_AGENT = f"DealAgent/{settings.APP_VERSION}"
SEARCH_PATH = "/api/v1/discovery/sellers/search"
HEALTH_PATH = "/api/health"
REGISTER_PATH = "/api/sellers/register"
MAX_CACHE_ENTRIES = 50

# Score weights
RATING_WEIGHT = 0.4
SUCCESS_RATE_WEIGHT = 0.3
RESPONSE_TIME_WEIGHT = 0.2
SPECIALTY_BONUS = 0.1
CAPABILITY_BONUS = 0.02
RESPONSE_TIME_SCALE_MS = 10000.0


# ========== Result variants ==========

@dataclass
class SellersFound:
    """At least one seller matched."""
    sellers: List[SellerEndpoint]
    source: Literal["registry", "cache", "fallback"] = "registry"


@dataclass
class NoSellersFound:
    """Registry answered, but nothing matched the criteria."""
    reason: str = "No sellers matched the search criteria"


@dataclass
class DiscoveryUnavailable:
    """Registry unreachable after all retries and no usable fallback."""
    cause: str


DiscoveryResult = Union[SellersFound, NoSellersFound, DiscoveryUnavailable]


@dataclass
class RegistrationResult:
    """Outcome of a seller onboarding request."""
    success: bool
    seller_id: str | None = None
    error: str | None = None


@dataclass
class _CacheEntry:
    sellers: List[SellerEndpoint]
    stored_at: float = field(default_factory=time.monotonic)


class _RegistryError(Exception):
    """One failed registry attempt (retried by the caller)."""


# ========== Built-in demo sellers ==========

DEMO_SELLERS: List[SellerEndpoint] = [
    SellerEndpoint(
        seller_id="demo-seller-001",
        seller_name="Demo Electronics Store",
        endpoint="https://demo-seller.example.com/mcp",
        capabilities=["initiateNegotiation", "makeOffer", "getProductInfo", "acceptDeal"],
        metadata=SellerMetadata(
            rating=4.2,
            average_response_time_ms=2000,
            success_rate=0.75,
            specialties=["electronics", "computers"],
            supported_payments=["credit_card", "paypal"],
            shipping_regions=["US", "CA"],
        ),
        contact=SellerContact(
            email="support@demo-seller.example.com",
            website="https://demo-seller.example.com",
        ),
    ),
    SellerEndpoint(
        seller_id="demo-seller-002",
        seller_name="Budget Deals Outlet",
        endpoint="https://budget-deals.example.com/mcp",
        capabilities=["initiateNegotiation", "makeOffer", "acceptDeal"],
        metadata=SellerMetadata(
            rating=3.8,
            average_response_time_ms=3500,
            success_rate=0.65,
            specialties=["home_garden", "electronics"],
            supported_payments=["credit_card"],
            shipping_regions=["US"],
        ),
        contact=SellerContact(
            email="deals@budget-deals.example.com",
            website="https://budget-deals.example.com",
        ),
    ),
]


# ========== Pure helpers ==========

CATEGORY_MAP = {
    "Cell Phones": "electronics",
    "Electronics": "electronics",
    "Computers": "computers",
    "Home": "home",
    "Books": "books",
    "Clothing": "clothing",
    "Sports": "sports",
}


def simplify_category(category: str | None) -> str | None:
    """
    Map a store breadcrumb ("Cell Phones & Accessories > Cases") to a registry category.

    Returns None for no category and "general" when nothing matches.
    """
    if not category:
        return None
    for key, value in CATEGORY_MAP.items():
        if key in category:
            return value
    return "general"


def parse_seller_record(record: Any) -> ParseResult[SellerEndpoint]:
    """
    Validate and normalize one registry record.

    Required: seller_id, seller_name, mcp_connection.endpoint_url, capabilities list.
    """
    if not isinstance(record, dict):
        return Invalid("record is not an object")

    connection = record.get("mcp_connection")
    if not isinstance(connection, dict):
        connection = {}
    capabilities = record.get("capabilities")

    if not record.get("seller_id"):
        return Invalid("missing seller_id")
    if not record.get("seller_name"):
        return Invalid("missing seller_name")
    if not connection.get("endpoint_url"):
        return Invalid("missing mcp_connection.endpoint_url")
    if not isinstance(capabilities, list):
        return Invalid("capabilities is not a list")

    metadata = record.get("metadata") if isinstance(record.get("metadata"), dict) else {}
    response_minutes = record.get("response_time_minutes")
    response_ms = (
        float(response_minutes) * 60 * 1000
        if isinstance(response_minutes, (int, float)) and response_minutes > 0
        else 5000.0
    )

    return parse_model(SellerEndpoint, {
        "seller_id": str(record["seller_id"]),
        "seller_name": str(record["seller_name"]),
        "endpoint": str(connection["endpoint_url"]),
        "credential": connection.get("api_key"),
        "capabilities": [str(c) for c in capabilities],
        "metadata": {
            "rating": record.get("rating") or 0.0,
            "average_response_time_ms": response_ms,
            "success_rate": record.get("success_rate") or 0.5,
            "specialties": record.get("specialties") or [],
            "supported_payments": metadata.get("supportedPayments") or ["credit_card"],
            "shipping_regions": metadata.get("shippingRegions") or ["US"],
        },
        "contact": {
            "email": record.get("contact_email"),
            "website": record.get("website_url"),
            "support_url": record.get("support_url"),
        },
    })


def filter_sellers(sellers: List[SellerEndpoint], criteria: SellerSearchCriteria) -> List[SellerEndpoint]:
    """
    Apply rating floor, response-time ceiling and specialty match.

    Capabilities are not filtered here; the seller's real tool list is
    discovered when the protocol client connects.
    """
    selected = []
    for seller in sellers:
        meta = seller.metadata
        if criteria.min_rating is not None and meta.rating < criteria.min_rating:
            logger.debug(f"Skipped {seller.seller_name}: rating {meta.rating} < {criteria.min_rating}")
            continue
        if criteria.max_response_time_ms is not None and meta.average_response_time_ms > criteria.max_response_time_ms:
            logger.debug(f"Skipped {seller.seller_name}: response time {meta.average_response_time_ms}ms")
            continue
        if criteria.specialty and criteria.specialty not in meta.specialties:
            logger.debug(f"Skipped {seller.seller_name}: no specialty {criteria.specialty}")
            continue
        selected.append(seller)
    return selected


def score_seller(seller: SellerEndpoint, criteria: SellerSearchCriteria) -> float:
    """
    Composite ranking score.

    Scoring Breakdown:
    - Rating (0.4 per star)
    - Success rate (0.3)
    - Response time (0.2): 1 - avg_ms/10000, floored at 0
    - Specialty match (0.1)
    - 0.02 per advanced capability listed
    """
    meta = seller.metadata
    score = meta.rating * RATING_WEIGHT
    score += meta.success_rate * SUCCESS_RATE_WEIGHT
    score += max(0.0, 1 - meta.average_response_time_ms / RESPONSE_TIME_SCALE_MS) * RESPONSE_TIME_WEIGHT
    if criteria.specialty and criteria.specialty in meta.specialties:
        score += SPECIALTY_BONUS
    score += sum(1 for cap in ADVANCED_CAPABILITIES if cap in seller.capabilities) * CAPABILITY_BONUS
    return score


def rank_sellers(sellers: List[SellerEndpoint], criteria: SellerSearchCriteria) -> List[SellerEndpoint]:
    """Stable sort, highest score first."""
    return sorted(sellers, key=lambda s: score_seller(s, criteria), reverse=True)


# ========== Client ==========

class SellerDiscoveryClient:
    """Registry client with caching, retries and a demo-seller fallback."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        backoff: BackoffPolicy | None = None,
        cache_ttl_seconds: float | None = None,
        use_fallback_sellers: bool | None = None,
        fallback_sellers: List[SellerEndpoint] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.DISCOVERY_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.DISCOVERY_API_KEY
        self.timeout = timeout if timeout is not None else settings.DISCOVERY_TIMEOUT
        self.backoff = backoff or BackoffPolicy(
            max_attempts=settings.DISCOVERY_MAX_ATTEMPTS,
            base_delay=settings.DISCOVERY_BACKOFF_BASE,
            max_delay=settings.DISCOVERY_BACKOFF_CAP,
        )
        self.cache_ttl = cache_ttl_seconds if cache_ttl_seconds is not None else settings.DISCOVERY_CACHE_TTL_SECONDS
        self.use_fallback_sellers = (
            use_fallback_sellers if use_fallback_sellers is not None else settings.DISCOVERY_USE_FALLBACK_SELLERS
        )
        self.fallback_sellers = fallback_sellers if fallback_sellers is not None else DEMO_SELLERS

        self._cache: Dict[str, _CacheEntry] = {}
        self._hits = 0
        self._misses = 0

        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers={"User-Agent": USER_AGENT},
        )

        logger.info(f"Discovery client initialized (base_url={self.base_url}, api_key={'set' if self.api_key else 'none'})")

    async def find_sellers(self, criteria: SellerSearchCriteria) -> DiscoveryResult:
        """
        Search the registry for sellers matching `criteria`.

        Returns:
            SellersFound (registry, cache or fallback source),
            NoSellersFound when the registry had no match,
            DiscoveryUnavailable when the registry and fallback both failed
        """
        key = criteria.cache_key()
        cached = self._get_cached(key)
        if cached is not None:
            logger.info(f"Returning {len(cached)} cached sellers")
            return SellersFound(sellers=list(cached), source="cache")

        try:
            raw = await self._search_with_retries(criteria)
        except _RegistryError as e:
            logger.warning(f"Seller discovery failed after {self.backoff.max_attempts} attempts: {e}")
            return self._fallback(criteria, str(e))

        ranked = rank_sellers(filter_sellers(raw, criteria), criteria)
        logger.info(f"Registry returned {len(raw)} valid sellers, {len(ranked)} after filtering")

        if not ranked:
            return NoSellersFound()

        self._set_cached(key, ranked)
        return SellersFound(sellers=ranked, source="registry")

    async def _search_with_retries(self, criteria: SellerSearchCriteria) -> List[SellerEndpoint]:
        params = self._search_params(criteria)
        last_error = "no attempts made"

        for attempt in self.backoff.attempts():
            try:
                logger.debug(f"Registry search attempt {attempt}/{self.backoff.max_attempts}: {params}")
                return await self._search_once(params)
            except _RegistryError as e:
                last_error = str(e)
                logger.warning(f"Registry attempt {attempt}/{self.backoff.max_attempts} failed: {e}")
                if self.backoff.should_retry(attempt):
                    await self.backoff.wait(attempt)

        raise _RegistryError(last_error)

    async def _search_once(self, params: List[Tuple[str, str]]) -> List[SellerEndpoint]:
        try:
            response = await self.client.get(
                f"{self.base_url}{SEARCH_PATH}",
                params=params,
                headers=self._auth_headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise _RegistryError(f"Registry request timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise _RegistryError(f"HTTP {e.response.status_code} from registry") from e
        except httpx.HTTPError as e:
            raise _RegistryError(f"Registry unreachable: {e}") from e
        except ValueError as e:
            raise _RegistryError("Registry returned a non-JSON body") from e

        records = data.get("sellers") if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise _RegistryError("Invalid response format: missing sellers array")

        sellers = []
        for record in records:
            parsed = parse_seller_record(record)
            if isinstance(parsed, Parsed):
                sellers.append(parsed.value)
            else:
                seller_id = record.get("seller_id") if isinstance(record, dict) else None
                logger.warning(f"Dropped invalid seller record {seller_id!r}: {parsed.reason}")
        return sellers

    def _search_params(self, criteria: SellerSearchCriteria) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []
        if criteria.category:
            params.append(("category", criteria.category))
        if criteria.min_rating is not None:
            params.append(("min_rating", str(criteria.min_rating)))
        if criteria.max_response_time_ms is not None:
            params.append(("max_response_time", str(criteria.max_response_time_ms)))
        if criteria.specialty:
            params.append(("specialty_tags", criteria.specialty))
        if criteria.max_price is not None:
            params.append(("max_price", f"{criteria.max_price:.2f}"))
        params.extend([("limit", "10"), ("sort_by", "rating"), ("sort_order", "desc")])
        return params

    def _fallback(self, criteria: SellerSearchCriteria, cause: str) -> DiscoveryResult:
        if not self.use_fallback_sellers:
            return DiscoveryUnavailable(cause=cause)

        ranked = rank_sellers(filter_sellers(list(self.fallback_sellers), criteria), criteria)
        if not ranked:
            return DiscoveryUnavailable(cause=f"{cause}; no fallback seller matched")

        logger.info(f"Using {len(ranked)} fallback demo sellers")
        return SellersFound(sellers=ranked, source="fallback")

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    # ========== Cache ==========

    def _get_cached(self, key: str) -> List[SellerEndpoint] | None:
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None
        if time.monotonic() - entry.stored_at > self.cache_ttl:
            del self._cache[key]
            self._misses += 1
            return None
        self._hits += 1
        return entry.sellers

    def _set_cached(self, key: str, sellers: List[SellerEndpoint]) -> None:
        self._cache[key] = _CacheEntry(sellers=list(sellers))
        if len(self._cache) > MAX_CACHE_ENTRIES:
            self._evict_expired()

    def _evict_expired(self) -> None:
        now = time.monotonic()
        for key in [k for k, e in self._cache.items() if now - e.stored_at > self.cache_ttl]:
            del self._cache[key]

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Discovery cache cleared")

    def cache_stats(self) -> Dict[str, float]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": (self._hits / lookups) if lookups else 0.0,
        }

    # ========== Registry extras ==========

    async def health_check(self) -> bool:
        """True when the registry health endpoint answers 2xx."""
        try:
            response = await self.client.get(f"{self.base_url}{HEALTH_PATH}", timeout=5.0)
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"Discovery service health check failed: {e}")
            return False

    async def register_seller(self, registration: SellerRegistration) -> RegistrationResult:
        """Onboard a seller with the registry."""
        payload = {
            "sellerName": registration.seller_name,
            "mcpEndpoint": registration.endpoint,
            "capabilities": registration.capabilities,
            "contact": {"email": registration.contact_email, "website": registration.website},
            "metadata": {
                "specialties": registration.specialties,
                "supportedPayments": registration.supported_payments,
                "shippingRegions": registration.shipping_regions,
            },
        }
        try:
            response = await self.client.post(
                f"{self.base_url}{REGISTER_PATH}",
                json=payload,
                headers=self._auth_headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"Seller registration failed: {e}")
            return RegistrationResult(success=False, error=str(e))

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_success:
            logger.info(f"Seller registered: {body.get('sellerId')}")
            return RegistrationResult(success=True, seller_id=body.get("sellerId"))
        return RegistrationResult(success=False, error=body.get("error") or f"HTTP {response.status_code}")

    async def close(self):
        await self.client.aclose()
