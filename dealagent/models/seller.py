"""
Seller endpoint models.

WHAT: Discovery results and search criteria
WHY: Registry records are untrusted; business logic only sees validated models
HOW: Pydantic v2 models with bounded metadata
"""

from pydantic import BaseModel, Field

# Remote operations that earn a small ranking bonus when a seller lists them
ADVANCED_CAPABILITIES = ("getProductInfo", "checkDealStatus", "acceptDeal")


class SellerMetadata(BaseModel):
    """Reputation and logistics attributes reported by the registry."""
    rating: float = Field(default=0.0, ge=0.0, le=5.0)
    average_response_time_ms: float = Field(default=5000.0, ge=0.0)
    success_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    specialties: list[str] = Field(default_factory=list)
    supported_payments: list[str] = Field(default_factory=lambda: ["credit_card"])
    shipping_regions: list[str] = Field(default_factory=lambda: ["US"])


class SellerContact(BaseModel):
    """Contact points for a seller."""
    email: str | None = None
    website: str | None = None
    support_url: str | None = None


class SellerEndpoint(BaseModel):
    """A discovered seller and how to reach its negotiation tools."""
    seller_id: str = Field(min_length=1)
    seller_name: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    credential: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    metadata: SellerMetadata = Field(default_factory=SellerMetadata)
    contact: SellerContact = Field(default_factory=SellerContact)


class SellerSearchCriteria(BaseModel):
    """Discovery query."""
    product_id: str | None = None
    category: str | None = None
    max_price: float | None = Field(default=None, gt=0)
    min_rating: float | None = Field(default=None, ge=0.0, le=5.0)
    max_response_time_ms: float | None = Field(default=None, gt=0)
    specialty: str | None = None
    location: str | None = None

    def cache_key(self) -> str:
        """Stable key over the normalized criteria."""
        def norm(value) -> str:
            if value is None:
                return ""
            if isinstance(value, float):
                return f"{value:g}"
            return str(value).strip().lower()

        return "|".join(norm(v) for v in (
            self.product_id,
            self.category,
            self.location,
            self.specialty,
            self.min_rating,
            self.max_response_time_ms,
            self.max_price,
        ))


class SellerRegistration(BaseModel):
    """Payload for onboarding a seller with the registry."""
    seller_name: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    capabilities: list[str] = Field(default_factory=list)
    contact_email: str
    website: str | None = None
    specialties: list[str] = Field(default_factory=list)
    supported_payments: list[str] = Field(default_factory=list)
    shipping_regions: list[str] = Field(default_factory=list)
