"""
Unit tests for offer, parsing and text helpers.

WHAT: Offer normalization, savings math, JSON extraction, thinking-tag cleanup
WHY: Seller payloads and LLM replies are loosely shaped untrusted input
HOW: Pure function calls
"""

import pytest
from pydantic import BaseModel, Field

from dealagent.utils.offers import (
    coerce_offer,
    compute_savings,
    discount_percent,
    extract_price_from_text,
    offer_price,
)
from dealagent.utils.parsing import Invalid, Parsed, extract_json_object, parse_model
from dealagent.utils.text import strip_thinking, truncate


@pytest.mark.unit
class TestCoerceOffer:

    def test_plain_price(self):
        assert coerce_offer({"price": "89.5", "message": "ok"}) == {"price": 89.5, "message": "ok"}

    def test_nested_wrapper(self):
        offer = coerce_offer({"status": "negotiating", "counterOffer": {"offerPrice": 77}})
        assert offer["price"] == 77.0

    def test_alias_keys(self):
        assert coerce_offer({"finalPrice": 120})["price"] == 120.0

    def test_price_from_message(self):
        assert coerce_offer({"message": "Best I can do is $1,049.99 today"})["price"] == 1049.99

    def test_unusable_payloads(self):
        assert coerce_offer({"price": "free"}) is None
        assert coerce_offer({"price": -3}) is None
        assert coerce_offer(["not", "a", "dict"]) is None
        assert coerce_offer({"message": "no numbers here"}) is None

    @pytest.mark.parametrize("value", ["NaN", "inf", float("nan"), float("-inf"), True, False])
    def test_non_finite_and_boolean_prices_are_skipped(self, value):
        assert coerce_offer({"price": value}) is None

    def test_bad_price_falls_through_to_next_alias(self):
        assert coerce_offer({"price": "NaN", "finalPrice": 64})["price"] == 64.0

    def test_offer_price(self):
        assert offer_price({"price": 12}) == 12.0
        assert offer_price({"price": float("nan")}) is None
        assert offer_price({"price": True}) is None
        assert offer_price({"price": "12"}) is None
        assert offer_price({}) is None


@pytest.mark.unit
class TestSavings:

    def test_compute_savings_floors_at_zero(self):
        assert compute_savings(100.0, 85.0) == 15.0
        assert compute_savings(100.0, 110.0) == 0.0

    def test_discount_percent(self):
        assert discount_percent(200.0, 150.0) == 25.0
        assert discount_percent(0.0, 10.0) == 0.0

    def test_extract_price_from_text(self):
        assert extract_price_from_text("I can do 85 USD") == 85.0
        assert extract_price_from_text("price: 42.10") == 42.1
        assert extract_price_from_text("nothing") is None


class _Reply(BaseModel):
    answer: str
    score: float = Field(ge=0, le=1)


@pytest.mark.unit
class TestJsonExtraction:

    def test_fenced_block(self):
        text = 'Sure!\n```json\n{"answer": "yes", "score": 0.5}\n```'
        assert extract_json_object(text) == Parsed({"answer": "yes", "score": 0.5})

    def test_bare_object_with_prose(self):
        result = extract_json_object('Here you go: {"answer": "no", "score": 1} thanks')
        assert isinstance(result, Parsed)
        assert result.value["answer"] == "no"

    def test_no_object(self):
        assert isinstance(extract_json_object("[1, 2, 3]"), Invalid)
        assert extract_json_object("   ") == Invalid("empty response")

    def test_parse_model_reports_field(self):
        result = parse_model(_Reply, {"answer": "x", "score": 3})
        assert isinstance(result, Invalid)
        assert result.reason.startswith("score:")

    def test_parse_model_success(self):
        assert parse_model(_Reply, {"answer": "x", "score": 0}).value.answer == "x"


@pytest.mark.unit
class TestText:

    def test_strip_thinking_blocks(self):
        assert strip_thinking('<think>hmm</think>{"a": 1}') == '{"a": 1}'
        assert strip_thinking('<thinking>\nplan\n</thinking>\n{"a": 1}') == '{"a": 1}'

    def test_strip_unterminated_think(self):
        assert strip_thinking('<think>still going {"a": 1}') == '{"a": 1}'

    def test_truncate(self):
        assert truncate("short") == "short"
        assert truncate("x" * 300, limit=10) == "xxxxxxx..."
