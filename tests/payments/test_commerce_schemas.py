from decimal import Decimal

from domain.commerce.entity import FinancialStatus
from infrastructure.external.commerce.schemas import ShopifyDraftOrder, ShopifyOrder, legacy_id, parse_money, to_gid


def test_order_to_domain_reads_shipping_from_money_set():
    order = ShopifyOrder.model_validate({
        "id": 1001,
        "name": "#1001",
        "financial_status": "partially_refunded",
        "currency": "gbp",
        "total_price": "29.99",
        "total_tax": "4.00",
        "total_shipping_price_set": {"shop_money": {"amount": "5.99", "currency_code": "GBP"}},
        "shipping_lines": [{"price": "1.00"}],
        "line_items": [{"id": 1, "quantity": 2, "price": "10.00", "variant_id": 111, "title": "Widget"}],
        "customer": {"id": 42},
        "note_attributes": [{"name": "Stripe Checkout", "value": "cs_test_1"}],
        "tags": "crm,  crm-pay-abc ,",
    }).to_domain()

    assert order.currency == "GBP"
    assert order.financial_status == FinancialStatus.PARTIALLY_REFUNDED
    assert order.total_shipping == Decimal("5.99")
    assert order.net_ex_tax_total == Decimal("20.00")
    assert order.customer_id == "42"
    assert order.line_items[0].variant_id == "111"
    assert order.note_attributes == {"Stripe Checkout": "cs_test_1"}
    assert order.tags == ["crm", "crm-pay-abc"]


def test_order_shipping_falls_back_to_shipping_lines_and_status_defaults():
    order = ShopifyOrder.model_validate({
        "id": "7",
        "financial_status": "authorized",
        "shipping_lines": [{"price": "3.50"}],
    }).to_domain("EUR")

    assert order.total_shipping == Decimal("3.50")
    assert order.financial_status == FinancialStatus.PENDING
    assert order.currency == "EUR"
    assert order.total_price is None
    assert order.net_ex_tax_total == Decimal("0.00")


def test_unknown_financial_status_is_pending():
    order = ShopifyOrder.model_validate({"id": "7", "financial_status": "something_new"}).to_domain()
    assert order.financial_status == FinancialStatus.PENDING


def test_draft_to_domain():
    draft = ShopifyDraftOrder.model_validate({
        "id": 77,
        "status": "completed",
        "order_id": 1001,
        "line_items": [{"variant_id": 111, "title": "Widget", "variant_title": "Large", "quantity": 2, "price": "10"}],
        "payment_terms": {"payment_terms_name": "Net 30"},
    }).to_domain()

    assert draft.is_completed
    assert draft.order_id == "1001"
    assert draft.payment_terms == "Net 30"
    assert draft.line_items[0].unit_price_ex_tax == Decimal("10.00")
    assert draft.line_items[0].display_name == "Widget - Large"


def test_id_helpers():
    assert legacy_id("gid://shopify/Order/1001") == "1001"
    assert legacy_id(1001) == "1001"
    assert to_gid("ProductVariant", "gid://shopify/ProductVariant/5") == "gid://shopify/ProductVariant/5"
    assert parse_money("NaN") is None
    assert parse_money("") is None
    assert parse_money("1.005") == Decimal("1.01")
