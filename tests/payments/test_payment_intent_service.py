import pytest
from decimal import Decimal

from application.dtos.payments import CreateCollectionRequest
from application.services.payment_intent_service import PaymentIntentService, collection_idempotency_key
from domain.commerce.entity import CatalogVariant, DraftLine, DraftOrderRef
from domain.common.exceptions import DomainValidationException, PriceLookupFailed
from domain.payment.entity import ArtifactKind


def _direct(lines, **customer):
    return CreateCollectionRequest(
        customer={"crm_customer_id": "crm_42", **customer},
        lines=lines,
    )


@pytest.fixture
def service(processor, commerce, settings):
    commerce.variants["111"] = CatalogVariant("111", "Widget", None, Decimal("10.00"))
    commerce.variants["222"] = CatalogVariant("222", "Gadget", "Blue", Decimal("9.99"))
    return PaymentIntentService(processor=processor, commerce=commerce, settings=settings)


@pytest.mark.asyncio
async def test_direct_session_prices_lines_inclusive_of_vat(service, processor):
    result = await service.create_collection(
        ArtifactKind.SESSION, _direct([{"item_id": "111", "quantity": 2}], commerce_customer_id="555")
    )

    req = processor.collections[0]
    assert req.currency == "gbp"
    assert [(li.unit_amount, li.quantity) for li in req.lines] == [(1200, 2)]
    assert req.lines[0].metadata == {"variant_id": "111"}
    assert req.metadata == {"crm_customer_id": "crm_42", "source": "crm", "commerce_customer_id": "555"}
    assert req.success_url == "https://crm.example.test/customers/crm_42?paid=1&session_id={CHECKOUT_SESSION_ID}"
    assert req.cancel_url == "https://crm.example.test/orders/new?customerId=crm_42"

    assert result.amount_total_minor == 2400
    assert result.amount_total == Decimal("24.00")
    assert result.mode == "direct"
    assert result.url.startswith("https://pay.example.test/")


@pytest.mark.asyncio
async def test_variant_title_and_rounding(service, processor):
    await service.create_collection(ArtifactKind.LINK, _direct([{"item_id": "222", "quantity": 1}]))
    line = processor.collections[0].lines[0]
    assert line.description == "Gadget - Blue"
    # 9.99 * 1.2 = 11.988
    assert line.unit_amount == 1199


@pytest.mark.asyncio
async def test_unknown_item_fails_without_creating_anything(service, processor):
    with pytest.raises(PriceLookupFailed) as exc:
        await service.create_collection(
            ArtifactKind.SESSION, _direct([{"item_id": "111", "quantity": 1}, {"item_id": "999", "quantity": 1}])
        )
    assert exc.value.details == {"item_ids": ["999"]}
    assert processor.collections == []


@pytest.mark.asyncio
async def test_draft_backed_link_carries_back_reference(service, processor, commerce):
    commerce.drafts["d1"] = DraftOrderRef(
        draft_id="d1",
        line_items=[DraftLine(variant_id="111", title="Widget", quantity=3, unit_price_ex_tax=Decimal("5.00"))],
    )
    req = CreateCollectionRequest(customer={"crm_customer_id": "crm_42"}, draft_id="d1")
    result = await service.create_collection(ArtifactKind.LINK, req)

    sent = processor.collections[0]
    assert sent.metadata["draft_order_id"] == "d1"
    assert sent.lines[0].metadata == {"draft_order_id": "d1", "variant_id": "111"}
    assert sent.lines[0].unit_amount == 600
    assert result.amount_total_minor == 1800
    assert result.mode == "draft"
    # catalog is not consulted for drafts
    assert commerce.calls_to("fetch_variants") == 0


@pytest.mark.asyncio
async def test_completed_draft_is_rejected(service, processor, commerce):
    commerce.drafts["d2"] = DraftOrderRef(draft_id="d2", status="completed", order_id="900")
    req = CreateCollectionRequest(customer={"crm_customer_id": "crm_42"}, draft_id="d2")
    with pytest.raises(DomainValidationException):
        await service.create_collection(ArtifactKind.SESSION, req)
    assert processor.collections == []


def test_cart_key_is_bound_to_the_request_and_order_independent():
    a = _direct([{"item_id": "111", "quantity": 1}, {"item_id": "222", "quantity": 2}])
    b = _direct([{"item_id": "222", "quantity": 2}, {"item_id": "111", "quantity": 1}])
    key = collection_idempotency_key(ArtifactKind.SESSION, a, "req-1")
    assert len(key) == 64
    assert key == collection_idempotency_key(ArtifactKind.SESSION, b, "req-1")
    assert key != collection_idempotency_key(ArtifactKind.LINK, a, "req-1")
    assert key != collection_idempotency_key(ArtifactKind.SESSION, a, "req-2")
    # no request reference: every call is a new purchase
    assert collection_idempotency_key(ArtifactKind.SESSION, a) != collection_idempotency_key(ArtifactKind.SESSION, a)


def test_draft_key_is_stable_per_draft():
    req = CreateCollectionRequest(customer={"crm_customer_id": "crm_42"}, draft_id="d1")
    assert collection_idempotency_key(ArtifactKind.LINK, req, "req-1") == collection_idempotency_key(
        ArtifactKind.LINK, req, "req-2"
    )
    explicit = CreateCollectionRequest(customer={"crm_customer_id": "crm_42"}, draft_id="d1", idempotency_key="k-1")
    assert collection_idempotency_key(ArtifactKind.LINK, explicit) == "k-1"


@pytest.mark.asyncio
async def test_buying_the_same_cart_twice_creates_two_links(service, processor):
    cart = [{"item_id": "111", "quantity": 1}]

    first = await service.create_collection(ArtifactKind.LINK, _direct(cart))
    second = await service.create_collection(ArtifactKind.LINK, _direct(cart))

    assert first.artifact_id != second.artifact_id
    assert len(processor.collections) == 2


@pytest.mark.asyncio
async def test_retried_request_replays_the_same_link(service, processor):
    cart = [{"item_id": "111", "quantity": 1}]

    first = await service.create_collection(ArtifactKind.LINK, _direct(cart), request_ref="req-9")
    retried = await service.create_collection(ArtifactKind.LINK, _direct(cart), request_ref="req-9")

    assert retried.artifact_id == first.artifact_id
    assert len(processor.collections) == 1


def test_request_needs_exactly_one_source():
    with pytest.raises(ValueError):
        CreateCollectionRequest(customer={"crm_customer_id": "c"})
    with pytest.raises(ValueError):
        CreateCollectionRequest(customer={"crm_customer_id": "c"}, draft_id="d1", lines=[{"item_id": "1", "quantity": 1}])
