from decimal import Decimal

import pytest

from application.services.refund_service import RefundService, find_session_id, refund_idempotency_key
from domain.commerce.entity import CommerceOrder, FinancialStatus, OrderLineItem, OrderTransaction
from domain.common.exceptions import (
    OriginalPaymentNotFound,
    PartialExecutionFailure,
    RefundQuantityExceeded,
    UpstreamTransientError,
    ZeroAmountRefund,
)
from domain.refund.entity import RefundLine, RefundRequest
from domain.payment.entity import ArtifactLine


def _order(order_id: str = "5001", **kwargs) -> CommerceOrder:
    return CommerceOrder(
        id=order_id,
        financial_status=FinancialStatus.PAID,
        currency="GBP",
        line_items=[
            OrderLineItem(id="L1", quantity=2, unit_price=Decimal("10.00"), variant_id="111", title="Widget"),
            OrderLineItem(id="L2", quantity=1, unit_price=Decimal("5.00"), variant_id="222", title="Gadget"),
        ],
        total_tax=Decimal("5.00"),
        total_price=Decimal("30.00"),
        **kwargs,
    )


def _sale(authorization="pi_123", txn_id="T1") -> OrderTransaction:
    return OrderTransaction(
        id=txn_id, kind="sale", status="success", amount=Decimal("30.00"), currency="GBP",
        authorization=authorization, gateway="stripe",
    )


def _request(*lines, reason=None) -> RefundRequest:
    return RefundRequest(order_id="5001", lines=tuple(RefundLine(i, q) for i, q in lines), reason=reason)


@pytest.fixture
def service(processor, commerce, settings) -> RefundService:
    return RefundService(processor=processor, commerce=commerce, settings=settings)


@pytest.mark.asyncio
async def test_preview_uses_commerce_calculation(service, commerce):
    commerce.add_order(_order(), [_sale()])

    preview = await service.preview(_request(("L1", 1)))

    assert preview.amount == Decimal("12.00")
    assert preview.per_line == {"L1": Decimal("12.00")}
    assert commerce.refunds == []


@pytest.mark.asyncio
async def test_execute_refunds_the_same_amount_on_both_systems(service, processor, commerce):
    commerce.add_order(_order(), [_sale()])

    confirmation = await service.execute(_request(("L1", 1), ("L2", 1), reason="Damaged in transit"))

    assert confirmation.amount == Decimal("18.00")
    (proc_req,) = processor.refunds
    assert proc_req.amount == 1800
    assert proc_req.payment_intent_id == "pi_123"
    assert proc_req.metadata["commerce_order_id"] == "5001"
    assert proc_req.metadata["reason"] == "Damaged in transit"
    ((order_id, lines, txn),) = commerce.refunds
    assert order_id == "5001"
    assert txn.amount == Decimal("18.00")
    assert txn.kind == "refund"
    assert txn.parent_id == "T1"
    assert txn.authorization == confirmation.processor_refund_id
    assert confirmation.commerce_refund_id == "rf_1"


@pytest.mark.asyncio
async def test_quantity_exceeded_against_mirror_makes_no_external_calls(processor, commerce, settings, fake_mirror):
    fake_mirror.orders["5001"] = _order()
    service = RefundService(processor=processor, commerce=commerce, settings=settings, mirror=fake_mirror)

    with pytest.raises(RefundQuantityExceeded):
        await service.execute(_request(("L1", 3)))
    with pytest.raises(RefundQuantityExceeded):
        await service.execute(_request(("UNKNOWN", 1)))

    assert commerce.calls == []
    assert processor.calls == []


@pytest.mark.asyncio
async def test_zero_amount_refund_is_rejected_before_moving_money(service, processor, commerce):
    commerce.add_order(_order(), [_sale()])
    commerce.refund_amount = Decimal("0.00")

    with pytest.raises(ZeroAmountRefund):
        await service.execute(_request(("L1", 1)))
    assert processor.refunds == []
    assert commerce.refunds == []


@pytest.mark.asyncio
async def test_missing_sale_is_original_payment_not_found(service, processor, commerce):
    commerce.add_order(_order(), [])

    with pytest.raises(OriginalPaymentNotFound):
        await service.execute(_request(("L1", 1)))
    assert processor.refunds == []


@pytest.mark.asyncio
async def test_payment_intent_recovered_from_session_in_order_note(service, commerce, make_session):
    make_session("cs_live_Abc123", lines=[ArtifactLine(description="Widget", quantity=2, amount_total=2400)],
                 payment_intent_id="pi_from_session")
    commerce.add_order(_order(note="Paid via Stripe Checkout cs_live_Abc123"), [_sale(authorization="ch_legacy")])

    original = await service.resolve_original_payment("5001")

    assert original.payment_intent_id == "pi_from_session"
    assert original.parent_transaction_id == "T1"


@pytest.mark.asyncio
async def test_no_payment_intent_anywhere(service, commerce):
    commerce.add_order(_order(note="manual"), [_sale(authorization=None)])

    with pytest.raises(OriginalPaymentNotFound):
        await service.resolve_original_payment("5001")


@pytest.mark.asyncio
async def test_last_successful_sale_is_the_parent(service, commerce):
    failed = OrderTransaction(id="T0", kind="sale", status="failure", amount=Decimal("30.00"), authorization="pi_old")
    commerce.add_order(_order(), [failed, _sale(txn_id="T1"), _sale(authorization="pi_999", txn_id="T2")])

    original = await service.resolve_original_payment("5001")

    assert original.parent_transaction_id == "T2"
    assert original.payment_intent_id == "pi_999"


@pytest.mark.asyncio
async def test_commerce_failure_after_processor_refund_is_partial_execution(service, processor, commerce):
    commerce.add_order(_order(), [_sale()])
    commerce.refund_error = UpstreamTransientError("shopify 503", provider="shopify", status_code=503)

    with pytest.raises(PartialExecutionFailure) as ei:
        await service.execute(_request(("L1", 1)))

    assert len(processor.refunds) == 1
    assert ei.value.details["processor_refund_id"] == "re_1"
    assert ei.value.details["amount"] == "12.00"
    assert ei.value.details["order_id"] == "5001"


@pytest.mark.asyncio
async def test_processor_failure_moves_no_commerce_money(service, processor, commerce):
    commerce.add_order(_order(), [_sale()])
    processor.refund_error = UpstreamTransientError("stripe 503", provider="stripe", status_code=503)

    with pytest.raises(UpstreamTransientError):
        await service.execute(_request(("L1", 1)))
    assert commerce.refunds == []


def test_idempotency_key_is_order_insensitive_and_amount_bound():
    a = refund_idempotency_key(_request(("L1", 1), ("L2", 1)), 1800)
    b = refund_idempotency_key(_request(("L2", 1), ("L1", 1)), 1800)
    c = refund_idempotency_key(_request(("L1", 1), ("L2", 1)), 1700)
    assert a == b
    assert a != c


def test_idempotency_key_changes_once_a_refund_is_recorded():
    before = refund_idempotency_key(_request(("L1", 1)), 1200)
    after = refund_idempotency_key(_request(("L1", 1)), 1200, ["txn_1"])
    assert before != after
    assert after == refund_idempotency_key(_request(("L1", 1)), 1200, ["txn_1"])


def test_client_idempotency_key_is_scoped_to_the_order():
    req = RefundRequest(order_id="5001", lines=(RefundLine("L1", 1),), idempotency_key="ops-77")
    other = RefundRequest(order_id="5002", lines=(RefundLine("L1", 1),), idempotency_key="ops-77")
    assert refund_idempotency_key(req, 1200, ["txn_1"]) == refund_idempotency_key(req, 1200)
    assert refund_idempotency_key(req, 1200) != refund_idempotency_key(other, 1200)


@pytest.mark.asyncio
async def test_second_refund_of_the_same_line_moves_money_on_both_systems(service, processor, commerce):
    commerce.add_order(_order(), [_sale()])

    first = await service.execute(_request(("L1", 1)))
    second = await service.execute(_request(("L1", 1)))

    assert [r.amount for r in processor.refunds] == [1200, 1200]
    assert first.processor_refund_id != second.processor_refund_id
    assert [txn.authorization for _, _, txn in commerce.refunds] == ["re_1", "re_2"]


@pytest.mark.asyncio
async def test_retry_after_partial_execution_completes_the_commerce_leg(service, processor, commerce):
    commerce.add_order(_order(), [_sale()])
    commerce.refund_error = UpstreamTransientError("shopify 503", provider="shopify", status_code=503)
    with pytest.raises(PartialExecutionFailure):
        await service.execute(_request(("L1", 1)))

    commerce.refund_error = None
    confirmation = await service.execute(_request(("L1", 1)))

    # the processor replays the first refund instead of paying out again
    assert len(processor.refunds) == 1
    assert confirmation.processor_refund_id == "re_1"
    ((_, _, txn),) = commerce.refunds
    assert txn.authorization == "re_1"


@pytest.mark.asyncio
async def test_repeated_client_key_does_not_refund_commerce_twice(service, processor, commerce):
    commerce.add_order(_order(), [_sale()])
    req = RefundRequest(order_id="5001", lines=(RefundLine("L1", 1),), idempotency_key="ops-77")

    first = await service.execute(req)
    again = await service.execute(req)

    assert len(processor.refunds) == 1
    assert len(commerce.refunds) == 1
    assert again.processor_refund_id == first.processor_refund_id == "re_1"
    assert again.amount == Decimal("12.00")
    assert again.commerce_refund_id.startswith("txn_")


def test_find_session_id_checks_note_then_attributes():
    order = _order(note=None, note_attributes={"Stripe Checkout": "cs_test_Xyz9"})
    assert find_session_id(order) == "cs_test_Xyz9"
    assert find_session_id(_order(note="cs_test_first", note_attributes={"a": "cs_test_second"})) == "cs_test_first"
    assert find_session_id(_order()) is None
