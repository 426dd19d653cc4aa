from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from application.services.crm_mirror_service import CrmMirrorService
from application.services.refund_service import RefundService
from domain.commerce.entity import CommerceOrder, FinancialStatus, OrderLineItem
from domain.common.exceptions import UpstreamTransientError
from domain.refund.entity import RefundLine, RefundRequest


def _order(status=FinancialStatus.PAID, lines=None, **kwargs) -> CommerceOrder:
    return CommerceOrder(
        id="1001",
        name="#1001",
        financial_status=status,
        currency="GBP",
        line_items=lines if lines is not None else [
            OrderLineItem(id="L1", quantity=2, unit_price=Decimal("10.00"), variant_id="111", title="Widget"),
        ],
        total_tax=Decimal("4.00"),
        total_shipping=Decimal("5.00"),
        total_price=Decimal("29.00"),
        subtotal_price=Decimal("20.00"),
        **kwargs,
    )


@pytest.fixture
def mirror(uow_factory, commerce) -> CrmMirrorService:
    return CrmMirrorService(uow_factory=uow_factory, commerce=commerce)


@pytest.mark.asyncio
async def test_upsert_then_read_back(mirror):
    await mirror.upsert(_order(note="Stripe Checkout cs_test_1", tags=["crm"], note_attributes={"Source": "crm"}))

    stored = await mirror.get_order("1001")

    assert stored is not None
    assert stored.financial_status == FinancialStatus.PAID
    assert stored.net_ex_tax_total == Decimal("20.00")
    assert stored.total_shipping == Decimal("5.00")
    assert stored.line_items[0].unit_price == Decimal("10.00")
    assert stored.tags == ["crm"]
    assert stored.note_attributes == {"Source": "crm"}


@pytest.mark.asyncio
async def test_missing_order_reads_as_none(mirror):
    assert await mirror.get_order("nope") is None


@pytest.mark.asyncio
async def test_financial_status_never_regresses(mirror):
    await mirror.upsert(_order(status=FinancialStatus.PARTIALLY_REFUNDED))
    stored = await mirror.upsert(_order(status=FinancialStatus.PENDING, note="late snapshot"))

    assert stored.financial_status == FinancialStatus.PARTIALLY_REFUNDED
    # the rest of the snapshot still applies
    assert stored.note == "late snapshot"

    advanced = await mirror.upsert(_order(status=FinancialStatus.REFUNDED))
    assert advanced.financial_status == FinancialStatus.REFUNDED


@pytest.mark.asyncio
async def test_line_items_are_updated_in_place(mirror):
    await mirror.upsert(_order())
    await mirror.upsert(_order(lines=[
        OrderLineItem(id="L1", quantity=1, unit_price=Decimal("10.00"), variant_id="111"),
        OrderLineItem(id="L2", quantity=3, unit_price=Decimal("2.50"), variant_id="222"),
    ]))
    stored = await mirror.upsert(_order(lines=[
        OrderLineItem(id="L2", quantity=3, unit_price=Decimal("2.50"), variant_id="222"),
    ]))

    assert [(li.id, li.quantity) for li in stored.line_items] == [("L2", 3)]
    reread = await mirror.get_order("1001")
    assert [li.id for li in reread.line_items] == ["L2"]


@pytest.mark.asyncio
async def test_sync_order_mirrors_commerce_state(mirror, commerce):
    commerce.add_order(_order())

    assert await mirror.sync_order("1001") is True
    assert (await mirror.get_order("1001")).name == "#1001"


@pytest.mark.asyncio
async def test_sync_order_failure_is_reported_not_raised(mirror, commerce):
    commerce.get_order_error = UpstreamTransientError("shopify 503", provider="shopify", status_code=503)

    assert await mirror.sync_order("1001") is False
    assert await mirror.get_order("1001") is None


def _unreadable_factory(**kwargs):
    raise OperationalError("SELECT crm_orders", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_unreadable_mirror_reads_as_none(commerce):
    mirror = CrmMirrorService(uow_factory=_unreadable_factory, commerce=commerce)

    assert await mirror.get_order("1001") is None


@pytest.mark.asyncio
async def test_refund_falls_back_to_commerce_when_mirror_unreadable(processor, commerce, settings):
    commerce.add_order(_order())
    mirror = CrmMirrorService(uow_factory=_unreadable_factory, commerce=commerce)
    service = RefundService(processor=processor, commerce=commerce, settings=settings, mirror=mirror)

    preview = await service.preview(RefundRequest(order_id="1001", lines=(RefundLine("L1", 1),)))

    assert preview.amount == Decimal("12.00")
    assert commerce.calls_to("get_order") == 1
