"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings. In-repo stand-ins
for the processor and the commerce platform live here as fixtures.
"""
import os

# In-memory mirror database; no Postgres needed for tests
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite://")
os.environ.setdefault("DEBUG", "false")

import itertools
from dataclasses import replace
from decimal import Decimal
from typing import Any, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.dtos.commerce import (
    DraftCompleted,
    DraftRejected,
    NewDraftOrder,
    NewOrder,
    NewTransaction,
    RefundLineItem,
)
from application.dtos.payments import CreateCollection, ProcessorRefundRequest
from core.settings import PaymentSettings, ShopifySettings, StripeSettings
from domain.commerce.entity import (
    CatalogVariant,
    CommerceOrder,
    DraftLine,
    DraftOrderRef,
    FinancialStatus,
    OrderLineItem,
    OrderTransaction,
)
from domain.common.exceptions import NotFoundException
from domain.common.money import quantize
from domain.payment.entity import ArtifactKind, ArtifactLine, ArtifactStatus, PaymentArtifact
from domain.refund.entity import ProcessorRefund, RefundCalculation
from infrastructure.database import build_engine, create_tables
from infrastructure.unit_of_work import uow_factory_for


class FakeProcessor:
    """Processor stand-in: artifacts and payment intents kept in dicts."""

    provider = "fake"

    def __init__(self) -> None:
        self.sessions: dict[str, PaymentArtifact] = {}
        self.links: dict[str, PaymentArtifact] = {}
        self.pi_metadata: dict[str, dict[str, str]] = {}
        self.collections: list[CreateCollection] = []
        self.refunds: list[ProcessorRefundRequest] = []
        # replay by idempotency key, as the processor does
        self.collection_keys: dict[str, PaymentArtifact] = {}
        self.refund_keys: dict[str, ProcessorRefund] = {}
        self.disable_calls: list[str] = []
        self.calls: list[str] = []
        self.next_event: Any = None
        self.webhook_error: Optional[Exception] = None
        self.refund_error: Optional[Exception] = None
        self.metadata_write_error: Optional[Exception] = None

    async def create_collection(self, req: CreateCollection) -> PaymentArtifact:
        self.calls.append("create_collection")
        if req.idempotency_key in self.collection_keys:
            return self.collection_keys[req.idempotency_key]
        self.collections.append(req)
        prefix = "cs_test_" if req.kind == ArtifactKind.SESSION else "plink_"
        ident = f"{prefix}{len(self.collections)}"
        artifact = PaymentArtifact(
            id=ident,
            kind=req.kind,
            status=ArtifactStatus.OPEN,
            amount_total=req.amount_total,
            currency=req.currency,
            metadata=dict(req.metadata),
            url=f"https://pay.example.test/{ident}",
        )
        self.collection_keys[req.idempotency_key] = artifact
        return artifact

    async def retrieve_session(self, session_id: str) -> PaymentArtifact:
        self.calls.append("retrieve_session")
        if session_id not in self.sessions:
            raise NotFoundException("Checkout session", session_id)
        return replace(self.sessions[session_id])

    async def retrieve_payment_link(self, link_id: str) -> PaymentArtifact:
        self.calls.append("retrieve_payment_link")
        if link_id not in self.links:
            raise NotFoundException("Payment link", link_id)
        return self.links[link_id]

    async def disable_payment_link(self, link_id: str) -> bool:
        self.calls.append("disable_payment_link")
        link = self.links.get(link_id)
        if link is None or not link.disable():
            return False
        self.disable_calls.append(link_id)
        return True

    async def get_payment_intent_metadata(self, payment_intent_id: str) -> dict[str, str]:
        self.calls.append("get_payment_intent_metadata")
        return dict(self.pi_metadata.get(payment_intent_id, {}))

    async def update_payment_intent_metadata(self, payment_intent_id: str, metadata: dict[str, str]) -> None:
        self.calls.append("update_payment_intent_metadata")
        if self.metadata_write_error is not None:
            raise self.metadata_write_error
        self.pi_metadata.setdefault(payment_intent_id, {}).update(metadata)

    async def create_refund(self, req: ProcessorRefundRequest) -> ProcessorRefund:
        self.calls.append("create_refund")
        if self.refund_error is not None:
            raise self.refund_error
        if req.idempotency_key in self.refund_keys:
            return self.refund_keys[req.idempotency_key]
        self.refunds.append(req)
        refund = ProcessorRefund(id=f"re_{len(self.refunds)}", amount=req.amount, status="succeeded")
        self.refund_keys[req.idempotency_key] = refund
        return refund

    def parse_webhook(self, headers: dict[str, Any], body: bytes):
        self.calls.append("parse_webhook")
        if self.webhook_error is not None:
            raise self.webhook_error
        return self.next_event


class FakeCommerce:
    """Commerce stand-in with just enough platform behaviour to converge."""

    provider = "fake"

    def __init__(self, vat_rate: Decimal = Decimal("0.20")) -> None:
        self.vat_rate = vat_rate
        self.variants: dict[str, CatalogVariant] = {}
        self.drafts: dict[str, DraftOrderRef] = {}
        self.orders: dict[str, CommerceOrder] = {}
        self.transactions: dict[str, list[OrderTransaction]] = {}
        self.created_orders: list[NewOrder] = []
        self.created_drafts: list[NewDraftOrder] = []
        self.refunds: list[tuple[str, list[RefundLineItem], NewTransaction]] = []
        self.calls: list[str] = []
        self.refund_amount: Optional[Decimal] = None
        self.refund_error: Optional[Exception] = None
        self.get_order_error: Optional[Exception] = None
        self._ids = itertools.count(1001)

    def _next_id(self) -> str:
        return str(next(self._ids))

    # helpers for tests
    def add_order(self, order: CommerceOrder, transactions: Sequence[OrderTransaction] = ()) -> CommerceOrder:
        self.orders[order.id] = order
        self.transactions[order.id] = list(transactions)
        return order

    def calls_to(self, name: str) -> int:
        return self.calls.count(name)

    async def fetch_variants(self, variant_ids: Sequence[str]) -> dict[str, CatalogVariant]:
        self.calls.append("fetch_variants")
        return {v: self.variants[v] for v in variant_ids if v in self.variants}

    async def create_draft_order(self, draft: NewDraftOrder) -> DraftOrderRef:
        self.calls.append("create_draft_order")
        self.created_drafts.append(draft)
        ref = DraftOrderRef(
            draft_id=self._next_id(),
            line_items=[
                DraftLine(
                    variant_id=li.variant_id,
                    title=self.variants[li.variant_id].product_title if li.variant_id in self.variants else "Item",
                    quantity=li.quantity,
                    unit_price_ex_tax=(
                        self.variants[li.variant_id].unit_price_ex_tax if li.variant_id in self.variants else Decimal("0.00")
                    ),
                )
                for li in draft.lines
            ],
            customer_ref=draft.customer_id,
            payment_terms=draft.payment_terms.name if draft.payment_terms else None,
        )
        self.drafts[ref.draft_id] = ref
        return ref

    async def get_draft_order(self, draft_id: str) -> DraftOrderRef:
        self.calls.append("get_draft_order")
        if draft_id not in self.drafts:
            raise NotFoundException("Draft order", draft_id)
        return replace(self.drafts[draft_id])

    async def complete_draft_order(self, draft_id: str):
        self.calls.append("complete_draft_order")
        draft = self.drafts[draft_id]
        if draft.order_id:
            return DraftRejected(draft_id=draft_id, status_code=422, errors="This order has already been paid")
        order_id = self._next_id()
        self.add_order(
            CommerceOrder(
                id=order_id,
                financial_status=FinancialStatus.PENDING,
                currency=draft.currency,
                line_items=[
                    OrderLineItem(id=f"{order_id}-{i}", quantity=li.quantity, unit_price=li.unit_price_ex_tax,
                                  variant_id=li.variant_id, title=li.title)
                    for i, li in enumerate(draft.line_items)
                ],
            )
        )
        draft.order_id = order_id
        draft.status = "completed"
        return DraftCompleted(draft_id=draft_id, order_id=order_id)

    async def get_order(self, order_id: str) -> CommerceOrder:
        self.calls.append("get_order")
        if self.get_order_error is not None:
            raise self.get_order_error
        if order_id not in self.orders:
            raise NotFoundException("Order", order_id)
        order = self.orders[order_id]
        return replace(order, line_items=list(order.line_items), note_attributes=dict(order.note_attributes),
                       tags=list(order.tags))

    async def create_order(self, order: NewOrder) -> CommerceOrder:
        self.calls.append("create_order")
        self.created_orders.append(order)
        order_id = self._next_id()
        subtotal = sum((li.price * li.quantity for li in order.lines), Decimal("0"))
        return self.add_order(
            CommerceOrder(
                id=order_id,
                financial_status=FinancialStatus.PAID,
                currency=order.currency,
                line_items=[
                    OrderLineItem(id=f"{order_id}-{i}", quantity=li.quantity, unit_price=li.price, variant_id=li.variant_id)
                    for i, li in enumerate(order.lines)
                ],
                total_tax=order.total_tax,
                total_price=quantize(subtotal + order.total_tax),
                subtotal_price=quantize(subtotal),
                customer_id=order.customer_id,
                note=order.note,
                note_attributes=dict(order.note_attributes),
                tags=list(order.tags),
            )
        )

    async def find_order_id_by_tag(self, tag: str) -> Optional[str]:
        self.calls.append("find_order_id_by_tag")
        for order in self.orders.values():
            if tag in order.tags:
                return order.id
        return None

    async def annotate_order(self, order_id: str, *, note: str, note_attributes: dict[str, str]) -> None:
        self.calls.append("annotate_order")
        order = self.orders[order_id]
        order.note = note
        order.note_attributes = dict(note_attributes)

    async def list_transactions(self, order_id: str) -> list[OrderTransaction]:
        self.calls.append("list_transactions")
        return list(self.transactions.get(order_id, []))

    async def create_transaction(self, order_id: str, txn: NewTransaction) -> OrderTransaction:
        self.calls.append("create_transaction")
        created = OrderTransaction(
            id=f"txn_{self._next_id()}",
            kind=txn.kind,
            status=txn.status,
            amount=txn.amount,
            currency=txn.currency,
            authorization=txn.authorization,
            gateway=txn.gateway,
            message=txn.message,
        )
        self.transactions.setdefault(order_id, []).append(created)
        return created

    async def mark_order_paid(self, order_id: str) -> None:
        self.calls.append("mark_order_paid")
        self.orders[order_id].advance_financial_status(FinancialStatus.PAID)

    async def calculate_refund(self, order_id: str, lines: Sequence[RefundLineItem]) -> RefundCalculation:
        self.calls.append("calculate_refund")
        order = self.orders[order_id]
        per_line = {}
        for li in lines:
            unit = order.line(li.line_item_id).unit_price
            per_line[li.line_item_id] = quantize(unit * li.quantity * (1 + self.vat_rate))
        amount = self.refund_amount if self.refund_amount is not None else sum(per_line.values(), Decimal("0"))
        return RefundCalculation(order_id=order_id, amount=quantize(amount), currency=order.currency, per_line=per_line)

    async def create_refund(self, order_id, lines, txn, *, note=None) -> str:
        self.calls.append("create_refund")
        if self.refund_error is not None:
            raise self.refund_error
        self.refunds.append((order_id, list(lines), txn))
        self.transactions.setdefault(order_id, []).append(
            OrderTransaction(
                id=f"txn_{self._next_id()}",
                kind="refund",
                status="success",
                amount=txn.amount,
                currency=txn.currency,
                authorization=txn.authorization,
                gateway=txn.gateway,
            )
        )
        order = self.orders[order_id]
        order.advance_financial_status(FinancialStatus.PARTIALLY_REFUNDED)
        return f"rf_{len(self.refunds)}"

    def admin_order_url(self, order_id: str) -> str:
        return f"https://shop.example.test/admin/orders/{order_id}"


class FakeMirror:
    """Mirror stand-in for route tests (no database)."""

    def __init__(self) -> None:
        self.orders: dict[str, CommerceOrder] = {}
        self.synced: list[str] = []

    async def get_order(self, order_id: str) -> Optional[CommerceOrder]:
        return self.orders.get(order_id)

    async def sync_order(self, order_id: str) -> bool:
        self.synced.append(order_id)
        return True


@pytest.fixture
def settings() -> PaymentSettings:
    return PaymentSettings(
        vat_rate=Decimal("0.20"),
        currency="GBP",
        app_base_url="https://crm.example.test/",
        source_tag="crm",
        stripe=StripeSettings(secret_key="sk_test_123", webhook_secret="whsec_test_secret"),
        shopify=ShopifySettings(shop_domain="test-shop.myshopify.com", access_token="shpat_test", read_retries=1),
    )


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def commerce() -> FakeCommerce:
    return FakeCommerce()


@pytest.fixture
def fake_mirror() -> FakeMirror:
    return FakeMirror()


@pytest_asyncio.fixture
async def uow_factory():
    """UoW factory over a private in-memory database with the mirror tables."""
    engine = build_engine("sqlite+aiosqlite://")
    await create_tables(bind=engine)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    yield uow_factory_for(session_factory)
    await engine.dispose()


@pytest.fixture
def make_session(processor):
    """Register a completed checkout session on the fake processor."""

    def _make(
        session_id: str = "cs_test_a1",
        *,
        lines: Sequence[ArtifactLine],
        metadata: Optional[dict[str, str]] = None,
        payment_intent_id: Optional[str] = "pi_123",
        payment_link_id: Optional[str] = None,
        payment_status: str = "paid",
    ) -> PaymentArtifact:
        artifact = PaymentArtifact(
            id=session_id,
            kind=ArtifactKind.SESSION,
            status=ArtifactStatus.COMPLETED,
            amount_total=sum(li.amount_total for li in lines),
            currency="GBP",
            metadata=dict(metadata or {}),
            lines=list(lines),
            payment_status=payment_status,
            payment_intent_id=payment_intent_id,
            payment_link_id=payment_link_id,
        )
        processor.sessions[session_id] = artifact
        return artifact

    return _make
