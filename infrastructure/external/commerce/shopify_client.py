"""
Shopify Admin API adapter (REST + GraphQL) on top of BaseAPIClient.

Only reads and GraphQL queries are retried; every write is attempted once and
its failure is surfaced so the caller can decide from platform state.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional, Sequence

import httpx
from pydantic import TypeAdapter

from application.dtos.commerce import (
    DraftCompleted,
    DraftCompletion,
    DraftRejected,
    NewDraftOrder,
    NewOrder,
    NewTransaction,
    RefundLineItem,
)
from application.ports.commerce import CommerceBackend
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.commerce.entity import CatalogVariant, CommerceOrder, DraftOrderRef, OrderTransaction
from domain.common.exceptions import NotFoundException, UpstreamAuthError, UpstreamTransientError
from domain.common.money import format_major
from domain.refund.entity import RefundCalculation
from infrastructure.external.api_clients.base import (
    APIError,
    APIResponse,
    AuthenticationError,
    BaseAPIClient,
    NotFoundError,
    RateLimitError,
    ServerError,
    TransportError,
)
from infrastructure.external.commerce.exceptions import CommerceRequestError
from infrastructure.external.commerce.schemas import (
    ShopifyDraftOrder,
    ShopifyOrder,
    ShopifyTransaction,
    UserError,
    VariantNode,
    legacy_id,
    refund_calculation_adapter,
    to_gid,
    to_refund_calculation,
)


logger = get_logger(__name__)

VARIANTS_QUERY = """
query VariantPrices($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on ProductVariant {
      id
      title
      price
      product { title }
    }
  }
}
"""

MARK_PAID_MUTATION = """
mutation MarkPaid($input: OrderMarkAsPaidInput!) {
  orderMarkAsPaid(input: $input) {
    order { id displayFinancialStatus }
    userErrors { field message }
  }
}
"""

ORDER_BY_TAG_QUERY = """
query OrderByTag($query: String!) {
  orders(first: 1, query: $query) {
    edges { node { id legacyResourceId } }
  }
}
"""

_user_errors = TypeAdapter(list[UserError])


def _numeric(value: str) -> Any:
    """REST ids are integers; keep non-numeric ids as given."""
    s = legacy_id(value)
    return int(s) if s.isdigit() else s


class ShopifyClient(BaseAPIClient, CommerceBackend):
    provider = "shopify"

    def __init__(self, settings: PaymentSettings, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        shop = settings.shopify
        timeouts = settings.timeouts
        super().__init__(
            base_url=f"{shop.admin_base_url}/api/{shop.api_version}",
            timeout=httpx.Timeout(
                timeouts.total, connect=timeouts.connect, read=timeouts.read, write=timeouts.write
            ),
            max_retries=shop.read_retries,
            retry_delay=0.5,
            headers={"X-Shopify-Access-Token": shop.access_token or ""},
            transport=transport,
        )
        self._settings = settings

    # Transport
    async def _call(self, method: str, endpoint: str, **kwargs: Any) -> APIResponse:
        try:
            return await self._request(method, endpoint, **kwargs)
        except AuthenticationError as exc:
            raise UpstreamAuthError(
                f"Shopify rejected credentials: {exc.message}",
                provider=self.provider,
                details={"status_code": exc.status_code},
            ) from exc
        except NotFoundError as exc:
            raise NotFoundException("Shopify resource", endpoint) from exc
        except (TransportError, ServerError, RateLimitError) as exc:
            raise UpstreamTransientError(
                f"Shopify {method} {endpoint} failed: {exc.message}",
                provider=self.provider,
                status_code=exc.status_code,
            ) from exc
        except APIError as exc:
            raise CommerceRequestError(
                f"Shopify {method} {endpoint} rejected: {exc.message}",
                provider=self.provider,
                status_code=exc.status_code,
            ) from exc

    async def _graphql(self, query: str, variables: dict[str, Any], *, mutation: bool = False) -> dict[str, Any]:
        resp = await self._call(
            "POST",
            "graphql.json",
            json_data={"query": query, "variables": variables},
            idempotent=not mutation,
        )
        body = resp.json() or {}
        errors = body.get("errors")
        if errors:
            throttled = any(
                isinstance(e, dict) and (e.get("extensions") or {}).get("code") == "THROTTLED" for e in errors
            )
            if throttled:
                raise UpstreamTransientError("Shopify GraphQL throttled", provider=self.provider, status_code=429)
            raise CommerceRequestError(
                "Shopify GraphQL error",
                provider=self.provider,
                details={"errors": errors},
            )
        return body.get("data") or {}

    def admin_order_url(self, order_id: str) -> str:
        return f"{self._settings.shopify.admin_base_url}/orders/{legacy_id(order_id)}"

    # Catalog
    async def fetch_variants(self, variant_ids: Sequence[str]) -> dict[str, CatalogVariant]:
        if not variant_ids:
            return {}
        # callers may pass either numeric ids or gids; answer with what they asked for
        requested = {legacy_id(v): v for v in variant_ids}
        data = await self._graphql(VARIANTS_QUERY, {"ids": [to_gid("ProductVariant", v) for v in requested]})
        found: dict[str, CatalogVariant] = {}
        for node in data.get("nodes") or []:
            if not node or not node.get("id"):
                continue
            variant = VariantNode.model_validate(node).to_domain()
            if variant is None:
                logger.warning("shopify_variant_unpriced", variant_id=legacy_id(node["id"]))
                continue
            asked_as = requested.get(variant.item_id, variant.item_id)
            found[asked_as] = replace(variant, item_id=asked_as)
        return found

    # Drafts
    async def create_draft_order(self, draft: NewDraftOrder) -> DraftOrderRef:
        payload: dict[str, Any] = {
            "line_items": [{"variant_id": _numeric(li.variant_id), "quantity": li.quantity} for li in draft.lines],
            "taxes_included": False,
            "use_customer_default_address": True,
        }
        if draft.customer_id:
            payload["customer"] = {"id": _numeric(draft.customer_id)}
        if draft.email:
            payload["email"] = draft.email
        if draft.note:
            payload["note"] = draft.note
        if draft.tags:
            # REST wants a comma-separated string
            payload["tags"] = ", ".join(draft.tags)
        if draft.payment_terms is not None:
            payload["payment_terms"] = draft.payment_terms.to_payload()
        resp = await self._call("POST", "draft_orders.json", json_data={"draft_order": payload})
        created = ShopifyDraftOrder.model_validate(resp.json()["draft_order"])
        logger.info("shopify_draft_created", draft_id=created.id, lines=len(created.line_items))
        return created.to_domain(self._settings.currency)

    async def get_draft_order(self, draft_id: str) -> DraftOrderRef:
        resp = await self._call("GET", f"draft_orders/{legacy_id(draft_id)}.json")
        return ShopifyDraftOrder.model_validate(resp.json()["draft_order"]).to_domain(self._settings.currency)

    async def complete_draft_order(self, draft_id: str) -> DraftCompletion:
        try:
            resp = await self._call(
                "PUT",
                f"draft_orders/{legacy_id(draft_id)}/complete.json",
                params={"payment_pending": "true"},
            )
        except CommerceRequestError as exc:
            return DraftRejected(draft_id=draft_id, status_code=exc.status_code, errors=exc.message)
        draft = ShopifyDraftOrder.model_validate((resp.json() or {}).get("draft_order") or {"id": draft_id})
        if not draft.order_id:
            return DraftRejected(draft_id=draft_id, status_code=resp.status_code, errors="completed without order_id")
        return DraftCompleted(draft_id=draft_id, order_id=draft.order_id)

    # Orders
    async def get_order(self, order_id: str) -> CommerceOrder:
        resp = await self._call("GET", f"orders/{legacy_id(order_id)}.json")
        return ShopifyOrder.model_validate(resp.json()["order"]).to_domain(self._settings.currency)

    async def create_order(self, order: NewOrder) -> CommerceOrder:
        payload: dict[str, Any] = {
            "line_items": [
                {
                    "variant_id": _numeric(li.variant_id),
                    "quantity": li.quantity,
                    "price": format_major(li.price),
                    "taxable": True,
                    "tax_lines": [
                        {"title": li.tax_title, "rate": str(li.tax_rate), "price": format_major(li.tax_amount)}
                    ],
                }
                for li in order.lines
            ],
            "currency": order.currency,
            "taxes_included": False,
            "total_tax": format_major(order.total_tax),
            "financial_status": "paid",
            "use_customer_default_address": True,
            "send_receipt": False,
            "note_attributes": [{"name": k, "value": v} for k, v in order.note_attributes.items()],
        }
        if order.customer_id:
            payload["customer"] = {"id": _numeric(order.customer_id)}
        if order.email:
            payload["email"] = order.email
        if order.note:
            payload["note"] = order.note
        if order.tags:
            payload["tags"] = ", ".join(order.tags)
        resp = await self._call("POST", "orders.json", json_data={"order": payload})
        created = ShopifyOrder.model_validate(resp.json()["order"]).to_domain(self._settings.currency)
        logger.info("shopify_order_created", order_id=created.id, name=created.name)
        return created

    async def find_order_id_by_tag(self, tag: str) -> Optional[str]:
        data = await self._graphql(ORDER_BY_TAG_QUERY, {"query": f"tag:'{tag}'"})
        edges = ((data.get("orders") or {}).get("edges")) or []
        if not edges:
            return None
        node = edges[0].get("node") or {}
        ident = node.get("legacyResourceId") or node.get("id")
        return legacy_id(ident) if ident else None

    async def annotate_order(self, order_id: str, *, note: str, note_attributes: dict[str, str]) -> None:
        oid = _numeric(order_id)
        await self._call(
            "PUT",
            f"orders/{oid}.json",
            json_data={
                "order": {
                    "id": oid,
                    "note": note,
                    "note_attributes": [{"name": k, "value": v} for k, v in note_attributes.items()],
                }
            },
        )

    # Transactions
    async def list_transactions(self, order_id: str) -> list[OrderTransaction]:
        resp = await self._call("GET", f"orders/{legacy_id(order_id)}/transactions.json")
        return [ShopifyTransaction.model_validate(t).to_domain() for t in (resp.json() or {}).get("transactions", [])]

    async def create_transaction(self, order_id: str, txn: NewTransaction) -> OrderTransaction:
        resp = await self._call(
            "POST",
            f"orders/{legacy_id(order_id)}/transactions.json",
            json_data={"transaction": self._transaction_payload(txn)},
        )
        created = ShopifyTransaction.model_validate(resp.json()["transaction"]).to_domain()
        logger.info("shopify_transaction_created", order_id=order_id, transaction_id=created.id, kind=created.kind)
        return created

    @staticmethod
    def _transaction_payload(txn: NewTransaction) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": txn.kind,
            "status": txn.status,
            "amount": format_major(txn.amount),
            "currency": txn.currency,
            "gateway": txn.gateway,
        }
        if txn.authorization:
            payload["authorization"] = txn.authorization
        if txn.parent_id:
            payload["parent_id"] = _numeric(txn.parent_id)
        if txn.message:
            payload["message"] = txn.message
        return payload

    async def mark_order_paid(self, order_id: str) -> None:
        data = await self._graphql(
            MARK_PAID_MUTATION,
            {"input": {"id": to_gid("Order", order_id)}},
            mutation=True,
        )
        result = data.get("orderMarkAsPaid") or {}
        errors = _user_errors.validate_python(result.get("userErrors") or [])
        if errors:
            raise CommerceRequestError(
                "orderMarkAsPaid rejected",
                provider=self.provider,
                details={"order_id": order_id, "errors": [e.message for e in errors]},
            )

    # Refunds
    async def calculate_refund(self, order_id: str, lines: Sequence[RefundLineItem]) -> RefundCalculation:
        resp = await self._call(
            "POST",
            f"orders/{legacy_id(order_id)}/refunds/calculate.json",
            json_data={"refund": {"shipping": {"full_refund": False}, "refund_line_items": self._refund_lines(lines)}},
            # calculate has no side effects
            idempotent=True,
        )
        payload = refund_calculation_adapter.validate_python((resp.json() or {}).get("refund") or {})
        return to_refund_calculation(order_id, payload, self._settings.currency)

    async def create_refund(
        self,
        order_id: str,
        lines: Sequence[RefundLineItem],
        txn: NewTransaction,
        *,
        note: Optional[str] = None,
    ) -> str:
        refund: dict[str, Any] = {
            "currency": txn.currency,
            "notify": False,
            "shipping": {"full_refund": False},
            "refund_line_items": self._refund_lines(lines),
            "transactions": [self._transaction_payload(txn)],
        }
        if note:
            refund["note"] = note
        resp = await self._call("POST", f"orders/{legacy_id(order_id)}/refunds.json", json_data={"refund": refund})
        refund_id = str(((resp.json() or {}).get("refund") or {}).get("id") or "")
        if not refund_id:
            raise CommerceRequestError(
                "Refund response did not include an id",
                provider=self.provider,
                status_code=resp.status_code,
                details={"order_id": order_id},
            )
        return refund_id

    @staticmethod
    def _refund_lines(lines: Sequence[RefundLineItem]) -> list[dict[str, Any]]:
        return [
            {"line_item_id": _numeric(li.line_item_id), "quantity": li.quantity, "restock_type": "no_restock"}
            for li in lines
        ]

    async def aclose(self) -> None:
        await self.close()
