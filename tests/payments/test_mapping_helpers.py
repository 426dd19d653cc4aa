from infrastructure.external.payments.base import BasePaymentClient


class _MapClient(BasePaymentClient):
    provider = "stripe"


def test_provider_status_mapping():
    c = _MapClient()
    assert c._map_status("open") == "open"
    assert c._map_status("complete") == "completed"
    assert c._map_status("expired") == "expired"
    # unknown statuses pass through untouched
    assert c._map_status("something_new") == "something_new"
