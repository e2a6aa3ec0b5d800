import asyncio
import json

import httpx
import pytest

from listings_api.services.notifications import NotificationClient, host_display_name, normalize_language
from listings_api.services.repository import HostRecord


def _host(**overrides) -> HostRecord:
    fields = {"host_id": "h", "email": "h@example.com", "host_type": "INDIVIDUAL", "status": "VERIFIED"}
    fields.update(overrides)
    return HostRecord(**fields)


def test_email_and_push_are_posted_with_api_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/push":
            return httpx.Response(200, json={"sent": 2, "failed": 1})
        return httpx.Response(202)

    client = NotificationClient(
        "https://notify.example.com/",
        api_key="notify-key",
        transport=httpx.MockTransport(handler),
    )

    asyncio.run(client.send_email("ads_expired", "host@example.com", "en-US", {"listingCount": 2}))
    result = asyncio.run(client.send_push("sub-1", "ADS_EXPIRED", "de", {"listingCount": 2}))

    assert [request.url.path for request in seen] == ["/emails", "/push"]
    assert all(request.headers["X-API-Key"] == "notify-key" for request in seen)
    email = json.loads(seen[0].content)
    assert email == {
        "template_name": "ads_expired",
        "recipient": "host@example.com",
        "language": "en",
        "variables": {"listingCount": 2},
    }
    assert json.loads(seen[1].content)["language"] == "sr"
    assert result.sent == 2 and result.failed == 1


def test_unconfigured_client_skips_without_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = NotificationClient(None, transport=httpx.MockTransport(handler))

    asyncio.run(client.send_email("listing_approved", "host@example.com", "en", {}))
    result = asyncio.run(client.send_push("sub-1", "LISTING_APPROVED", "en", {}))

    assert result.sent == 0


def test_service_errors_are_raised() -> None:
    client = NotificationClient(
        "https://notify.example.com",
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
    )

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.send_email("listing_published", "host@example.com", "sr", {}))


@pytest.mark.parametrize(
    ("language", "expected"),
    [("en", "en"), ("SR_latn", "sr"), ("fr", "sr"), (None, "sr"), ("", "sr")],
)
def test_language_normalization(language, expected: str) -> None:
    assert normalize_language(language) == expected


def test_host_display_name_preference() -> None:
    assert host_display_name(_host(forename="Ana", surname="Petrovic")) == "Ana Petrovic"
    assert host_display_name(_host(host_type="COMPANY", legal_name="Planina d.o.o.", display_name="Planina")) == (
        "Planina d.o.o."
    )
    assert host_display_name(_host(host_type="COMPANY", business_name="Brvnare")) == "Brvnare"
    assert host_display_name(_host()) == "Host"
