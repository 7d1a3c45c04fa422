"""Tests for the static-IP egress proxy and its direct-call fallback."""

import json

import pytest
import requests
import responses
from conftest import SAMPLE_MERCURY_ACCOUNTS

from ledger_hub.config import EgressProxyConfig
from ledger_hub.connectors import MercuryConnector, RetryPolicy
from ledger_hub.connectors.egress_proxy import EgressProxy, EgressProxyError, ProxiedResponse, sign
from ledger_hub.errors import CredentialError

PROXY_URL = "https://proxy.test"
TARGET = "https://mercury.test/api/v1/accounts"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def proxy_config():
    return EgressProxyConfig(
        enabled=True,
        proxy_url=PROXY_URL,
        api_key="proxy-key",
        secret="proxy-secret",
        status_ttl_seconds=3600,
    )


@pytest.fixture
def proxy(proxy_config, clock):
    return EgressProxy(proxy_config, timeout=5, clock=clock)


def _status(status="active"):
    responses.add(
        responses.GET,
        f"{PROXY_URL}/api/status",
        json={"success": True, "status": status, "ipAddress": "203.0.113.7"},
    )


class TestProxyStatus:
    @responses.activate
    def test_check_status(self, proxy):
        _status()

        status = proxy.check_status()

        assert status.status == "active"
        assert status.ip_address == "203.0.113.7"
        headers = responses.calls[0].request.headers
        assert headers["X-API-Key"] == "proxy-key"
        assert headers["X-Signature"] == sign("proxy-secret", "1700000000000", "/api/status")

    @responses.activate
    def test_failed_check_marks_inactive(self, proxy):
        responses.add(responses.GET, f"{PROXY_URL}/api/status", json={}, status=500)
        assert proxy.check_status().status == "inactive"

    @responses.activate
    def test_unsuccessful_body_marks_inactive(self, proxy):
        responses.add(
            responses.GET, f"{PROXY_URL}/api/status", json={"success": False, "message": "no IP"}
        )
        assert not proxy.is_active()

    @responses.activate
    def test_revalidates_only_after_ttl(self, proxy, clock):
        _status()

        assert proxy.is_active()
        clock.now += 1800
        assert proxy.is_active()
        assert len(responses.calls) == 1

        clock.now += 1801
        assert proxy.is_active()
        assert len(responses.calls) == 2

    def test_disabled_is_never_active(self, clock):
        proxy = EgressProxy(EgressProxyConfig(enabled=False, proxy_url=PROXY_URL), clock=clock)
        assert not proxy.is_active()
        assert proxy.status.last_checked is None


class TestForward:
    @responses.activate
    def test_forward(self, proxy):
        responses.add(
            responses.POST,
            f"{PROXY_URL}/api/proxy",
            json={"status": 200, "data": {"accounts": []}, "headers": {"x-req": "1"}},
        )

        response = proxy.forward("get", TARGET, headers={"Authorization": "Bearer t"})

        assert isinstance(response, ProxiedResponse)
        assert response.status_code == 200
        assert response.json() == {"accounts": []}
        body = json.loads(responses.calls[0].request.body)
        assert body["target"] == TARGET
        assert body["method"] == "GET"
        assert body["headers"] == {"Authorization": "Bearer t"}
        assert responses.calls[0].request.headers["X-Signature"] == sign(
            "proxy-secret", "1700000000000", TARGET
        )

    @responses.activate
    def test_forward_bad_envelope(self, proxy):
        responses.add(responses.POST, f"{PROXY_URL}/api/proxy", json={"ok": True})
        with pytest.raises(EgressProxyError):
            proxy.forward("GET", TARGET)

    @responses.activate
    def test_forward_transport_failure(self, proxy):
        responses.add(
            responses.POST, f"{PROXY_URL}/api/proxy", body=requests.exceptions.ConnectionError()
        )
        with pytest.raises(EgressProxyError):
            proxy.forward("GET", TARGET)

    def test_proxied_response_text(self):
        assert ProxiedResponse(200, {"a": 1}).text == '{"a": 1}'
        assert ProxiedResponse(200, '{"a": 1}').json() == {"a": 1}
        assert not ProxiedResponse(404).ok


class TestRequestFallback:
    @responses.activate
    def test_goes_through_proxy_when_active(self, proxy):
        _status()
        responses.add(responses.POST, f"{PROXY_URL}/api/proxy", json={"status": 200, "data": []})

        response = proxy.request(requests.Session(), "GET", TARGET)

        assert response.status_code == 200
        assert [c.request.url for c in responses.calls][-1] == f"{PROXY_URL}/api/proxy"

    @responses.activate
    def test_falls_back_when_proxy_fails(self, proxy):
        _status()
        responses.add(responses.POST, f"{PROXY_URL}/api/proxy", json={}, status=502)
        responses.add(responses.GET, TARGET, json={"accounts": []})

        response = proxy.request(requests.Session(), "GET", TARGET)

        assert response.status_code == 200
        assert responses.calls[-1].request.url == TARGET

    @responses.activate
    def test_direct_when_inactive(self, proxy):
        _status("pending")
        responses.add(responses.GET, TARGET, json={"accounts": []})

        proxy.request(requests.Session(), "GET", TARGET)

        urls = [c.request.url for c in responses.calls]
        assert f"{PROXY_URL}/api/proxy" not in urls
        assert urls[-1] == TARGET


class TestConnectorThroughProxy:
    @pytest.fixture
    def connector(self, proxy):
        return MercuryConnector(
            "https://mercury.test/api/v1", "token", retry_policy=RetryPolicy(max_retries=0),
            proxy=proxy,
        )

    @responses.activate
    def test_list_accounts_via_proxy(self, connector):
        _status()
        responses.add(
            responses.POST,
            f"{PROXY_URL}/api/proxy",
            json={"status": 200, "data": SAMPLE_MERCURY_ACCOUNTS},
        )

        accounts = connector.list_accounts()

        assert len(accounts) == 2
        body = json.loads(responses.calls[-1].request.body)
        assert body["headers"]["Authorization"] == "Bearer token"

    @responses.activate
    def test_proxied_unauthorized(self, connector):
        _status()
        responses.add(
            responses.POST,
            f"{PROXY_URL}/api/proxy",
            json={"status": 401, "data": {"message": "IP not allowed"}},
        )

        with pytest.raises(CredentialError) as exc:
            connector.list_accounts()
        assert "IP not allowed" in str(exc.value)
