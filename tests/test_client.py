import json

import httpx
import pytest

from ferry import (
    AuthError,
    CallState,
    Client,
    ClientConfig,
    ClientError,
    ErrorKind,
    FerryError,
    HttpxTransport,
    MemoryTokenStore,
    RetryConfig,
    ServerError,
)

BASE = "https://api.test/api"


def _client(handler, token=None, **kwargs):
    transport = HttpxTransport(BASE, client=httpx.Client(transport=httpx.MockTransport(handler)))
    delays = []
    client = Client(
        ClientConfig(base_url=BASE),
        transport=transport,
        token_store=MemoryTokenStore(token),
        sleep=delays.append,
        **kwargs,
    )
    return client, delays


def test_success_returns_envelope_as_sent():
    def _handle(request):
        assert request.url == httpx.URL(f"{BASE}/product")
        return httpx.Response(200, json={"success": True, "data": [{"id": "p1"}]})

    client, delays = _client(_handle)
    assert client.get_products() == {"success": True, "data": [{"id": "p1"}]}
    assert delays == []


def test_unsuccessful_envelope_with_200_is_returned_not_raised():
    client, _ = _client(lambda r: httpx.Response(200, json={"success": False, "error": "empty"}))
    assert client.get_inventory() == {"success": False, "error": "empty"}


def test_scenario_a_two_503_then_success():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        if calls["n"] < 3:  # noqa: PLR2004
            return httpx.Response(503, json={"success": False})
        return httpx.Response(200, json={"success": True, "data": {"total_orders": 3}})

    client, delays = _client(_handle)
    assert client.get_dashboard_stats()["data"] == {"total_orders": 3}
    assert calls["n"] == 3  # noqa: PLR2004
    assert delays == [1.0, 3.0]


def test_scenario_b_401_clears_token_and_redirects_without_retry():
    calls = {"n": 0}
    redirects = []

    def _handle(request):
        calls["n"] += 1
        assert request.headers["Authorization"] == "Bearer stale"
        return httpx.Response(401, json={"error": {"message": "Token expired"}})

    client, delays = _client(_handle, token="stale", on_redirect=redirects.append)
    with pytest.raises(AuthError) as info:
        client.get_orders()
    assert info.value.kind is ErrorKind.AUTH
    assert info.value.message == "Token expired"
    assert info.value.attempts == 1
    assert calls["n"] == 1
    assert delays == []
    assert not client.is_authenticated
    assert redirects == ["/login"]


def test_scenario_c_429_waits_for_retry_after_hint():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "2"}, json={"message": "slow"})
        return httpx.Response(200, json={"success": True, "data": []})

    client, delays = _client(_handle)
    client.get_deliveries()
    assert delays == [2.0]


def test_429_without_hint_uses_rate_limit_delay():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429)
        return httpx.Response(200, json={"success": True})

    client, delays = _client(_handle)
    client.get_inventory()
    assert delays == [5.0]


def test_scenario_e_exhausted_server_errors():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        return httpx.Response(500, json={"error": "db down"})

    client, delays = _client(_handle)
    with pytest.raises(ServerError) as info:
        client.get_product("p1")
    assert info.value.kind is ErrorKind.SERVER
    assert info.value.message == "db down"
    assert calls["n"] == 4  # noqa: PLR2004
    assert info.value.attempts == 4  # noqa: PLR2004
    assert delays == [1.0, 3.0, 5.0]


def test_zero_retry_budget_first_failure_is_terminal():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        return httpx.Response(503)

    client, delays = _client(_handle, max_attempts=0)
    with pytest.raises(ServerError):
        client.get_orders()
    assert calls["n"] == 1
    assert delays == []


def test_client_error_is_terminal():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        return httpx.Response(422, json={"message": "sku required"})

    client, _ = _client(_handle)
    with pytest.raises(ClientError) as info:
        client.create_product({"name": "x"})
    assert info.value.message == "sku required"
    assert calls["n"] == 1


def test_timeouts_and_network_errors_are_retried_then_surface():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        raise httpx.ConnectError("refused", request=request)

    client, delays = _client(_handle, max_attempts=2)
    with pytest.raises(FerryError) as info:
        client.get_inventory()
    assert info.value.kind is ErrorKind.NETWORK
    assert info.value.message == "Network error. Please check your connection."
    assert calls["n"] == 3  # noqa: PLR2004
    assert delays == [1.0, 3.0]


def test_retry_counter_is_per_call():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        if request.url.path.endswith("/orders") and calls["n"] <= 3:  # noqa: PLR2004
            return httpx.Response(503)
        return httpx.Response(200, json={"success": True})

    client, delays = _client(_handle)
    client.get_orders()
    # an unrelated call starts with a fresh budget and schedule
    client.get_inventory()
    assert delays == [1.0, 3.0, 5.0]


def test_token_rotation_takes_effect_on_next_attempt():
    store = MemoryTokenStore("first")
    seen = []

    def _handle(request):
        seen.append(request.headers.get("Authorization"))
        if len(seen) == 1:
            store.set_token("second")
            return httpx.Response(503)
        return httpx.Response(200, json={"success": True})

    transport = HttpxTransport(BASE, client=httpx.Client(transport=httpx.MockTransport(_handle)))
    client = Client(base_url=BASE, transport=transport, token_store=store, sleep=lambda d: None)
    client.get_orders()
    assert seen == ["Bearer first", "Bearer second"]


def test_non_json_success_body_is_unknown_error():
    client, _ = _client(lambda r: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(FerryError) as info:
        client.get_products()
    assert info.value.kind is ErrorKind.UNKNOWN
    assert info.value.message == "Invalid response from server: 200"


def test_health_check_returns_body_as_is():
    body = {"status": "ok", "timestamp": "2024-01-01T00:00:00Z"}
    client, _ = _client(lambda r: httpx.Response(200, json=body))
    assert client.health_check() == body


def test_register_omits_missing_key():
    bodies = []

    def _handle(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"success": True, "data": {"id": "u1"}})

    client, _ = _client(_handle)
    client.register("a@b.c", "Ana", "pw")
    client.register("a@b.c", "Ana", "pw", key="admin-key")
    assert bodies[0] == {"email": "a@b.c", "name": "Ana", "password": "pw"}
    assert bodies[1]["key"] == "admin-key"


def test_login_stores_token_and_logout_clears_it():
    def _handle(request):
        assert request.url.path == "/api/login"
        return httpx.Response(200, json={"success": True, "data": {"token": "jwt"}})

    client, _ = _client(_handle)
    assert not client.is_authenticated
    client.login("a@b.c", "pw")
    assert client.token_store.get_token() == "jwt"
    client.logout()
    assert not client.is_authenticated

    client.login("a@b.c", "pw", remember=False)
    assert not client.is_authenticated


def test_paths_and_query_parameters():
    seen = []

    def _handle(request):
        path = request.url.raw_path.split(b"?")[0].decode()
        seen.append((request.method, path, dict(request.url.params)))
        return httpx.Response(200, json={"success": True})

    client, _ = _client(_handle)
    client.get_order("a/b")
    client.get_delivery("o-9")
    client.get_sales_analytics()
    client.get_sales_forecast(14)
    client.get_ai_analytics()
    client.start_simulation()
    client.seed_data()
    assert seen == [
        ("GET", "/api/orders/a%2Fb", {}),
        ("GET", "/api/delivery/o-9", {}),
        ("GET", "/api/analytics/sales", {"days": "7"}),
        ("GET", "/api/analytics/sales/forecast", {"days": "14"}),
        ("GET", "/api/analytics/ai", {}),
        ("POST", "/api/simulation/start", {}),
        ("POST", "/api/simulation/seed", {}),
    ]


def test_shelf_image_is_multipart_with_upload_timeout(tmp_path):
    seen = {}

    def _handle(request):
        seen["ctype"] = request.headers["content-type"]
        seen["body"] = request.read()
        seen["timeout"] = request.extensions["timeout"]
        return httpx.Response(200, json={"success": True, "data": {"empty_shelves": 2}})

    client, _ = _client(_handle)
    img = tmp_path / "shelf.png"
    img.write_bytes(b"\x89PNG-bytes")
    client.analyze_shelf_image(img)
    assert seen["ctype"].startswith("multipart/form-data")
    assert b'name="image"' in seen["body"]
    assert b'filename="shelf.png"' in seen["body"]
    assert b"\x89PNG-bytes" in seen["body"]
    assert seen["timeout"]["read"] == 60.0  # noqa: PLR2004


def test_per_call_overrides():
    seen = {}

    def _handle(request):
        seen["trace"] = request.headers.get("X-Trace")
        seen["timeout"] = request.extensions["timeout"]["read"]
        return httpx.Response(200, json={"success": True})

    client, _ = _client(_handle)
    client.get_products(headers={"X-Trace": "abc"}, timeout=5)
    assert seen == {"trace": "abc", "timeout": 5}


def test_state_machine_history_on_retry(monkeypatch):
    states = []
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        return httpx.Response(503 if calls["n"] == 1 else 200, json={"success": True})

    client, _ = _client(_handle)
    orig = client._succeed

    def _spy(d, state, raw, started):
        out = orig(d, state, raw, started)
        states.extend(state.history)
        return out

    monkeypatch.setattr(client, "_succeed", _spy)
    client.get_orders()
    assert states == [
        CallState.CREATED,
        CallState.SENDING,
        CallState.FAILED,
        CallState.SENDING,
        CallState.SUCCESS,
    ]


def test_config_overrides_and_context_manager():
    with Client(
        ClientConfig(retry=RetryConfig(max_attempts=5)), base_url=BASE, max_attempts=1
    ) as client:
        assert client.config.base_url == BASE
        assert client.retry_policy.max_attempts == 1
    with pytest.raises(TypeError):
        Client(bogus=True)


def test_non_finite_retry_after_falls_back_to_rate_limit_delay():
    calls = {"n": 0}

    def _handle(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "inf"})
        return httpx.Response(200, json={"success": True})

    client, delays = _client(_handle)
    assert client.get_inventory() == {"success": True}
    assert delays == [5.0]
