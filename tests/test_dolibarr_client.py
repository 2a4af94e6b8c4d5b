import json
import logging
import pytest
import httpx
from app.services.dolibarr_client import DolibarrClient, parse_create_result, REDACTED
from app.services.exceptions import (
    ConfigError, TransportError, ApiError, DecodeError,
)

BASE_URL = "http://erp.test"

def make_client(handler, **kwargs) -> DolibarrClient:
    return DolibarrClient(
        base_url=BASE_URL + "/",
        api_key="secret-key",
        transport=httpx.MockTransport(handler),
        **kwargs
    )

@pytest.mark.asyncio
async def test_request_builds_url_and_headers():
    """Адрес и заголовки запроса"""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    async with make_client(handler) as client:
        result = await client.request("/thirdparties/5", "PUT", {"name": "ACME"}, {"X-Trace": "1"})

    assert result == {"ok": True}
    assert seen["url"] == "http://erp.test/api/index.php/thirdparties/5"
    assert seen["headers"]["DOLAPIKEY"] == "secret-key"
    assert seen["headers"]["Content-Type"] == "application/json"
    assert seen["headers"]["Accept"] == "application/json"
    assert seen["headers"]["X-Trace"] == "1"
    assert seen["body"] == {"name": "ACME"}

@pytest.mark.asyncio
async def test_missing_credentials_raise_config_error():
    client = DolibarrClient(base_url="", api_key="")
    with pytest.raises(ConfigError):
        await client.request("/status")

@pytest.mark.asyncio
@pytest.mark.parametrize("status,message", [
    (401, "Invalid API key. Please check your Dolibarr API configuration."),
    (403, "Access denied. Please check your Dolibarr API permissions."),
    (404, "Resource not found."),
    (500, "Internal server error in Dolibarr."),
])
async def test_canned_error_messages(status, message):
    async with make_client(lambda request: httpx.Response(status, text="nope")) as client:
        with pytest.raises(ApiError) as exc_info:
            await client.request("/products/1")

    assert exc_info.value.status == status
    assert exc_info.value.message == message

@pytest.mark.asyncio
async def test_generic_error_message_for_other_status():
    async with make_client(lambda request: httpx.Response(418, text="teapot")) as client:
        with pytest.raises(ApiError) as exc_info:
            await client.request("/products/1")

    assert exc_info.value.message == "HTTP error 418: teapot"

@pytest.mark.asyncio
async def test_error_envelope_message_wins():
    body = {"error": {"code": 400, "message": "name field missing"}}
    async with make_client(lambda request: httpx.Response(400, json=body)) as client:
        with pytest.raises(ApiError) as exc_info:
            await client.request("/thirdparties", "POST", {})

    assert exc_info.value.message == "name field missing"
    assert exc_info.value.payload == body

@pytest.mark.asyncio
async def test_non_json_success_body_raises_decode_error():
    async with make_client(lambda request: httpx.Response(200, text="<html>")) as client:
        with pytest.raises(DecodeError, match="Invalid JSON response from Dolibarr API."):
            await client.request("/status")

@pytest.mark.asyncio
async def test_transport_error_is_not_retried_for_post(monkeypatch):
    attempts = []

    def handler(request):
        attempts.append(request.method)
        raise httpx.ConnectError("connection refused", request=request)

    async def no_sleep(seconds):
        pass

    monkeypatch.setattr("app.services.dolibarr_client.asyncio.sleep", no_sleep)

    async with make_client(handler, max_retries=3) as client:
        with pytest.raises(TransportError) as exc_info:
            await client.request("/orders", "POST", {"socid": 1})
        assert isinstance(exc_info.value.cause, httpx.ConnectError)
        assert attempts == ["POST"]

        with pytest.raises(TransportError):
            await client.request("/orders/1")
        assert attempts == ["POST", "GET", "GET", "GET"]

@pytest.mark.asyncio
async def test_debug_logging_redacts_api_key(caplog):
    async with make_client(lambda request: httpx.Response(200, json=[]), debug=True) as client:
        with caplog.at_level(logging.DEBUG, logger="app.services.dolibarr_client"):
            await client.request("/warehouses")

    request_records = [r for r in caplog.records if r.getMessage().startswith("API Request")]
    assert request_records
    assert request_records[0].headers["DOLAPIKEY"] == REDACTED
    assert "secret-key" not in caplog.text

@pytest.mark.asyncio
async def test_no_debug_logging_when_disabled(caplog):
    async with make_client(lambda request: httpx.Response(200, json=[])) as client:
        with caplog.at_level(logging.DEBUG, logger="app.services.dolibarr_client"):
            await client.request("/warehouses")

    assert not [r for r in caplog.records if r.getMessage().startswith("API Request")]

def test_parse_create_result_shapes():
    assert parse_create_result(42).id == 42
    assert parse_create_result("42").id == 42
    assert parse_create_result({"id": "42"}).id == 42
    with pytest.raises(DecodeError):
        parse_create_result({"ok": True})
    with pytest.raises(DecodeError):
        parse_create_result(True)

@pytest.mark.asyncio
async def test_test_connection_reads_version():
    body = {"success": {"code": 200, "dolibarr_version": "18.0.4"}}
    async with make_client(lambda request: httpx.Response(200, json=body)) as client:
        result = await client.test_connection()

    assert result["success"] is True
    assert result["version"] == "18.0.4"

@pytest.mark.asyncio
async def test_test_connection_rejects_unexpected_shape():
    async with make_client(lambda request: httpx.Response(200, json={"status": "ok"})) as client:
        with pytest.raises(DecodeError):
            await client.test_connection()

@pytest.mark.asyncio
async def test_find_customer_by_email_walks_pages_case_insensitively():
    first_page = [{"id": str(i), "name": f"C{i}", "email": f"c{i}@example.com"} for i in range(100)]
    second_page = [{"id": "500", "name": "Jane", "email": "Jane.Doe@Example.com"}]

    def handler(request):
        page = int(request.url.params["page"])
        if page == 0:
            return httpx.Response(200, json=first_page)
        if page == 1:
            return httpx.Response(200, json=second_page)
        return httpx.Response(404, json={"error": {"code": 404, "message": "No thirdparty found"}})

    async with make_client(handler) as client:
        found = await client.find_customer_by_email("jane.doe@example.com")
        missing = await client.find_customer_by_email("nobody@example.com")

    assert found.id == 500
    assert missing is None

@pytest.mark.asyncio
async def test_empty_thirdparty_list_is_not_an_error():
    body = {"error": {"code": 404, "message": "No thirdparty found"}}
    async with make_client(lambda request: httpx.Response(404, json=body)) as client:
        assert await client.find_customer_by_email("a@b.c") is None

@pytest.mark.asyncio
async def test_reference_lists_are_normalized():
    def handler(request):
        if request.url.path.endswith("/warehouses"):
            return httpx.Response(200, json=[{"id": "3", "ref": "WH"}])
        if request.url.path.endswith("/payment_types"):
            assert request.url.params["lang"] == "fr_FR"
            return httpx.Response(200, json=[{"id": "6", "code": "CB", "label": "Card"}])
        return httpx.Response(200, json=[{"id": "1", "label": "Main", "active": "0"}])

    async with make_client(handler) as client:
        warehouses = await client.get_warehouses()
        methods = await client.get_payment_methods("fr_FR")
        accounts = await client.get_bank_accounts()

    assert warehouses[0].id == 3
    assert warehouses[0].label == "Warehouse 3"
    assert methods[0].code == "CB"
    assert accounts[0].active is False

@pytest.mark.asyncio
async def test_stock_movement_direction_and_price_update():
    bodies = []

    def handler(request):
        bodies.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json=7)

    async with make_client(handler) as client:
        result = await client.create_stock_movement(5, 1, -2)
        await client.update_product_price(5, 12.5)

    assert result.id == 7
    assert bodies[0][2] == {
        "product_id": 5, "warehouse_id": 1, "qty": -2,
        "movement": "output", "label": "WooCommerce Sync",
    }
    assert bodies[1][0] == "PUT"
    assert bodies[1][2] == {"price": 12.5, "price_ttc": 12.5, "price_base_type": "HT"}
