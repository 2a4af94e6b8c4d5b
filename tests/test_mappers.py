from app.schemas.entities import LocalProduct, OrderItem, RemoteProduct
from app.services.mappers import (
    MapperHooks, MapperOptions, country_id, map_customer, map_guest_customer,
    map_order, map_order_line, map_product, map_remote_product,
    UNKNOWN_COUNTRY_ID,
)
from tests.conftest import make_customer, make_order

NOW = 1_700_000_000

def test_customer_payload_for_individual():
    data = map_customer(make_customer(7), now=NOW)

    assert data["name"] == "Jane Doe"
    assert data["firstname"] == "Jane"
    assert data["lastname"] == "Doe"
    assert data["email"] == "jane@example.com"
    assert data["town"] == "Paris"
    assert data["zip"] == "75001"
    assert data["country_id"] == 2
    assert data["client"] == 1
    assert data["code_client"] == f"WC7-{NOW}"
    assert "name_alias" not in data

def test_customer_payload_for_company_keeps_person_as_alias():
    data = map_customer(make_customer(7, company="ACME SARL"), now=NOW)

    assert data["name"] == "ACME SARL"
    assert data["name_alias"] == "Jane Doe"
    assert data["client"] == 2

def test_unknown_country_maps_to_sentinel():
    assert country_id("ZZ") == UNKNOWN_COUNTRY_ID
    assert country_id("") == UNKNOWN_COUNTRY_ID
    assert country_id("us") == 1

def test_guest_customer_payload():
    order = make_order(55, customer_id=None)
    data = map_guest_customer(order, now=NOW)

    assert data["name"] == "Jane Doe"
    assert data["code_client"] == f"WCG55-{NOW}"

def test_order_line_unit_price_and_tax():
    item = OrderItem(name="Widget", quantity=3, subtotal=10.0, subtotal_tax=2.0, sku="W-1")

    plain = map_order_line(item)
    taxed = map_order_line(item, MapperOptions(enable_tax_sync=True), remote_product_id=9)

    assert plain["subprice"] == 3.33
    assert plain["qty"] == 3
    assert plain["product_type"] == 0
    assert plain["product_ref"] == "W-1"
    assert "tva_tx" not in plain
    assert taxed["tva_tx"] == 20.0
    assert taxed["fk_product"] == 9

def test_order_payload_appends_shipping_as_service_lines():
    order = make_order(100, product_ids=(10, 11))
    data = map_order(order, MapperOptions(default_payment_method_id=6), product_ids={10: 501})

    assert data["ref_ext"] == "WC-100"
    assert data["note_private"] == "WooCommerce Order #100"
    assert data["date"] == int(order.date_created.timestamp())
    assert data["mode_reglement_id"] == 6
    assert "socid" not in data
    # Статус заказа в Dolibarr не передается
    assert "statut" not in data and "status" not in data
    assert [line["product_type"] for line in data["lines"]] == [0, 0, 1]
    assert data["lines"][0]["fk_product"] == 501
    assert "fk_product" not in data["lines"][1]
    assert data["lines"][2] == {"desc": "Flat rate", "subprice": 5.0, "qty": 1, "product_type": 1}

def test_product_payload_falls_back_to_generated_ref():
    data = map_product(LocalProduct(id=12, name="No SKU", status="draft"))

    assert data["ref"] == "WC-12"
    assert data["status"] == 0
    assert data["status_buy"] == 1

def test_product_round_trip_preserves_core_fields():
    product = LocalProduct(id=3, name="Lamp", sku="LAMP-1", price=12.346, stock_quantity=8)
    payload = map_product(product)

    remote = RemoteProduct(
        id=90,
        ref=payload["ref"],
        label=payload["label"],
        price=payload["price"],
        stock_reel=8.0,
        status=payload["status"],
    )
    local = map_remote_product(remote)

    assert local["name"] == "Lamp"
    assert local["sku"] == "LAMP-1"
    assert local["price"] == 12.35
    assert local["stock_quantity"] == 8
    assert local["status"] == "publish"

def test_hooks_post_process_mapper_output():
    hooks = MapperHooks()
    hooks.register(MapperHooks.CUSTOMER, lambda data, customer: {**data, "note_public": f"wc:{customer.id}"})
    hooks.register(MapperHooks.CUSTOMER, lambda data, customer: {**data, "name": data["name"].upper()})

    data = map_customer(make_customer(4), now=NOW, hooks=hooks)

    assert data["note_public"] == "wc:4"
    assert data["name"] == "JANE DOE"
