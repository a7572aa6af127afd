# tests/test_document_builder.py
from fulfillment.config import BsaleSettings, BuyerDefaults
from fulfillment.models import Order, OrderItem
from fulfillment.services.document_builder import DocumentBuilder


def _builder(**kw):
    return DocumentBuilder(BsaleSettings(base_url="https://api.bsale.test", access_token="t", **kw))


def test_payload_uses_configured_document_and_default_buyer():
    order = Order("o1", order_number="1001")
    items = [OrderItem("o1", 2, 1990.0, 10.0, sku="SKU-1"), OrderItem("o1", 1, 12.5, sku="SKU-2")]

    p = _builder(document_type_id=8, office_id=3).build(order, items, emission_ts=1700000000)

    assert p["documentTypeId"] == 8 and p["officeId"] == 3
    assert p["emissionDate"] == 1700000000
    assert p["declareSii"] == 0
    assert p["salesId"] == "1001"
    assert p["client"] == {"code": "99999999-9", "company": "Mayorista Cliente", "activity": "Venta al por mayor"}
    assert p["details"] == [
        {"code": "SKU-1", "quantity": 2, "netUnitValue": 1990, "discount": 10, "taxId": "[1]"},
        {"code": "SKU-2", "quantity": 1, "netUnitValue": 12.5, "discount": 0, "taxId": "[1]"},
    ]
    assert "priceListId" not in p and "observation" not in p


def test_order_buyer_fields_override_defaults():
    order = Order("o2", customer_code="76.123.456-7", customer_name="Ferreteria Sur",
                  customer_email="compras@sur.cl", customer_city="Temuco", notes="Entregar en bodega")
    p = _builder(buyer=BuyerDefaults(activity="Comercio")).build(order, [OrderItem("o2", 1, 100.0, sku="X")])
    assert p["client"] == {
        "code": "76.123.456-7", "company": "Ferreteria Sur", "activity": "Comercio",
        "email": "compras@sur.cl", "city": "Temuco",
    }
    assert p["observation"] == "Entregar en bodega"
    assert p["salesId"] == "o2"


def test_optional_settings_flow_into_payload():
    p = _builder(price_list_id=4, tax_ids=(1, 2), declare_sii=True).build(Order("o3"), [OrderItem("o3", 1, 1.0, sku="A")])
    assert p["priceListId"] == 4
    assert p["declareSii"] == 1
    assert p["details"][0]["taxId"] == "[1,2]"
