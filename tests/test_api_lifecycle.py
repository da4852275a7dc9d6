from conftest import ADMIN, CUSTOMER, OTHER_CUSTOMER, RFQ_PAYLOAD, SUPPLIER, auth_headers
from marketplace.api import deps
from marketplace.main import app


def _quote_flow(client):
    r = client.post("/api/rfqs", json=RFQ_PAYLOAD, headers=auth_headers(CUSTOMER))
    assert r.status_code == 201, r.text
    rfq = r.json()
    assert rfq["status"] == "submitted"

    r = client.post(
        f"/api/rfqs/{rfq['id']}/assign",
        json={"supplier_ids": [SUPPLIER.id]},
        headers=auth_headers(ADMIN),
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "sent_to_suppliers"

    r = client.post(
        f"/api/rfqs/{rfq['id']}/supplier-quotes",
        json={"price": 100, "lead_time_days": 10},
        headers=auth_headers(SUPPLIER),
    )
    assert r.status_code == 201, r.text
    sq = r.json()

    r = client.post(
        f"/api/rfqs/{rfq['id']}/sales-quote",
        json={"supplier_quote_id": sq["id"], "markup_percent": 30},
        headers=auth_headers(ADMIN),
    )
    assert r.status_code == 201, r.text
    return rfq, sq, r.json()


def _order_flow(client):
    rfq, _, quote = _quote_flow(client)
    r = client.post(f"/api/sales-quotes/{quote['id']}/accept", headers=auth_headers(CUSTOMER))
    assert r.status_code == 200, r.text
    r = client.post(
        f"/api/sales-quotes/{quote['id']}/purchase-order",
        json={"file_url": "file:///po/customer-po.pdf", "po_number": "CPO-77"},
        headers=auth_headers(CUSTOMER),
    )
    assert r.status_code == 200, r.text
    r = client.post(f"/api/sales-quotes/{quote['id']}/convert", headers=auth_headers(ADMIN))
    assert r.status_code == 201, r.text
    return quote, r.json()


def test_quote_to_order_over_http(client):
    rfq, sq, quote = _quote_flow(client)
    assert quote["amount"] == 130.0
    assert quote["quote_number"].startswith("SQTE-")

    r = client.get(f"/api/rfqs/{rfq['id']}", headers=auth_headers(CUSTOMER))
    assert r.json()["status"] == "quoted"

    r = client.post(f"/api/sales-quotes/{quote['id']}/accept", headers=auth_headers(CUSTOMER))
    assert r.status_code == 200
    assert r.json()["status"] == "accepted"

    r = client.get("/api/sales-orders", headers=auth_headers(ADMIN))
    assert r.json() == []

    r = client.post(
        f"/api/sales-quotes/{quote['id']}/purchase-order",
        json={"file_url": "file:///po/customer-po.pdf", "po_number": "CPO-77"},
        headers=auth_headers(CUSTOMER),
    )
    assert r.status_code == 200

    r = client.post(f"/api/sales-quotes/{quote['id']}/convert", headers=auth_headers(ADMIN))
    assert r.status_code == 201
    order = r.json()
    assert order["order_number"].startswith("SORD-")
    assert order["order_status"] == "pending"
    assert order["payment_status"] == "unpaid"
    assert order["customer_purchase_order_number"] == "CPO-77"

    r = client.post(f"/api/sales-quotes/{quote['id']}/convert", headers=auth_headers(ADMIN))
    assert r.json()["id"] == order["id"]


def test_customer_view_of_a_quote_hides_supplier_and_markup(client):
    _, _, quote = _quote_flow(client)
    assert quote["markup_percent"] == 30.0
    assert quote["supplier_quote_id"]

    r = client.get(f"/api/sales-quotes/{quote['id']}", headers=auth_headers(CUSTOMER))
    assert r.status_code == 200
    body = r.json()
    assert body["amount"] == 130.0
    assert "markup_percent" not in body
    assert "supplier_quote_id" not in body
    assert "customer_id" not in body


def test_customers_cannot_list_supplier_quotes(client):
    rfq, _, _ = _quote_flow(client)
    r = client.get(f"/api/rfqs/{rfq['id']}/supplier-quotes", headers=auth_headers(CUSTOMER))
    assert r.status_code == 403
    assert r.json()["code"] == "ROLE_NOT_PERMITTED"


def test_lifecycle_errors_have_a_structured_body(client):
    _, order = _order_flow(client)

    r = client.post(
        f"/api/sales-orders/{order['id']}/status",
        json={"status": "manufacturing"},
        headers={**auth_headers(ADMIN), "X-Request-ID": "req-123"},
    )
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "ILLEGAL_FROM_STATE"
    assert body["entity_type"] == "sales_order"
    assert body["entity_id"] == order["id"]
    assert body["request_id"] == "req-123"
    assert body["detail"]
    assert r.headers["X-Request-ID"] == "req-123"


def test_error_codes_by_failure_kind(client):
    quote, order = _order_flow(client)

    r = client.post(
        f"/api/sales-orders/{order['id']}/status",
        json={"status": "material_procurement"},
        headers=auth_headers(CUSTOMER),
    )
    assert (r.status_code, r.json()["code"]) == (403, "ROLE_NOT_PERMITTED")

    r = client.get(f"/api/sales-orders/{order['id']}", headers=auth_headers(OTHER_CUSTOMER))
    assert (r.status_code, r.json()["code"]) == (403, "NOT_OWNER")

    r = client.post(f"/api/sales-orders/{order['id']}/archive", headers=auth_headers(ADMIN))
    assert (r.status_code, r.json()["code"]) == (409, "PRECONDITION_FAILED")

    r = client.post(f"/api/sales-orders/{order['id']}/reopen", headers=auth_headers(ADMIN))
    assert (r.status_code, r.json()["code"]) == (409, "NOT_ARCHIVED")

    r = client.post(
        f"/api/sales-orders/{order['id']}/status",
        json={"status": "pending"},
        headers=auth_headers(ADMIN),
    )
    assert (r.status_code, r.json()["code"]) == (409, "ILLEGAL_FROM_STATE")

    r = client.get("/api/sales-orders/does-not-exist", headers=auth_headers(ADMIN))
    assert (r.status_code, r.json()["code"]) == (404, "NOT_FOUND")


def test_order_runs_to_delivery_payment_and_reorder(client):
    _, order = _order_flow(client)
    admin = auth_headers(ADMIN)

    for stage in (
        "material_procurement",
        "manufacturing",
        "finishing",
        "quality_check",
    ):
        r = client.post(
            f"/api/sales-orders/{order['id']}/status", json={"status": stage}, headers=admin
        )
        assert r.status_code == 200, r.text

    r = client.post(
        f"/api/sales-orders/{order['id']}/quality-check",
        json={"approved": True},
        headers=auth_headers(CUSTOMER),
    )
    assert r.json()["quality_check_status"] == "approved"

    for stage in ("packing", "shipped", "delivered"):
        r = client.post(
            f"/api/sales-orders/{order['id']}/status",
            json={"status": stage, "tracking_number": "1Z999"},
            headers=admin,
        )
        assert r.status_code == 200, r.text
    assert r.json()["tracking_number"] == "1Z999"

    r = client.post(f"/api/sales-orders/{order['id']}/payment", headers=admin)
    assert r.status_code == 200
    assert r.json()["payment_status"] == "paid"
    assert r.json()["is_archived"] is True

    r = client.get("/api/sales-orders", headers=auth_headers(CUSTOMER))
    assert r.json() == []
    r = client.get("/api/sales-orders?archived=true", headers=auth_headers(CUSTOMER))
    assert [o["id"] for o in r.json()] == [order["id"]]
    r = client.get("/api/sales-orders?archived=true", headers=auth_headers(OTHER_CUSTOMER))
    assert r.json() == []

    r = client.post(f"/api/sales-orders/{order['id']}/reorder", headers=auth_headers(CUSTOMER))
    assert r.status_code == 201, r.text
    rfq = r.json()
    assert rfq["status"] == "submitted"
    assert rfq["origin_order_id"] == order["id"]
    assert rfq["project_name"] == f"REORDER: {RFQ_PAYLOAD['project_name']}"


def test_purchase_order_over_http(client):
    _, _, quote = _quote_flow(client)
    client.post(f"/api/sales-quotes/{quote['id']}/accept", headers=auth_headers(CUSTOMER))

    r = client.post(
        "/api/purchase-orders",
        json={"sales_quote_id": quote["id"]},
        headers=auth_headers(ADMIN),
    )
    assert r.status_code == 201, r.text
    po = r.json()
    assert po["order_number"].startswith("PO-")
    assert po["supplier_id"] == SUPPLIER.id

    supplier = auth_headers(SUPPLIER)
    r = client.post(f"/api/purchase-orders/{po['id']}/accept", headers=supplier)
    assert r.json()["status"] == "accepted"
    r = client.post(
        f"/api/purchase-orders/{po['id']}/transition",
        json={"transition": "start_production"},
        headers=supplier,
    )
    assert r.json()["status"] == "in_progress"
    r = client.post(
        f"/api/purchase-orders/{po['id']}/invoice",
        json={"invoice_url": "file:///invoices/inv-1.pdf"},
        headers=supplier,
    )
    assert r.json()["supplier_invoice_url"] == "file:///invoices/inv-1.pdf"

    r = client.post(
        f"/api/purchase-orders/{po['id']}/transition",
        json={"transition": "teleport"},
        headers=supplier,
    )
    assert r.status_code == 422

    r = client.get("/api/purchase-orders", headers=supplier)
    assert [p["id"] for p in r.json()] == [po["id"]]
    r = client.get("/api/purchase-orders", headers=auth_headers(CUSTOMER))
    assert r.status_code == 403


def test_requests_without_a_token_are_rejected(client):
    r = client.get("/api/rfqs")
    assert r.status_code == 401
    r = client.get("/api/rfqs", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_stubbed_actor_dependency(client):
    app.dependency_overrides[deps.get_current_actor] = lambda: ADMIN
    r = client.get("/api/rfqs")
    assert r.status_code == 200
    assert r.json() == []


def test_assignments_are_admin_only(client):
    rfq, _, _ = _quote_flow(client)
    r = client.get(f"/api/rfqs/{rfq['id']}/assignments", headers=auth_headers(ADMIN))
    assert [a["supplier_id"] for a in r.json()] == [SUPPLIER.id]
    assert r.json()[0]["status"] == "quoted"

    r = client.get(f"/api/rfqs/{rfq['id']}/assignments", headers=auth_headers(CUSTOMER))
    assert r.status_code == 403


def test_request_validation_happens_before_the_lifecycle(client):
    r = client.post(
        "/api/rfqs", json={**RFQ_PAYLOAD, "quantity": 0}, headers=auth_headers(CUSTOMER)
    )
    assert r.status_code == 422


def test_health_endpoints(client):
    for path in ("/health", "/healthz", "/api/health"):
        r = client.get(path)
        assert r.status_code == 200
        assert r.json()["status"] == "ok"


def test_file_upload_and_download(client):
    r = client.post(
        "/api/files?folder=purchase_orders",
        files={"file": ("po.pdf", b"%PDF-1.4 po", "application/pdf")},
        headers=auth_headers(CUSTOMER),
    )
    assert r.status_code == 201, r.text
    stored = r.json()
    assert stored["url"].startswith("file://")
    assert stored["size_bytes"] == len(b"%PDF-1.4 po")

    r = client.get(
        "/api/files/download", params={"url": stored["url"]}, headers=auth_headers(ADMIN)
    )
    assert r.status_code == 200
    assert r.content == b"%PDF-1.4 po"

    r = client.get(
        "/api/files/download",
        params={"url": "https://example.com/po.pdf"},
        headers=auth_headers(ADMIN),
    )
    assert r.status_code == 400


def test_empty_uploads_are_rejected(client):
    r = client.post(
        "/api/files",
        files={"file": ("empty.pdf", b"", "application/pdf")},
        headers=auth_headers(CUSTOMER),
    )
    assert r.status_code == 400


def _store(client, actor, name, content, folder):
    r = client.post(
        f"/api/files?folder={folder}",
        files={"file": (name, content, "application/pdf")},
        headers=auth_headers(actor),
    )
    assert r.status_code == 201, r.text
    return r.json()["url"]


def test_order_invoice_over_http(client):
    _, order = _order_flow(client)
    url = _store(client, ADMIN, "invoice.pdf", b"%PDF-1.7 invoice", "invoices")

    r = client.post(
        f"/api/sales-orders/{order['id']}/invoice",
        json={"invoice_url": url},
        headers=auth_headers(CUSTOMER),
    )
    assert (r.status_code, r.json()["code"]) == (403, "ROLE_NOT_PERMITTED")

    fake = _store(client, ADMIN, "invoice.pdf", b"not a pdf", "invoices")
    r = client.post(
        f"/api/sales-orders/{order['id']}/invoice",
        json={"invoice_url": fake},
        headers=auth_headers(ADMIN),
    )
    assert (r.status_code, r.json()["code"]) == (409, "PRECONDITION_FAILED")

    r = client.post(
        f"/api/sales-orders/{order['id']}/invoice",
        json={"invoice_url": url},
        headers=auth_headers(ADMIN),
    )
    assert r.status_code == 200, r.text
    assert r.json()["invoice_url"] == url
    assert r.json()["invoice_uploaded_at"] is not None

    r = client.get("/api/files/download", params={"url": url}, headers=auth_headers(CUSTOMER))
    assert r.status_code == 200
    assert r.content == b"%PDF-1.7 invoice"
    r = client.get(
        "/api/files/download", params={"url": url}, headers=auth_headers(OTHER_CUSTOMER)
    )
    assert (r.status_code, r.json()["code"]) == (403, "NOT_OWNER")


def test_downloads_are_limited_to_the_documents_owner(client):
    _, _, quote = _quote_flow(client)
    customer = auth_headers(CUSTOMER)
    url = _store(client, CUSTOMER, "po.pdf", b"%PDF-1.4 po", "purchase_orders")

    # Not attached to anything yet, so only admins can read it back.
    r = client.get("/api/files/download", params={"url": url}, headers=customer)
    assert (r.status_code, r.json()["code"]) == (403, "NOT_OWNER")

    client.post(f"/api/sales-quotes/{quote['id']}/accept", headers=customer)
    r = client.post(
        f"/api/sales-quotes/{quote['id']}/purchase-order",
        json={"file_url": url, "po_number": "CPO-5"},
        headers=customer,
    )
    assert r.status_code == 200, r.text

    r = client.get("/api/files/download", params={"url": url}, headers=customer)
    assert r.status_code == 200
    for outsider in (OTHER_CUSTOMER, SUPPLIER):
        r = client.get("/api/files/download", params={"url": url}, headers=auth_headers(outsider))
        assert r.status_code == 403
    r = client.get("/api/files/download", params={"url": url}, headers=auth_headers(ADMIN))
    assert r.status_code == 200


def test_suppliers_read_the_files_on_their_purchase_orders(client):
    _, _, quote = _quote_flow(client)
    client.post(f"/api/sales-quotes/{quote['id']}/accept", headers=auth_headers(CUSTOMER))
    po = client.post(
        "/api/purchase-orders",
        json={"sales_quote_id": quote["id"]},
        headers=auth_headers(ADMIN),
    ).json()
    supplier = auth_headers(SUPPLIER)
    client.post(f"/api/purchase-orders/{po['id']}/accept", headers=supplier)

    url = _store(client, SUPPLIER, "inv.pdf", b"%PDF-1.4 supplier invoice", "invoices")
    r = client.post(
        f"/api/purchase-orders/{po['id']}/invoice", json={"invoice_url": url}, headers=supplier
    )
    assert r.status_code == 200, r.text

    r = client.get("/api/files/download", params={"url": url}, headers=supplier)
    assert r.status_code == 200
    r = client.get("/api/files/download", params={"url": url}, headers=auth_headers(CUSTOMER))
    assert r.status_code == 403
