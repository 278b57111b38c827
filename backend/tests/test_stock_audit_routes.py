# Overview: Pytest coverage for the stock audit HTTP API.

"""
Stock Audit API Tests

Requests carry tenant context in X-Tenant-Id / X-Branch-Id / X-User-Id
headers, as set by the upstream gateway.
"""

from rxstock.extensions import db
from rxstock.models import Product


def _create(client, headers, **body):
    return client.post("/api/stock-audits", json=body, headers=headers)


class TestContextHeaders:

    def test_missing_headers_rejected(self, client, db_session):
        response = client.get("/api/stock-audits")

        assert response.status_code == 400
        assert "X-Tenant-Id" in response.get_json()["error"]

    def test_branch_of_other_tenant_forbidden(self, client, tenant_a, user_a, branch_b):
        response = client.get("/api/stock-audits", headers={
            "X-Tenant-Id": str(tenant_a.id),
            "X-Branch-Id": str(branch_b.id),
            "X-User-Id": str(user_a.id),
        })

        assert response.status_code == 403


class TestStockAuditApi:

    def test_full_audit_flow(self, client, headers_a, product_a, product_b):
        response = _create(client, headers_a, audit_date="2026-10-17", items=[
            {"product_id": product_a.id},
            {"product_id": product_b.id},
        ])
        assert response.status_code == 201
        audit = response.get_json()
        assert audit["status"] == "draft"
        assert audit["summary"]["pending_items"] == 2

        response = client.put(f"/api/stock-audits/{audit['id']}", headers=headers_a, json={
            "version_id": audit["version_id"],
            "items": [
                {"product_id": product_a.id, "physical_count": 45},
                {"product_id": product_b.id, "physical_count": "20"},
            ],
        })
        assert response.status_code == 200
        audit = response.get_json()
        assert audit["total_items_audited"] == 2
        assert audit["total_variance"] == 5
        assert audit["estimated_value_impact_cents"] == -1250

        response = client.post(
            f"/api/stock-audits/{audit['id']}/complete",
            headers=headers_a,
            json={"version_id": audit["version_id"]},
        )
        assert response.status_code == 200
        result = response.get_json()
        assert result["outcome"] == "completed"
        assert result["degraded"] is False
        assert result["audit"]["status"] == "completed"
        assert db.session.get(Product, product_a.id).quantity == 45

        response = client.get(f"/api/stock-audits/{audit['id']}/corrections", headers=headers_a)
        corrections = response.get_json()["corrections"]
        assert len(corrections) == 1
        assert corrections[0]["variance"] == -5

        response = client.patch(
            f"/api/stock-audits/{audit['id']}/items/{product_a.id}",
            headers=headers_a,
            json={"physical_count": 1},
        )
        assert response.status_code == 400

    def test_current_audit(self, client, headers_a, product_a):
        assert client.get("/api/stock-audits/current", headers=headers_a).get_json() == {"audit": None}

        created = _create(client, headers_a, auto_fill=True).get_json()
        current = client.get("/api/stock-audits/current", headers=headers_a).get_json()["audit"]

        assert current["id"] == created["id"]
        assert [i["product_id"] for i in current["items"]] == [product_a.id]

    def test_item_endpoints(self, client, headers_a, product_a, product_b):
        audit = _create(client, headers_a).get_json()

        response = client.post(
            f"/api/stock-audits/{audit['id']}/items",
            headers=headers_a,
            json={"product_id": product_a.id, "physical_count": 61},
        )
        assert response.status_code == 201
        item = response.get_json()["items"][0]
        assert item["status"] == "critical"

        response = client.post(
            f"/api/stock-audits/{audit['id']}/auto-fill", headers=headers_a, json={"prefill_counts": True}
        )
        assert response.get_json()["added"] == 1

        response = client.delete(f"/api/stock-audits/{audit['id']}/items/{product_a.id}", headers=headers_a)
        assert response.status_code == 200
        assert [i["product_id"] for i in response.get_json()["items"]] == [product_b.id]

    def test_invalid_count_rejected(self, client, headers_a, product_a):
        response = _create(client, headers_a, items=[{"product_id": product_a.id, "physical_count": 4.5}])

        assert response.status_code == 400

    def test_unknown_field_rejected(self, client, headers_a):
        response = _create(client, headers_a, status="completed")

        assert response.status_code == 400
        assert "status" in response.get_json()["error"]

    def test_stale_version_conflict(self, client, headers_a, product_a):
        audit = _create(client, headers_a, items=[{"product_id": product_a.id, "physical_count": 45}]).get_json()
        client.put(f"/api/stock-audits/{audit['id']}", headers=headers_a, json={
            "version_id": audit["version_id"], "notes": "first pass",
        })

        response = client.put(f"/api/stock-audits/{audit['id']}", headers=headers_a, json={
            "version_id": audit["version_id"], "notes": "stale",
        })

        assert response.status_code == 409

    def test_second_open_audit_conflict(self, client, headers_a):
        assert _create(client, headers_a).status_code == 201
        assert _create(client, headers_a).status_code == 409

    def test_complete_without_counts_rejected(self, client, headers_a, product_a):
        audit = _create(client, headers_a, items=[{"product_id": product_a.id}]).get_json()

        response = client.post(f"/api/stock-audits/{audit['id']}/complete", headers=headers_a, json={})

        assert response.status_code == 400

    def test_cancel_and_delete(self, client, headers_a):
        audit = _create(client, headers_a).get_json()

        response = client.post(f"/api/stock-audits/{audit['id']}/cancel", headers=headers_a, json={})
        assert response.status_code == 400

        response = client.post(
            f"/api/stock-audits/{audit['id']}/cancel", headers=headers_a, json={"reason": "duplicate"}
        )
        assert response.status_code == 200
        assert response.get_json()["status"] == "cancelled"

        response = client.delete(f"/api/stock-audits/{audit['id']}", headers=headers_a)
        assert response.status_code == 200
        assert client.get(f"/api/stock-audits/{audit['id']}", headers=headers_a).status_code == 404

    def test_list_filters(self, client, headers_a):
        audit = _create(client, headers_a, audit_date="2026-03-01").get_json()

        listed = client.get("/api/stock-audits?status=draft", headers=headers_a).get_json()["audits"]
        assert [a["id"] for a in listed] == [audit["id"]]

        listed = client.get("/api/stock-audits?date_from=2026-04-01", headers=headers_a).get_json()["audits"]
        assert listed == []

        assert client.get("/api/stock-audits?order=sideways", headers=headers_a).status_code == 400


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["details"]["pending_corrections"] == 0

    def test_version(self, client):
        assert client.get("/version").get_json()["api_version"] == "1.0.0"
