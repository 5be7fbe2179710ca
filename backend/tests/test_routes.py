"""
Mailroom Backend: API Route Tests
===================================

What:  End-to-end tests through the FastAPI app with an HTTPX client.
How:   test_client wires the seeded SQLite database onto app.state; requests
       run through the full middleware chain and exception handlers.

What we test:
    ✅ Health reports the database and the selected pickup store
    ✅ Every error uses the standard body with the request id
    ✅ Schema validation failures are 400, not 422
    ✅ The pickup endpoint end to end, including resubmission
    ✅ Signature images: decoded bytes with caching headers, or a redirect
    ✅ Pagination header, default tenant assignment and report date checks
"""

import pytest


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")
        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["pickup_store"] == "event"

    @pytest.mark.asyncio
    async def test_api_health_alias(self, test_client):
        response = await test_client.get("/api/health")
        assert response.status_code == 200


class TestErrorBody:

    @pytest.mark.asyncio
    async def test_unknown_route(self, test_client):
        response = await test_client.get("/api/nothing-here", headers={"X-Request-ID": "desk-42"})
        body = response.json()
        assert response.status_code == 404
        assert body["error"] == "not_found"
        assert body["message"] == "Route GET /api/nothing-here not found"
        assert body["request_id"] == "desk-42"
        assert response.headers["X-Request-ID"] == "desk-42"

    @pytest.mark.asyncio
    async def test_generated_request_id(self, test_client):
        response = await test_client.get("/api/packages/999")
        assert response.status_code == 404
        assert response.json()["request_id"] == response.headers["X-Request-ID"]
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_validation_is_400(self, test_client):
        response = await test_client.post(
            "/api/pickups",
            json={"package_ids": [], "mailbox_id": 1, "pickup_person_name": "Alice"},
        )
        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "validation_error"
        assert body["details"]["errors"][0]["field"] == "package_ids"

    @pytest.mark.asyncio
    async def test_conflict(self, test_client):
        response = await test_client.post("/api/mailboxes", json={"mailbox_number": "101"})
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"


class TestPickupEndpoint:

    @pytest.mark.asyncio
    async def test_pickup_and_resubmit(self, test_client, seed):
        payload = {
            "package_ids": [seed.standard, seed.bobs],
            "mailbox_id": seed.mailbox_a,
            "pickup_person_name": "Alice Smith",
            "staff_initials": "AB",
        }
        first = await test_client.post("/api/pickups", json=payload)
        assert first.status_code == 200
        summary = first.json()["pickup_summary"]
        assert summary["packages_picked_up"] == 2
        assert summary["cross_tenant_pickup"] is True

        second = await test_client.post("/api/pickups", json=payload)
        assert second.status_code == 400
        assert second.json()["error"] == "already_picked_up"
        assert {p["id"] for p in second.json()["details"]["already_picked_up"]} == {seed.standard, seed.bobs}

        listing = await test_client.get("/api/pickups", params={"days": 7})
        assert listing.status_code == 200
        assert listing.json()["filters"]["days"] == 7
        assert listing.json()["pickup_events"][0]["package_count"] == 2

    @pytest.mark.asyncio
    async def test_missing_signature(self, test_client, seed):
        response = await test_client.post(
            "/api/pickups",
            json={"package_ids": [seed.high_value], "mailbox_id": seed.mailbox_a, "pickup_person_name": "Alice"},
        )
        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "pickup_precondition_failed"
        assert body["details"]["signature_required"] is True

    @pytest.mark.asyncio
    async def test_bulk_status(self, test_client, seed):
        response = await test_client.post(
            "/api/pickups/bulk-status",
            json={"package_ids": [seed.standard, seed.returned], "status": "ready_for_pickup"},
        )
        assert response.status_code == 200
        assert response.json()["updated_count"] == 1


class TestSignatureImages:

    async def _signed(self, test_client, seed, signature_data):
        response = await test_client.post(
            "/api/pickups",
            json={
                "package_ids": [seed.high_value],
                "mailbox_id": seed.mailbox_a,
                "pickup_person_name": "Alice Smith",
                "signature_data": signature_data,
            },
        )
        assert response.status_code == 200
        return response.json()["pickup_summary"]["signature_ids"][0]

    @pytest.mark.asyncio
    async def test_png_image(self, test_client, seed, signature_data_uri):
        signature_id = await self._signed(test_client, seed, signature_data_uri)
        response = await test_client.get(f"/api/signatures/image/{signature_id}")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "public, max-age=31536000"
        assert response.content.startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_url_redirect(self, test_client, seed):
        url = "https://signatures.example.com/s/1.png"
        signature_id = await self._signed(test_client, seed, url)
        response = await test_client.get(f"/api/signatures/image/{signature_id}")
        assert response.status_code == 307
        assert response.headers["location"] == url

    @pytest.mark.asyncio
    async def test_signature_by_package(self, test_client, seed, signature_data_uri):
        signature_id = await self._signed(test_client, seed, signature_data_uri)
        response = await test_client.get(f"/api/signatures/package/{seed.high_value}")
        assert response.status_code == 200
        assert response.json()["signature"]["id"] == signature_id

    @pytest.mark.asyncio
    async def test_missing_signature_image(self, test_client):
        response = await test_client.get("/api/signatures/image/999")
        assert response.status_code == 404


class TestDirectoryAndPackages:

    @pytest.mark.asyncio
    async def test_package_list_total_header(self, test_client, seed):
        response = await test_client.get("/api/packages", params={"status": "received", "limit": 2})
        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "3"
        assert response.json()["count"] == 2

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self, test_client):
        response = await test_client.get("/api/packages", params={"status": "lost"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_package_intake(self, test_client, seed):
        response = await test_client.post(
            "/api/packages",
            json={"mailbox_number": "102", "tracking_number": "DHL-77", "high_value": True},
        )
        assert response.status_code == 201
        assert response.json()["package"]["status"] == "received"

    @pytest.mark.asyncio
    async def test_set_default_tenant(self, test_client, seed):
        response = await test_client.patch(
            f"/api/tenants/mailboxes/{seed.mailbox_a}/default-tenant",
            json={"default_tenant_id": seed.bob},
        )
        assert response.status_code == 200
        assert response.json()["mailbox"]["default_tenant_name"] == "Bob Jones"

    @pytest.mark.asyncio
    async def test_mailbox_search(self, test_client, seed):
        response = await test_client.get("/api/mailboxes/search", params={"q": "alice"})
        assert response.status_code == 200
        assert [m["mailbox_number"] for m in response.json()["mailboxes"]] == ["101"]


class TestReports:

    @pytest.mark.asyncio
    async def test_statistics(self, test_client, seed):
        response = await test_client.get("/api/reports/statistics")
        assert response.status_code == 200
        assert response.json()["statistics"]["overview"]["total_packages"] == 5

    @pytest.mark.asyncio
    async def test_reversed_dates(self, test_client):
        response = await test_client.get(
            "/api/reports/statistics", params={"start_date": "2024-02-01", "end_date": "2024-01-01"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_audit_action_type_is_checked(self, test_client):
        response = await test_client.get("/api/reports/audit", params={"action_type": "deletion"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_mailbox_summary(self, test_client, seed):
        response = await test_client.get(f"/api/reports/mailbox/{seed.mailbox_b}/summary")
        assert response.status_code == 200
        assert response.json()["summary"]["statistics"]["total_packages"] == 1
