"""
Dispatch API tests.

Covers the HTTP surface: auth and permission gates, branch scoping,
error mapping, late items, archival, reports and sheet import.
"""

import json

import pytest


API = "/api/v1/dispatches"


async def _create(client, auth_headers, payload):
    response = await client.post(API, json=payload, headers=auth_headers("dispatcher", name="Dana Dispatcher"))
    assert response.status_code == 201, response.text
    return response.json()


async def _patch(client, headers, dispatch_id, slug, body):
    return await client.patch(f"{API}/{dispatch_id}/branches/{slug}", json=body, headers=headers)


async def _ship(client, headers, dispatch_id, slug):
    for body in (
        {"status": "packing"},
        {"status": "packed", "packed_by": "Kitchen Lead"},
        {"status": "dispatched"},
    ):
        response = await _patch(client, headers, dispatch_id, slug, body)
        assert response.status_code == 200, response.text


# ==================== AUTH ====================

@pytest.mark.asyncio
class TestAuth:
    async def test_invalid_token_rejected(self, client):
        response = await client.get(API, headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    async def test_missing_token_rejected(self, client):
        response = await client.get(API)
        assert response.status_code == 401

    async def test_branch_staff_cannot_create(self, client, auth_headers, create_payload):
        response = await client.post(
            API, json=create_payload, headers=auth_headers("branch_staff", branches=["north"])
        )
        assert response.status_code == 403

    async def test_unknown_role_has_no_permissions(self, client, auth_headers):
        response = await client.get(API, headers=auth_headers("visitor"))
        assert response.status_code == 403


# ==================== CREATE / READ ====================

@pytest.mark.asyncio
class TestCreateAndRead:
    async def test_create_returns_pending_branches(self, client, auth_headers, create_payload):
        body = await _create(client, auth_headers, create_payload)

        assert body["id"].startswith("dispatch-")
        assert body["created_by"] == "Dana Dispatcher"
        assert [b["status"] for b in body["branch_dispatches"]] == ["pending", "pending"]
        bun = body["branch_dispatches"][1]["items"][1]
        assert bun["name"] == "Bread, Burger Bun"
        assert bun["unit"] == "unit"

    async def test_zero_quantity_is_validation_error(self, client, auth_headers, create_payload):
        create_payload["branches"][0]["items"][0]["quantity"] = 0
        response = await client.post(API, json=create_payload, headers=auth_headers("dispatcher"))

        assert response.status_code == 400
        body = response.json()
        assert body["type"] == "DispatchValidationError"
        assert "greater than 0" in body["error"]

        listing = await client.get(API, headers=auth_headers())
        assert listing.json()["total"] == 0

    @pytest.mark.parametrize("token", ["NaN", "Infinity"])
    async def test_non_finite_quantity_is_validation_error(self, client, auth_headers, create_payload, token):
        body = json.dumps(create_payload).replace('"quantity": 50', f'"quantity": {token}', 1)
        response = await client.post(
            API, content=body, headers={**auth_headers("dispatcher"), "Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["type"] == "DispatchValidationError"
        assert (await client.get(API, headers=auth_headers())).json()["total"] == 0

    async def test_list_and_get(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)

        listing = await client.get(API, headers=auth_headers())
        assert listing.status_code == 200
        assert listing.json()["total"] == 1

        response = await client.get(f"{API}/{created['id']}", headers=auth_headers())
        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    async def test_unknown_dispatch_is_404(self, client, auth_headers):
        response = await client.get(f"{API}/dispatch-nope", headers=auth_headers())
        assert response.status_code == 404
        assert response.json()["error"] == "Dispatch not found"


# ==================== BRANCH SCOPING ====================

@pytest.mark.asyncio
class TestBranchScoping:
    async def test_branch_manager_sees_only_own_branch(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        headers = auth_headers("branch_manager", branches=["south"])

        listing = await client.get(API, headers=headers)
        slugs = [b["branch_slug"] for b in listing.json()["items"][0]["branch_dispatches"]]
        assert slugs == ["south"]

        single = await client.get(f"{API}/{created['id']}", headers=headers)
        assert [b["branch_slug"] for b in single.json()["branch_dispatches"]] == ["south"]

    async def test_manager_of_absent_branch_is_forbidden(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        headers = auth_headers("branch_manager", branches=["east"])

        assert (await client.get(API, headers=headers)).json()["total"] == 0
        response = await client.get(f"{API}/{created['id']}", headers=headers)
        assert response.status_code == 403

    async def test_manager_cannot_update_other_branch(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        response = await _patch(
            client, auth_headers("branch_manager", branches=["south"]),
            created["id"], "north", {"status": "packing"},
        )
        assert response.status_code == 403

    async def test_branch_dashboard(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)

        response = await client.get(
            f"{API}/branches/south", headers=auth_headers("branch_staff", branches=["south"])
        )
        assert response.status_code == 200
        body = response.json()
        assert len(body) == 1
        assert body[0]["dispatch_id"] == created["id"]
        assert body[0]["branch"]["branch_slug"] == "south"

        forbidden = await client.get(
            f"{API}/branches/north", headers=auth_headers("branch_staff", branches=["south"])
        )
        assert forbidden.status_code == 403

    async def test_central_kitchen_limited_to_its_branch(self, client, auth_headers, create_payload):
        await _create(client, auth_headers, create_payload)
        response = await client.get(
            f"{API}/branches/north", headers=auth_headers("central_kitchen", branches=["north"])
        )
        assert response.status_code == 403


# ==================== BRANCH UPDATES ====================

@pytest.mark.asyncio
class TestBranchUpdates:
    async def test_update_one_branch(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)

        response = await _patch(
            client, auth_headers("branch_manager", branches=["south"]), created["id"], "south",
            {"status": "packing", "items": [{"id": "south-item-0", "packed_qty": 48, "packed_checked": True}]},
        )
        assert response.status_code == 200
        south = response.json()["branch_dispatches"][0]
        assert south["status"] == "packing"
        assert south["items"][0]["packed_qty"] == 48
        assert south["items"][0]["packed_checked"] is True

        full = (await client.get(f"{API}/{created['id']}", headers=auth_headers())).json()
        north = full["branch_dispatches"][0]
        assert north["status"] == "pending"
        assert north["version"] == 1

    async def test_skipping_a_step_is_409(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)

        response = await _patch(client, auth_headers(), created["id"], "north", {"status": "dispatched"})

        assert response.status_code == 409
        body = response.json()
        assert body["type"] == "InvalidTransitionError"
        assert body["current_status"] == "pending"
        assert body["allowed_transitions"] == ["packing", "issue"]

    async def test_packed_without_packer_is_409(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        await _patch(client, auth_headers(), created["id"], "north", {"status": "packing"})

        response = await _patch(client, auth_headers(), created["id"], "north", {"status": "packed"})
        assert response.status_code == 409

    async def test_non_finite_packed_quantity_is_400(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        response = await client.patch(
            f"{API}/{created['id']}/branches/north",
            content='{"items": [{"id": "north-item-0", "packed_qty": NaN}]}',
            headers={**auth_headers(), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["field"] == "packed_qty"

    async def test_unknown_status_is_400(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        response = await _patch(client, auth_headers(), created["id"], "north", {"status": "shipped"})
        assert response.status_code == 400

    async def test_unknown_branch_is_404(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        response = await _patch(client, auth_headers(), created["id"], "east", {"status": "packing"})
        assert response.status_code == 404
        assert response.json()["error"] == "Branch dispatch not found"

    async def test_stale_version_is_409(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        await _patch(client, auth_headers(), created["id"], "north", {"status": "packing", "expected_version": 1})

        response = await _patch(
            client, auth_headers(), created["id"], "north",
            {"overall_notes": "Second edit", "expected_version": 1},
        )
        assert response.status_code == 409
        body = response.json()
        assert body["type"] == "ConcurrencyConflictError"
        assert body["current_version"] == 2

    async def test_resolve_requires_permission(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        await _patch(client, auth_headers(), created["id"], "north", {"status": "issue"})

        denied = await client.post(
            f"{API}/{created['id']}/branches/north/resolve", json={}, headers=auth_headers("dispatcher")
        )
        assert denied.status_code == 403

        response = await client.post(
            f"{API}/{created['id']}/branches/north/resolve",
            json={"note": "Replacement sent"},
            headers=auth_headers("operations_lead", name="Ops Lead"),
        )
        assert response.status_code == 200
        north = response.json()["branch_dispatches"][0]
        assert north["status"] == "pending"
        assert north["overall_notes"] == "Issue resolved by Ops Lead: Replacement sent"

    async def test_resolve_unflagged_branch_is_409(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        response = await client.post(
            f"{API}/{created['id']}/branches/north/resolve", json={}, headers=auth_headers()
        )
        assert response.status_code == 409


# ==================== LATE ITEMS ====================

@pytest.mark.asyncio
class TestAddItem:
    def _late_body(self, *slugs):
        return {
            "item_name": "Chili Flakes",
            "unit": "KG",
            "reason": "Menu change",
            "branches": [{"branch_slug": slug, "quantity": 2} for slug in slugs],
        }

    async def test_branch_manager_cannot_add_items(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        response = await client.post(
            f"{API}/{created['id']}/add-item",
            json=self._late_body("south"),
            headers=auth_headers("branch_manager", branches=["south"]),
        )
        assert response.status_code == 403

    async def test_added_to_open_branch_only(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        await _ship(client, auth_headers(), created["id"], "north")

        response = await client.post(
            f"{API}/{created['id']}/add-item",
            json=self._late_body("north", "south"),
            headers=auth_headers("dispatcher", name="Dana Dispatcher"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Item added to 1 branch(es)"
        assert body["updated_branches"] == ["South Branch"]
        assert body["skipped_branches"] == ["North Branch"]

        south = body["manifest"]["branch_dispatches"][1]
        late = south["items"][-1]
        assert late["name"] == "Chili Flakes"
        assert late["added_late"] is True
        assert late["added_by"] == "Dana Dispatcher"

    async def test_all_branches_closed_is_400(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        await _ship(client, auth_headers(), created["id"], "north")

        response = await client.post(
            f"{API}/{created['id']}/add-item", json=self._late_body("north"), headers=auth_headers()
        )

        assert response.status_code == 400
        body = response.json()
        assert body["type"] == "PartialFailureError"
        assert body["skipped_branches"] == ["North Branch"]

    async def test_infinite_quantity_is_400(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        body = json.dumps(self._late_body("south")).replace('"quantity": 2', '"quantity": Infinity')
        response = await client.post(
            f"{API}/{created['id']}/add-item",
            content=body,
            headers={**auth_headers(), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "All quantities must be greater than 0"

        south = (await client.get(f"{API}/{created['id']}", headers=auth_headers())).json()["branch_dispatches"][1]
        assert len(south["items"]) == 2

    async def test_blank_item_name_is_400(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        body = self._late_body("south")
        body["item_name"] = " "
        response = await client.post(f"{API}/{created['id']}/add-item", json=body, headers=auth_headers())
        assert response.status_code == 400
        assert response.json()["error"] == "Item name is required"


# ==================== ARCHIVE ====================

@pytest.mark.asyncio
class TestArchive:
    async def test_delete_moves_to_archive(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)

        response = await client.delete(f"{API}/{created['id']}", headers=auth_headers(name="Head Office"))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["archived"]["is_archived"] is True
        assert body["archived"]["deleted_by"] == "Head Office"

        missing = await client.get(f"{API}/{created['id']}", headers=auth_headers())
        assert missing.status_code == 404

        archive = await client.get(f"{API}/archive", headers=auth_headers())
        assert archive.json()["total"] == 1

        single = await client.get(f"{API}/archive/{created['id']}", headers=auth_headers())
        assert single.status_code == 200
        assert len(single.json()["branch_dispatches"]) == 2

    async def test_repeat_delete_is_404(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        await client.delete(f"{API}/{created['id']}", headers=auth_headers())
        response = await client.delete(f"{API}/{created['id']}", headers=auth_headers())
        assert response.status_code == 404

    async def test_dispatcher_cannot_delete(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        response = await client.delete(f"{API}/{created['id']}", headers=auth_headers("dispatcher"))
        assert response.status_code == 403

    async def test_archive_view_is_admin_only(self, client, auth_headers):
        response = await client.get(f"{API}/archive", headers=auth_headers("operations_lead"))
        assert response.status_code == 403


# ==================== REPORTS ====================

@pytest.mark.asyncio
class TestReports:
    async def test_report_counts(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        await _patch(
            client, auth_headers(), created["id"], "north",
            {"items": [{"id": "north-item-0", "issue": "missing"}]},
        )

        response = await client.get(f"{API}/{created['id']}/report", headers=auth_headers())
        assert response.status_code == 200
        report = response.json()
        assert report["total_branches"] == 2
        assert report["pending_branches"] == 2
        assert report["total_items"] == 3
        assert report["items_with_issues"] == 1
        assert report["issues_by_type"]["missing"] == 1

    async def test_csv_export(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)

        response = await client.get(
            f"{API}/{created['id']}/report/export",
            params={"scope": "complete"},
            headers=auth_headers(),
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "dispatch-complete-details-" in response.headers["content-disposition"]
        lines = response.text.strip().split("\n")
        assert len(lines) == 4

    async def test_report_scoped_to_callers_branches(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        headers = auth_headers("branch_manager", branches=["north"])

        report = await client.get(f"{API}/{created['id']}/report", headers=headers)
        assert report.status_code == 200
        assert report.json()["total_branches"] == 1
        assert report.json()["total_items"] == 1

        export = await client.get(
            f"{API}/{created['id']}/report/export", params={"scope": "complete"}, headers=headers
        )
        assert export.status_code == 200
        assert "South Branch" not in export.text
        assert len(export.text.strip().split("\n")) == 2

    async def test_report_forbidden_without_branch_on_dispatch(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        headers = auth_headers("branch_manager", branches=["east"])

        report = await client.get(f"{API}/{created['id']}/report", headers=headers)
        export = await client.get(f"{API}/{created['id']}/report/export", headers=headers)
        assert report.status_code == 403
        assert export.status_code == 403

    async def test_bad_export_scope_is_422(self, client, auth_headers, create_payload):
        created = await _create(client, auth_headers, create_payload)
        response = await client.get(
            f"{API}/{created['id']}/report/export", params={"scope": "everything"}, headers=auth_headers()
        )
        assert response.status_code == 422


# ==================== IMPORT / HEALTH ====================

@pytest.mark.asyncio
class TestImportAndHealth:
    async def test_import_preview(self, client, auth_headers):
        raw = "\n".join([
            "\t\tDIP\t",
            "\tRecipe\tMon\tTotal",
            "1\tRice\t4\t8",
        ])
        response = await client.post(
            f"{API}/import/preview", json={"raw_text": raw}, headers=auth_headers("dispatcher")
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total_items"] == 1
        assert body["branches"][0]["branch_slug"] == "isc-dip"
        assert body["branches"][0]["items"][0]["quantity"] == 8

    async def test_import_preview_bad_sheet_is_400(self, client, auth_headers):
        response = await client.post(
            f"{API}/import/preview", json={"raw_text": "just one line"}, headers=auth_headers()
        )
        assert response.status_code == 400

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "connected"
