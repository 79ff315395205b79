"""
Tests for the moderation endpoints.

Tests verify that:
- students are refused on every admin route (403)
- admins and superadmins can list, toggle, bulk update/delete and read analytics
"""
from datetime import timedelta

import pytest
from bson import ObjectId

from database import utcnow


def get_doc(db, pdf_id):
    return db["pdf"].find_one({"_id": ObjectId(pdf_id)})


@pytest.mark.parametrize("method,path", [
    ("get", "/api/admin/pdfs"),
    ("get", "/api/admin/pdfs/analytics"),
    ("get", "/api/admin/uploaders"),
    ("post", "/api/admin/pdfs/bulk-delete"),
    ("post", "/api/admin/pdfs/bulk-update"),
])
def test_students_are_refused(client, student, method, path):
    kwargs = {"json": {"pdf_ids": [str(ObjectId())]}} if method == "post" else {}
    resp = getattr(client, method)(path, headers=student["headers"], **kwargs)
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"


def test_toggles_are_refused_for_students(client, make_pdf, student):
    pdf_id = make_pdf()
    for action in ("toggle-featured", "toggle-verified", "toggle-active"):
        resp = client.put(f"/api/admin/pdfs/{pdf_id}/{action}", headers=student["headers"])
        assert resp.status_code == 403


# ============================================================================
# Bulk delete
# ============================================================================

def test_bulk_delete_student_forbidden_then_admin_succeeds(client, db, storage, make_pdf, student, admin_user):
    ids = [make_pdf(), make_pdf(), make_pdf()]
    body = {"pdf_ids": ids[:2] + [str(ObjectId()), "garbage"]}

    assert client.post("/api/admin/pdfs/bulk-delete", json=body, headers=student["headers"]).status_code == 403
    assert db["pdf"].count_documents({}) == 3

    resp = client.post("/api/admin/pdfs/bulk-delete", json=body, headers=admin_user["headers"])
    assert resp.status_code == 200
    assert resp.json()["deleted_count"] == 2
    assert db["pdf"].count_documents({}) == 1
    assert get_doc(db, ids[2]) is not None
    assert len(storage.deleted) == 2


def test_bulk_delete_tolerates_storage_failures(client, db, storage, make_pdf, superadmin):
    ids = [make_pdf(), make_pdf()]
    storage.fail_deletes = True
    resp = client.post("/api/admin/pdfs/bulk-delete", json={"pdf_ids": ids}, headers=superadmin["headers"])
    assert resp.status_code == 200
    assert resp.json()["deleted_count"] == 2
    assert db["pdf"].count_documents({}) == 0


def test_bulk_delete_requires_ids(client, admin_user):
    resp = client.post("/api/admin/pdfs/bulk-delete", json={"pdf_ids": []}, headers=admin_user["headers"])
    assert resp.status_code == 400


def test_bulk_delete_nothing_matching(client, admin_user):
    resp = client.post(
        "/api/admin/pdfs/bulk-delete", json={"pdf_ids": [str(ObjectId())]}, headers=admin_user["headers"]
    )
    assert resp.status_code == 404


# ============================================================================
# Bulk update
# ============================================================================

def test_bulk_update_drops_disallowed_keys(client, db, make_pdf, admin_user):
    ids = [make_pdf(title="Original"), make_pdf(title="Original")]
    resp = client.post(
        "/api/admin/pdfs/bulk-update",
        json={"pdf_ids": ids, "updates": {"title": "x", "is_featured": True}},
        headers=admin_user["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["modified_count"] == 2
    for pdf_id in ids:
        doc = get_doc(db, pdf_id)
        assert doc["is_featured"] is True
        assert doc["title"] == "Original"


def test_bulk_update_only_disallowed_keys_is_rejected(client, make_pdf, admin_user):
    resp = client.post(
        "/api/admin/pdfs/bulk-update",
        json={"pdf_ids": [make_pdf()], "updates": {"title": "x", "downloads": 1000}},
        headers=admin_user["headers"],
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "No valid update fields provided"


def test_bulk_update_requires_ids_and_updates(client, make_pdf, admin_user):
    no_ids = client.post(
        "/api/admin/pdfs/bulk-update", json={"pdf_ids": [], "updates": {"semester": "2"}},
        headers=admin_user["headers"],
    )
    assert no_ids.status_code == 400
    no_updates = client.post(
        "/api/admin/pdfs/bulk-update", json={"pdf_ids": [make_pdf()], "updates": {}},
        headers=admin_user["headers"],
    )
    assert no_updates.status_code == 400


def test_bulk_verify_records_verifier(client, db, make_pdf, make_user, admin_user):
    earlier = make_user("admin")
    fresh = make_pdf()
    already = make_pdf(is_verified=True, verified_by=earlier["id"])
    resp = client.post(
        "/api/admin/pdfs/bulk-update",
        json={"pdf_ids": [fresh, already], "updates": {"is_verified": True}},
        headers=admin_user["headers"],
    )
    assert resp.status_code == 200
    doc = get_doc(db, fresh)
    assert doc["is_verified"] is True
    assert doc["verified_by"] == admin_user["id"]
    assert doc["verified_at"] is not None
    assert get_doc(db, already)["verified_by"] == earlier["id"]

    client.post(
        "/api/admin/pdfs/bulk-update",
        json={"pdf_ids": [fresh], "updates": {"is_verified": False}},
        headers=admin_user["headers"],
    )
    doc = get_doc(db, fresh)
    assert doc["verified_by"] is None
    assert doc["verified_at"] is None


def test_bulk_update_validates_enumerated_values(client, db, make_pdf, admin_user):
    pdf_id = make_pdf(branch="CSE")
    resp = client.post(
        "/api/admin/pdfs/bulk-update",
        json={"pdf_ids": [pdf_id], "updates": {"branch": "ARTS"}},
        headers=admin_user["headers"],
    )
    assert resp.status_code == 400
    assert get_doc(db, pdf_id)["branch"] == "CSE"


# ============================================================================
# Toggles
# ============================================================================

def test_toggle_featured_flips(client, db, make_pdf, admin_user):
    pdf_id = make_pdf()
    first = client.put(f"/api/admin/pdfs/{pdf_id}/toggle-featured", headers=admin_user["headers"])
    assert first.json()["data"] == {"is_featured": True}
    second = client.put(f"/api/admin/pdfs/{pdf_id}/toggle-featured", headers=admin_user["headers"])
    assert second.json()["data"] == {"is_featured": False}
    assert get_doc(db, pdf_id)["is_featured"] is False


def test_toggle_verified_records_and_clears_verifier(client, db, make_pdf, admin_user):
    pdf_id = make_pdf()
    resp = client.put(f"/api/admin/pdfs/{pdf_id}/toggle-verified", headers=admin_user["headers"])
    assert resp.status_code == 200
    doc = get_doc(db, pdf_id)
    assert doc["is_verified"] is True
    assert doc["verified_by"] == admin_user["id"]
    assert doc["verified_at"] is not None
    assert resp.json()["data"]["verified_by"]["id"] == admin_user["id"]

    client.put(f"/api/admin/pdfs/{pdf_id}/toggle-verified", headers=admin_user["headers"])
    doc = get_doc(db, pdf_id)
    assert doc["is_verified"] is False
    assert doc["verified_by"] is None
    assert doc["verified_at"] is None


def test_toggle_missing_pdf(client, admin_user):
    resp = client.put(f"/api/admin/pdfs/{ObjectId()}/toggle-featured", headers=admin_user["headers"])
    assert resp.status_code == 404


def test_toggle_active_hides_from_public_listing(client, make_pdf, admin_user):
    pdf_id = make_pdf()
    resp = client.put(f"/api/admin/pdfs/{pdf_id}/toggle-active", headers=admin_user["headers"])
    assert resp.json()["data"] == {"is_active": False}
    assert client.get("/api/pdfs").json()["count"] == 0
    assert client.get(f"/api/pdfs/{pdf_id}").status_code == 404

    client.put(f"/api/admin/pdfs/{pdf_id}/toggle-active", headers=admin_user["headers"])
    assert client.get("/api/pdfs").json()["count"] == 1


# ============================================================================
# Listing and analytics
# ============================================================================

def test_admin_list_stats_cover_filtered_set(client, make_pdf, admin_user):
    make_pdf(branch="CSE", downloads=4, views=10, average_rating=4.0, is_featured=True)
    make_pdf(branch="CSE", downloads=6, views=20, average_rating=2.0, is_verified=True)
    make_pdf(branch="ECE", downloads=100, views=100, average_rating=5.0, is_featured=True)

    resp = client.get("/api/admin/pdfs", params={"branch": "CSE"}, headers=admin_user["headers"])
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_count"] == 2
    assert body["stats"] == {
        "total_pdfs": 2,
        "total_downloads": 10,
        "total_views": 30,
        "avg_rating": 3.0,
        "featured_count": 1,
        "verified_count": 1,
    }


def test_admin_list_includes_inactive_and_paginates(client, make_pdf, admin_user):
    for _ in range(3):
        make_pdf()
    make_pdf(is_active=False)

    resp = client.get("/api/admin/pdfs", params={"page": 2, "limit": 3}, headers=admin_user["headers"])
    body = resp.json()
    assert body["total_count"] == 4
    assert body["total_pages"] == 2
    assert body["current_page"] == 2
    assert body["count"] == 1


def test_admin_list_filters(client, make_pdf, make_user, admin_user):
    other = make_user("admin")
    mine = make_pdf(uploader=admin_user, is_featured=True)
    make_pdf(uploader=other, is_featured=True)
    make_pdf(uploader=admin_user)
    make_pdf(uploader=admin_user, is_featured=True, age_days=60)

    recent = (utcnow() - timedelta(days=7)).date().isoformat()
    resp = client.get(
        "/api/admin/pdfs",
        params={"uploader": admin_user["id"], "is_featured": "true", "start_date": recent},
        headers=admin_user["headers"],
    )
    assert [p["id"] for p in resp.json()["data"]] == [mine]


def test_admin_list_empty_stats(client, admin_user):
    body = client.get("/api/admin/pdfs", headers=admin_user["headers"]).json()
    assert body["total_count"] == 0
    assert body["stats"]["total_pdfs"] == 0


def test_admin_search_matches_file_name(client, make_pdf, admin_user):
    make_pdf(title="Unit 1", file_name="thermo-week3.pdf")
    make_pdf(title="Unit 2", file_name="algebra.pdf")
    resp = client.get("/api/admin/pdfs", params={"search": "thermo"}, headers=admin_user["headers"])
    assert [p["title"] for p in resp.json()["data"]] == ["Unit 1"]


def test_analytics(client, make_pdf, make_user, admin_user, superadmin):
    popular = make_pdf(downloads=50, views=5, semester="1", branch="CSE", average_rating=3.0, total_ratings=9)
    viewed = make_pdf(downloads=1, views=500, semester="1", branch="ECE", uploader=superadmin)
    one_rating = make_pdf(average_rating=5.0, total_ratings=1, semester="2", branch="CSE")
    well_rated = make_pdf(average_rating=4.6, total_ratings=5, semester="2", branch="CSE", age_days=45)
    make_pdf(downloads=999, views=999, is_active=False)

    resp = client.get("/api/admin/pdfs/analytics", headers=admin_user["headers"])
    assert resp.status_code == 200
    data = resp.json()["data"]

    assert data["top_downloaded"][0]["id"] == popular
    assert data["most_viewed"][0]["id"] == viewed
    assert [p["id"] for p in data["top_rated"]] == [well_rated, popular]
    assert one_rating not in [p["id"] for p in data["top_rated"]]

    by_semester = {row["semester"]: row for row in data["by_semester"]}
    assert by_semester["1"] == {"semester": "1", "count": 2, "downloads": 51, "views": 505}
    assert by_semester["2"]["count"] == 2

    assert data["by_branch"][0] == {"branch": "CSE", "count": 3, "downloads": 50, "views": 5}

    uploaders = {row["user"]["id"]: row for row in data["top_uploaders"]}
    assert uploaders[admin_user["id"]]["upload_count"] == 3
    assert uploaders[superadmin["id"]]["total_views"] == 500
    assert data["top_uploaders"][0]["user"]["id"] == admin_user["id"]

    assert data["recent_upload_count"] == 3


def test_uploaders_lists_admin_tier(client, admin_user, superadmin, student):
    resp = client.get("/api/admin/uploaders", headers=admin_user["headers"])
    ids = {u["id"] for u in resp.json()["data"]}
    assert ids == {admin_user["id"], superadmin["id"]}
