from cropscan.models import Role

from conftest import auth_header, make_user


def test_admin_stats_and_departments(client, db, admin):
    make_user(db, Role.ADMIN, email="ops@crophealth.com", name="Ops", department="Operations")
    make_user(db, Role.ADMIN, email="nodept@crophealth.com", name="No Dept")

    r = client.get("/api/v1/admin/stats", headers=auth_header(admin))
    assert r.status_code == 200
    stats = r.json()["data"]
    assert stats["total_admins"] == 3
    assert stats["department_distribution"] == {
        "Agriculture Technology": 1, "Operations": 1, "Unassigned": 1,
    }

    r = client.get("/api/v1/admin/department/operations", headers=auth_header(admin))
    assert [a["email"] for a in r.json()["data"]] == ["ops@crophealth.com"]


def test_list_and_get_admin(client, db, admin, farmer):
    r = client.get("/api/v1/admin/", params={"search": "system"}, headers=auth_header(admin))
    assert r.status_code == 200
    assert [a["id"] for a in r.json()["data"]] == [admin.id]

    r = client.get(f"/api/v1/admin/{admin.id}", headers=auth_header(admin))
    assert r.json()["data"]["admin_profile"]["department"] == "Agriculture Technology"

    assert client.get(f"/api/v1/admin/{farmer.id}", headers=auth_header(admin)).status_code == 404


def test_update_own_admin_profile(client, admin):
    r = client.patch("/api/v1/admin/", json={"designation": "Lead Agronomist"}, headers=auth_header(admin))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["designation"] == "Lead Agronomist"
    assert data["department"] == "Agriculture Technology"


def test_admin_routes_reject_farmers(client, farmer):
    assert client.get("/api/v1/admin/stats", headers=auth_header(farmer)).status_code == 403
