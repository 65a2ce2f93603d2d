from conftest import as_user


def _payload(username, role="user", **extra):
    return {"username": username, "email": f"{username}@example.com", "password": "s3cret-pass", "role": role, **extra}


def test_admin_creates_customer_in_own_company(client, admin):
    response = client.post("/api/users", json=_payload("new_cust", first_name="Meera"), headers=as_user(admin))
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["assigned_company_id"] == str(admin.id)
    assert body["role"] == "user"
    assert "hashed_password" not in body


def test_admin_cannot_pick_another_company(client, admin, other_admin):
    response = client.post(
        "/api/users",
        json=_payload("sneaky", assigned_company_id=str(other_admin.id)),
        headers=as_user(admin),
    )
    assert response.json()["assigned_company_id"] == str(admin.id)


def test_admin_cannot_grant_admin_roles(client, admin):
    response = client.post("/api/users", json=_payload("boss", role="manager"), headers=as_user(admin))
    assert response.status_code == 403


def test_duplicate_username_conflicts(client, admin, customer):
    response = client.post("/api/users", json=_payload(customer.username), headers=as_user(admin))
    assert response.status_code == 409


def test_list_is_company_scoped(client, admin, other_admin, customer, other_customer, engineer):
    names = {u["username"] for u in client.get("/api/users", headers=as_user(admin)).json()}
    assert names == {customer.username, engineer.username}

    engineers = client.get("/api/users?role=engineer", headers=as_user(admin)).json()
    assert [u["username"] for u in engineers] == [engineer.username]


def test_non_admin_cannot_manage_users(client, customer):
    assert client.get("/api/users", headers=as_user(customer)).status_code == 403


def test_update_and_disable_user(client, admin, engineer):
    response = client.put(
        f"/api/users/{engineer.id}", json={"phone_number": "+19999", "disabled": True}, headers=as_user(admin)
    )
    assert response.status_code == 200
    assert response.json()["phone_number"] == "+19999"
    assert response.json()["disabled"] is True


def test_other_company_user_is_not_found(client, admin, other_customer):
    response = client.put(f"/api/users/{other_customer.id}", json={"first_name": "X"}, headers=as_user(admin))
    assert response.status_code == 404


def test_delete_user_with_complaints_conflicts(client, admin, customer):
    client.post(
        "/api/complaints",
        json={"title": "t", "description": "d", "issue_type": "x", "type": "WIFI"},
        headers=as_user(customer),
    )
    assert client.delete(f"/api/users/{customer.id}", headers=as_user(admin)).status_code == 409


def test_delete_user(client, admin, engineer):
    assert client.delete(f"/api/users/{engineer.id}", headers=as_user(admin)).status_code == 204
    assert client.get("/api/users", headers=as_user(admin)).json() == []
