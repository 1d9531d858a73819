"""
Catalog administration endpoints.
"""

import pytest


@pytest.fixture
def leave_type(client, auth, org):
    response = client.post(
        "/api/approval-types",
        json={"code": "leave", "name": "Leave", "sort": 1},
        headers=auth(org.admin),
    )
    assert response.status_code == 201
    return response.json()


def _flow_body(type_id, org, name="standard"):
    return {
        "type_id": type_id,
        "name": name,
        "description": "manager then finance",
        "nodes": [
            {"name": "finance", "kind": "role", "order": 2, "participant_id": org.finance_role},
            {"name": "manager", "kind": "department_head", "order": 1},
        ],
    }


class TestTypes:

    def test_create_and_list(self, client, auth, org, leave_type):
        listed = client.get("/api/approval-types", headers=auth(org.admin)).json()
        assert [t["code"] for t in listed] == ["leave"]
        assert leave_type["is_active"] is True

    def test_duplicate_code(self, client, auth, org, leave_type):
        response = client.post(
            "/api/approval-types",
            json={"code": "leave", "name": "Again"},
            headers=auth(org.admin),
        )
        assert response.status_code == 409

    def test_update_and_filter_inactive(self, client, auth, org, leave_type):
        updated = client.put(
            f"/api/approval-types/{leave_type['id']}",
            json={"name": "Time off", "is_active": False},
            headers=auth(org.admin),
        )
        assert updated.status_code == 200
        assert updated.json()["name"] == "Time off"
        active = client.get(
            "/api/approval-types?only_active=true", headers=auth(org.admin),
        ).json()
        assert active == []

    def test_delete_type_in_use(self, client, auth, org, leave_type):
        client.post(
            "/api/approval-flows", json=_flow_body(leave_type["id"], org), headers=auth(org.admin),
        )
        response = client.delete(
            f"/api/approval-types/{leave_type['id']}", headers=auth(org.admin),
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "IN_USE"

    def test_delete_unused_type(self, client, auth, org, leave_type):
        response = client.delete(
            f"/api/approval-types/{leave_type['id']}", headers=auth(org.admin),
        )
        assert response.status_code == 204
        assert client.get("/api/approval-types", headers=auth(org.admin)).json() == []


class TestFlows:

    def test_create_returns_nodes_in_order(self, client, auth, org, leave_type):
        response = client.post(
            "/api/approval-flows", json=_flow_body(leave_type["id"], org), headers=auth(org.admin),
        )
        assert response.status_code == 201
        flow = response.json()
        assert [n["order"] for n in flow["nodes"]] == [1, 2]
        assert [n["kind"] for n in flow["nodes"]] == ["department_head", "role"]

        fetched = client.get(f"/api/approval-flows/{flow['id']}", headers=auth(org.admin))
        assert fetched.json() == flow

    def test_bad_shape(self, client, auth, org, leave_type):
        body = _flow_body(leave_type["id"], org)
        body["nodes"][0]["order"] = 1
        response = client.post("/api/approval-flows", json=body, headers=auth(org.admin))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    def test_empty_node_set(self, client, auth, org, leave_type):
        body = _flow_body(leave_type["id"], org)
        body["nodes"] = []
        response = client.post("/api/approval-flows", json=body, headers=auth(org.admin))
        assert response.status_code == 400

    def test_unknown_node_kind(self, client, auth, org, leave_type):
        body = _flow_body(leave_type["id"], org)
        body["nodes"][0]["kind"] = "committee"
        response = client.post("/api/approval-flows", json=body, headers=auth(org.admin))
        assert response.status_code == 400

    def test_editing_inactive_flow_conflicts(self, client, auth, org, leave_type):
        flow = client.post(
            "/api/approval-flows", json=_flow_body(leave_type["id"], org), headers=auth(org.admin),
        ).json()
        client.put(
            f"/api/approval-flows/{flow['id']}",
            json={"is_active": False},
            headers=auth(org.admin),
        )

        response = client.put(
            f"/api/approval-flows/{flow['id']}",
            json={"name": "renamed"},
            headers=auth(org.admin),
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "FLOW_INACTIVE"

        reactivated = client.put(
            f"/api/approval-flows/{flow['id']}",
            json={"is_active": True, "name": "renamed"},
            headers=auth(org.admin),
        )
        assert reactivated.status_code == 200
        assert reactivated.json()["name"] == "renamed"
        assert reactivated.json()["is_active"] is True

    def test_replace_nodes_refused_while_in_use(self, client, auth, org, leave_type):
        flow = client.post(
            "/api/approval-flows", json=_flow_body(leave_type["id"], org), headers=auth(org.admin),
        ).json()
        submitted = client.post(
            "/api/approvals/leave", json={"title": "Leave"}, headers=auth(org.alice),
        )
        assert submitted.status_code == 201

        response = client.put(
            f"/api/approval-flows/{flow['id']}/nodes",
            json={"nodes": [{"name": "ceo", "kind": "fixed_person", "order": 1,
                             "participant_id": org.ceo}]},
            headers=auth(org.admin),
        )
        assert response.status_code == 409

        deleted = client.delete(f"/api/approval-flows/{flow['id']}", headers=auth(org.admin))
        assert deleted.status_code == 409

    def test_replace_nodes(self, client, auth, org, leave_type):
        flow = client.post(
            "/api/approval-flows", json=_flow_body(leave_type["id"], org), headers=auth(org.admin),
        ).json()
        response = client.put(
            f"/api/approval-flows/{flow['id']}/nodes",
            json={"nodes": [{"name": "ceo", "kind": "fixed_person", "order": 1,
                             "participant_id": org.ceo}]},
            headers=auth(org.admin),
        )
        assert response.status_code == 200
        assert [(n["kind"], n["participant_id"]) for n in response.json()] == [
            ("fixed_person", org.ceo),
        ]

    def test_clone(self, client, auth, org, leave_type):
        flow = client.post(
            "/api/approval-flows", json=_flow_body(leave_type["id"], org), headers=auth(org.admin),
        ).json()
        response = client.post(
            f"/api/approval-flows/{flow['id']}/clone",
            json={"name": "copy"},
            headers=auth(org.admin),
        )
        assert response.status_code == 201
        clone = response.json()
        assert clone["id"] != flow["id"]
        assert clone["name"] == "copy"
        assert [(n["kind"], n["order"]) for n in clone["nodes"]] == [
            (n["kind"], n["order"]) for n in flow["nodes"]
        ]

    def test_delete_and_list(self, client, auth, org, leave_type):
        flow = client.post(
            "/api/approval-flows", json=_flow_body(leave_type["id"], org), headers=auth(org.admin),
        ).json()
        assert client.delete(
            f"/api/approval-flows/{flow['id']}", headers=auth(org.admin),
        ).status_code == 204
        assert client.get(
            f"/api/approval-flows?type_id={leave_type['id']}", headers=auth(org.admin),
        ).json() == []
        assert client.get(
            f"/api/approval-flows/{flow['id']}", headers=auth(org.admin),
        ).status_code == 404


class TestCatalogAdmin:

    def test_plain_user_cannot_create_type(self, client, auth, org):
        response = client.post(
            "/api/approval-types", json={"code": "x", "name": "X"}, headers=auth(org.alice),
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"
        assert client.get("/api/approval-types", headers=auth(org.alice)).json() == []

    @pytest.mark.parametrize("method, path, body", [
        ("put", "/api/approval-types/{type_id}", {"name": "Renamed"}),
        ("delete", "/api/approval-types/{type_id}", None),
        ("post", "/api/approval-flows", "flow"),
        ("put", "/api/approval-flows/{flow_id}", {"name": "renamed"}),
        ("delete", "/api/approval-flows/{flow_id}", None),
        ("put", "/api/approval-flows/{flow_id}/nodes", "nodes"),
        ("post", "/api/approval-flows/{flow_id}/clone", {"name": "copy"}),
    ])
    def test_plain_user_cannot_write(self, client, auth, org, leave_type, method, path, body):
        flow = client.post(
            "/api/approval-flows", json=_flow_body(leave_type["id"], org), headers=auth(org.admin),
        ).json()
        if body == "flow":
            body = _flow_body(leave_type["id"], org, name="other")
        elif body == "nodes":
            body = {"nodes": [{"name": "ceo", "kind": "fixed_person", "order": 1,
                               "participant_id": org.ceo}]}
        url = path.format(type_id=leave_type["id"], flow_id=flow["id"])

        response = client.request(method, url, json=body, headers=auth(org.carol))

        assert response.status_code == 403
        after = client.get(f"/api/approval-flows/{flow['id']}", headers=auth(org.carol))
        assert after.json() == flow

    def test_plain_user_can_read(self, client, auth, org, leave_type):
        listed = client.get("/api/approval-types", headers=auth(org.carol))
        assert listed.status_code == 200
        assert [t["code"] for t in listed.json()] == ["leave"]
