from conftest import ad_payload, fund, login_test_user, make_client, signed_login, space_payload


def test_create_space_makes_creator_publisher(client):
    signed_login(client)
    resp = client.post("/api/spaces", json=space_payload())
    assert resp.status_code == 201
    body = resp.json()
    assert body["currentRole"] == "publisher"
    assert body["space"]["allowedAdTypes"] == ["text", "text-image"]
    assert "publisher" in client.get("/api/roles").json()["availableRoles"]


def test_create_space_missing_fields(client):
    login_test_user(client)
    resp = client.post("/api/spaces", json={"name": "Half a space"})
    assert resp.status_code == 400
    assert "contentCategory" in resp.json()["details"]["fields"]


def test_space_min_bids_must_be_positive(client):
    login_test_user(client)
    resp = client.post("/api/spaces", json=space_payload(minBidPerClick=-5))
    assert resp.status_code == 400


def test_update_and_delete_space(client):
    login_test_user(client)
    space_id = client.post("/api/spaces", json=space_payload()).json()["space"]["id"]
    updated = client.put(f"/api/spaces/{space_id}", json={"name": "Header", "contentTags": "lightning"}).json()["space"]
    assert (updated["name"], updated["contentTags"]) == ("Header", ["lightning"])
    assert client.delete(f"/api/spaces/{space_id}").json() == {"success": True}
    assert client.get(f"/api/spaces/{space_id}").status_code == 404


def test_spaces_listing_scopes_placements_to_owner(client):
    login_test_user(client)
    client.post("/api/spaces", json=space_payload())
    other = make_client()
    login_test_user(other, "heidi")

    assert other.get("/api/spaces").json()["spaces"] == []
    everything = other.get("/api/spaces", params={"all": True}).json()["spaces"]
    assert len(everything) == 1
    assert "placements" not in everything[0]


def test_foreign_space_is_forbidden(client):
    login_test_user(client)
    space_id = client.post("/api/spaces", json=space_payload()).json()["space"]["id"]
    other = make_client()
    login_test_user(other, "ivan")
    assert other.get(f"/api/spaces/{space_id}").status_code == 403
    assert other.put(f"/api/spaces/{space_id}", json={"name": "Mine now"}).status_code == 403


def setup_placement(publisher, advertiser) -> dict:
    login_test_user(publisher, "publisher")
    space_id = publisher.post("/api/spaces", json=space_payload()).json()["space"]["id"]
    login_test_user(advertiser, "advertiser")
    fund(advertiser, 2000)
    ad = advertiser.post("/api/ads", json=ad_payload(targetedAdSpaces=[space_id])).json()["ad"]
    return ad["placements"][0]


def test_publisher_sees_pending_placements(client):
    advertiser = make_client()
    placement = setup_placement(client, advertiser)
    pending = client.get("/api/publisher/placements", params={"status": "PENDING"}).json()["placements"]
    assert [p["id"] for p in pending] == [placement["id"]]
    assert pending[0]["ad"]["title"] == "Stack sats daily"
    assert client.get("/api/publisher/placements", params={"status": "APPROVED"}).json()["placements"] == []
    assert client.get("/api/publisher/placements", params={"status": "MAYBE"}).status_code == 400


def test_reject_placement_keeps_ad_pending(client):
    advertiser = make_client()
    placement = setup_placement(client, advertiser)
    resp = client.post(
        "/api/publisher/approval-action",
        json={"placementId": placement["id"], "action": "reject", "reason": "Off topic"},
    )
    assert resp.status_code == 200
    assert resp.json()["message"] == "Ad placement rejected successfully"
    assert resp.json()["placement"]["rejectionReason"] == "Off topic"
    assert advertiser.get(f"/api/ads/{placement['adId']}").json()["ad"]["status"] == "PENDING"


def test_only_space_owner_can_approve(client):
    advertiser = make_client()
    placement = setup_placement(client, advertiser)
    resp = advertiser.post("/api/publisher/approval-action", json={"placementId": placement["id"], "action": "approve"})
    assert resp.status_code == 403


def test_approval_action_validation(client):
    login_test_user(client)
    assert client.post("/api/publisher/approval-action", json={"action": "approve"}).status_code == 400
    assert client.post("/api/publisher/approval-action", json={"placementId": "x", "action": "shrug"}).status_code == 400
    assert client.post("/api/publisher/approval-action", json={"placementId": "x", "action": "approve"}).status_code == 404


def test_placements_require_publisher_role_outside_test_mode(client):
    signed_login(client)
    assert client.get("/api/publisher/placements").status_code == 403


def test_deleting_space_removes_placements(client):
    advertiser = make_client()
    placement = setup_placement(client, advertiser)
    client.delete(f"/api/spaces/{placement['spaceId']}")
    ad = advertiser.get(f"/api/ads/{placement['adId']}").json()["ad"]
    assert ad["placements"] == []
