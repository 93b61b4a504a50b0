from conftest import ad_payload, fund, login_test_user, make_client, signed_login


def campaign_payload(**overrides):
    payload = {
        "name": "Spring push",
        "description": "Lightning wallet awareness",
        "startDate": "2026-03-01T00:00:00Z",
        "endDate": "2026-04-01T00:00:00Z",
        "budget": 5000,
        "dailyBudget": 500,
        "targetInterests": ["lightning", "bitcoin"],
    }
    payload.update(overrides)
    return payload


def test_create_campaign_status_depends_on_balance(client):
    login_test_user(client)
    unfunded = client.post("/api/campaigns", json=campaign_payload())
    assert unfunded.status_code == 201
    assert unfunded.json()["campaign"]["status"] == "PENDING_FUNDING"

    fund(client, 6000)
    funded = client.post("/api/campaigns", json=campaign_payload(name="Summer push")).json()["campaign"]
    assert funded["status"] == "DRAFT"
    assert funded["targetInterests"] == ["lightning", "bitcoin"]
    assert len(client.get("/api/campaigns").json()["campaigns"]) == 2


def test_create_campaign_missing_fields(client):
    login_test_user(client)
    resp = client.post("/api/campaigns", json={"name": "No dates"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing required fields: name, startDate, budget"


def test_campaign_end_before_start_rejected(client):
    login_test_user(client)
    resp = client.post("/api/campaigns", json=campaign_payload(endDate="2026-01-01T00:00:00Z"))
    assert resp.status_code == 400


def test_viewer_cannot_manage_campaigns(client):
    signed_login(client)
    assert client.post("/api/campaigns", json=campaign_payload()).status_code == 403
    assert client.get("/api/campaigns").status_code == 403


def test_update_and_status_change(client):
    login_test_user(client)
    campaign_id = client.post("/api/campaigns", json=campaign_payload()).json()["campaign"]["id"]

    updated = client.put(f"/api/campaigns/{campaign_id}", json={"name": "Renamed", "budget": 7000}).json()["campaign"]
    assert (updated["name"], updated["budget"]) == ("Renamed", 7000)

    active = client.patch(f"/api/campaigns/{campaign_id}", json={"status": "ACTIVE"})
    assert active.json()["campaign"]["status"] == "ACTIVE"
    bogus = client.patch(f"/api/campaigns/{campaign_id}", json={"status": "PARTY"})
    assert bogus.status_code == 400
    assert bogus.json()["message"] == "Invalid status"


def test_campaigns_are_private(client):
    login_test_user(client)
    campaign_id = client.post("/api/campaigns", json=campaign_payload()).json()["campaign"]["id"]
    other = make_client()
    login_test_user(other, "frank")
    assert other.get(f"/api/campaigns/{campaign_id}").status_code == 404
    assert other.delete(f"/api/campaigns/{campaign_id}").status_code == 404


def test_campaign_metrics_and_delete_keeps_ads(client):
    login_test_user(client)
    fund(client, 3000)
    campaign_id = client.post("/api/campaigns", json=campaign_payload(budget=2000)).json()["campaign"]["id"]
    ad = client.post("/api/ads", json=ad_payload(campaignId=campaign_id)).json()["ad"]
    assert ad["campaignId"] == campaign_id

    metrics = client.get(f"/api/campaigns/{campaign_id}/metrics").json()["metrics"]
    assert metrics == {
        "impressions": 0,
        "clicks": 0,
        "conversions": 0,
        "ctr": 0,
        "spentBudget": 0,
        "remainingBudget": 2000,
    }

    assert client.delete(f"/api/campaigns/{campaign_id}").status_code == 204
    assert client.get(f"/api/campaigns/{campaign_id}").status_code == 404
    orphan = client.get(f"/api/ads/{ad['id']}").json()["ad"]
    assert orphan["campaignId"] is None


def test_ad_cannot_join_foreign_campaign(client):
    login_test_user(client)
    campaign_id = client.post("/api/campaigns", json=campaign_payload()).json()["campaign"]["id"]
    other = make_client()
    login_test_user(other, "grace")
    fund(other, 2000)
    assert other.post("/api/ads", json=ad_payload(campaignId=campaign_id)).status_code == 404


def test_ads_in_inactive_campaign_are_not_served(client):
    login_test_user(client)
    fund(client, 3000)
    campaign_id = client.post("/api/campaigns", json=campaign_payload()).json()["campaign"]["id"]

    publisher = make_client()
    login_test_user(publisher, "pub")
    space = publisher.post(
        "/api/spaces",
        json={
            "name": "Footer",
            "description": "Footer slot",
            "website": "https://pub.example.com",
            "dimensions": "728x90",
            "allowedAdTypes": ["text"],
            "contentCategory": "finance",
        },
    ).json()["space"]
    placed = client.post("/api/ads", json=ad_payload(campaignId=campaign_id, targetedAdSpaces=[space["id"]])).json()["ad"]
    publisher.post("/api/publisher/approval-action", json={"placementId": placed["placements"][0]["id"], "action": "approve"})

    assert client.get("/api/ads/serve", params={"format": "text"}).status_code == 204
    client.patch(f"/api/campaigns/{campaign_id}", json={"status": "ACTIVE"})
    assert client.get("/api/ads/serve", params={"format": "text"}).status_code == 200
