import pytest

from services.session_token import create_session_token

TEST_USER_ID = "owner-user"
TEST_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(TEST_USER_ID, 'owner@example.com')['token']}"}


@pytest.mark.asyncio
async def test_business_setup_grants_welcome_credits(api_client):
    headers = TEST_AUTH_HEADER

    missing = await api_client.get("/business", headers=headers)
    assert missing.status_code == 404

    created = await api_client.post("/business", json={"business_name": "Acme Ads"}, headers=headers)
    assert created.status_code == 201
    body = created.json()
    assert body["business_name"] == "Acme Ads"
    assert body["credits"] == 10
    assert body["subscription_plan"] == "FREE"

    duplicate = await api_client.post("/business", json={"business_name": "Acme Again"}, headers=headers)
    assert duplicate.status_code == 409

    history = await api_client.get("/credits/history", headers=headers)
    assert history.status_code == 200
    items = history.json()["items"]
    assert [(item["transaction_type"], item["amount"], item["balance_after"]) for item in items] == [("bonus", 10, 10)]


@pytest.mark.asyncio
async def test_credit_routes_require_bearer_token(api_client):
    response = await api_client.get("/credits")
    assert response.status_code == 401

    bad = await api_client.get("/credits", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_balance_check_and_consume(api_client, seed_business):
    await seed_business(credits=12)
    headers = TEST_AUTH_HEADER

    balance = await api_client.get("/credits", headers=headers)
    assert balance.status_code == 200
    assert balance.json()["credits"] == 12
    assert balance.json()["plan"] == "FREE"

    check = await api_client.post("/credits/check", json={"action": "video_generation"}, headers=headers)
    assert check.status_code == 200
    assert check.json() == {"has_sufficient_credits": True, "current_credits": 12, "required_credits": 10}

    consumed = await api_client.post(
        "/credits/consume",
        json={"action": "video_generation", "metadata": {"source": "editor"}},
        headers=headers,
    )
    assert consumed.status_code == 200
    assert consumed.json() == {"new_balance": 2, "credits_consumed": 10}

    again = await api_client.post("/credits/consume", json={"action": "video_generation"}, headers=headers)
    assert again.status_code == 402
    assert "Required: 10, available: 2" in again.json()["detail"]

    after = await api_client.get("/credits", headers=headers)
    assert after.json()["credits"] == 2


@pytest.mark.asyncio
async def test_unknown_action_is_rejected(api_client, seed_business):
    await seed_business(credits=12)
    headers = TEST_AUTH_HEADER

    check = await api_client.post("/credits/check", json={"action": "teleport"}, headers=headers)
    assert check.status_code == 400

    consume = await api_client.post("/credits/consume", json={"action": "teleport"}, headers=headers)
    assert consume.status_code == 400
    assert (await api_client.get("/credits", headers=headers)).json()["credits"] == 12


@pytest.mark.asyncio
async def test_credit_routes_without_business_return_404(api_client):
    response = await api_client.post("/credits/consume", json={"action": "script_generation"}, headers=TEST_AUTH_HEADER)
    assert response.status_code == 404
    assert "business setup" in response.json()["detail"]


@pytest.mark.asyncio
async def test_history_analytics_and_plans(api_client, seed_business):
    await seed_business(credits=30)
    headers = TEST_AUTH_HEADER
    for action in ("image_generation", "script_generation", "image_generation"):
        response = await api_client.post("/credits/consume", json={"action": action}, headers=headers)
        assert response.status_code == 200

    page = await api_client.get("/credits/history", params={"limit": 2, "offset": 0}, headers=headers)
    assert page.status_code == 200
    assert [item["balance_after"] for item in page.json()["items"]] == [25, 27]

    analytics = await api_client.get("/credits/analytics", params={"days": 7}, headers=headers)
    assert analytics.status_code == 200
    usage = analytics.json()["usage"]
    assert len(usage) == 1
    assert list(usage.values())[0] == {"image_generation": 4, "script_generation": 1}

    plans = await api_client.get("/credits/plans")
    assert plans.status_code == 200
    payload = plans.json()
    assert payload["plans"]["STARTER"]["monthly_credits"] == 100
    assert payload["costs"]["video_generation"] == 10
