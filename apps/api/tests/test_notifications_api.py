import pytest

from services.records import AuditRequest, NotificationDraft


async def _seed(store, user_id="owner-1"):
    audit = await store.create_audit(AuditRequest(target="https://shop.example.com", user_id=user_id))
    stored = []
    for kind, priority in (("score_alert", "high"), ("category_drop", "medium"), ("critical_issue", "urgent")):
        stored.append(
            await store.create_notification(
                NotificationDraft(
                    user_id=user_id,
                    audit_id=audit.id,
                    target=audit.target,
                    type=kind,
                    priority=priority,
                    title=f"{kind} title",
                    message=f"{kind} message",
                )
            )
        )
    return stored


@pytest.mark.asyncio
async def test_list_notifications_with_counts(api_client):
    client, store = api_client
    await _seed(store)
    await _seed(store, user_id="someone-else")

    response = await client.get("/notifications", params={"user_id": "owner-1"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 3
    assert payload["unread"] == 3
    assert {item["type"] for item in payload["notifications"]} == {"score_alert", "category_drop", "critical_issue"}
    assert all(item["user_id"] == "owner-1" for item in payload["notifications"])


@pytest.mark.asyncio
async def test_list_notifications_filters(api_client):
    client, store = api_client
    await _seed(store)

    urgent = await client.get("/notifications", params={"user_id": "owner-1", "priority": "urgent"})
    paged = await client.get("/notifications", params={"user_id": "owner-1", "limit": 1})
    invalid = await client.get("/notifications", params={"user_id": "owner-1", "type": "weekly_digest"})

    assert [item["type"] for item in urgent.json()["notifications"]] == ["critical_issue"]
    assert len(paged.json()["notifications"]) == 1
    assert paged.json()["total"] == 3
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_mark_read_single_and_many(api_client):
    client, store = api_client
    first, second, third = await _seed(store)

    single = await client.post(f"/notifications/{first.id}/read", params={"user_id": "owner-1"})
    many = await client.post("/notifications/read", json={"user_id": "owner-1", "ids": [first.id, second.id]})
    unread = await client.get("/notifications", params={"user_id": "owner-1", "read": "false"})

    assert single.json() == {"updated": 1}
    assert many.json() == {"updated": 1}
    assert [item["id"] for item in unread.json()["notifications"]] == [third.id]
    assert unread.json()["unread"] == 1


@pytest.mark.asyncio
async def test_mark_all_read(api_client):
    client, store = api_client
    await _seed(store)

    response = await client.post("/notifications/read-all", params={"user_id": "owner-1"})
    listing = await client.get("/notifications", params={"user_id": "owner-1"})

    assert response.json() == {"updated": 3}
    assert listing.json()["unread"] == 0


@pytest.mark.asyncio
async def test_mark_read_of_foreign_notification_is_not_found(api_client):
    client, store = api_client
    foreign = await _seed(store, user_id="someone-else")

    response = await client.post(f"/notifications/{foreign[0].id}/read", params={"user_id": "owner-1"})

    assert response.status_code == 404
    assert (await store.get_notification("someone-else", foreign[0].id)).read is False


@pytest.mark.asyncio
async def test_delete_notifications(api_client):
    client, store = api_client
    first, _, _ = await _seed(store)

    deleted = await client.delete(f"/notifications/{first.id}", params={"user_id": "owner-1"})
    again = await client.delete(f"/notifications/{first.id}", params={"user_id": "owner-1"})
    rest = await client.delete("/notifications", params={"user_id": "owner-1"})

    assert deleted.json() == {"deleted": 1}
    assert again.status_code == 404
    assert rest.json() == {"deleted": 2}


@pytest.mark.asyncio
async def test_preferences_round_trip(api_client):
    client, _ = api_client

    defaults = await client.get("/notifications/preferences", params={"user_id": "owner-1"})
    saved = await client.put(
        "/notifications/preferences",
        params={"user_id": "owner-1"},
        json={"min_score_threshold": 85, "min_score_drop": 3, "realtime_alerts": False},
    )
    reloaded = await client.get("/notifications/preferences", params={"user_id": "owner-1"})
    invalid = await client.put(
        "/notifications/preferences",
        params={"user_id": "owner-1"},
        json={"min_score_threshold": 150},
    )

    assert defaults.json() == {"min_score_threshold": 70, "min_score_drop": 5, "realtime_alerts": True}
    assert saved.status_code == 200
    assert reloaded.json() == {"min_score_threshold": 85, "min_score_drop": 3, "realtime_alerts": False}
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_notification_routes_scoped_by_audit(api_client):
    client, store = api_client
    first = await _seed(store)
    second = await _seed(store)
    first_audit = first[0].audit_id

    listing = await client.get("/notifications", params={"user_id": "owner-1", "audit_id": first_audit})
    marked = await client.post("/notifications/read-all", params={"user_id": "owner-1", "audit_id": first_audit})
    deleted = await client.delete("/notifications", params={"user_id": "owner-1", "audit_id": first_audit})
    rest = await client.get("/notifications", params={"user_id": "owner-1"})

    assert listing.json()["total"] == 3
    assert {item["audit_id"] for item in listing.json()["notifications"]} == {first_audit}
    assert marked.json() == {"updated": 3}
    assert deleted.json() == {"deleted": 3}
    assert rest.json()["total"] == 3
    assert {item["id"] for item in rest.json()["notifications"]} == {item.id for item in second}
    assert rest.json()["unread"] == 3
