"""Tests for inbound webhook dispatch."""

import pytest

from flowguard.webhooks.handlers import WebhookRouter


@pytest.fixture
def router(engine_client):
    return WebhookRouter(engine_client)


def _start_data(fake_engine):
    (execution,) = fake_engine.executions.values()
    return execution["workflowId"], execution["data"]["resultData"]["startData"]


def test_registered_types(engine_client):
    assert WebhookRouter(engine_client).get_registered_types() == [
        "calendar-sync",
        "messaging-provider",
        "payment",
        "appointment-confirmation",
    ]


@pytest.mark.asyncio
async def test_unknown_type_is_rejected(router):
    response = await router.handle_webhook("fax", {})

    assert response.success is False
    assert response.message == "Unknown webhook type: fax"
    assert response.errors == ["Unsupported webhook type"]


@pytest.mark.asyncio
async def test_calendar_sync_triggers_sync_workflow(router, fake_engine):
    sync_id = fake_engine.add_workflow("google-calendar-sync")

    response = await router.handle_webhook(
        "calendar-sync", {"resourceId": "r1", "resourceUri": "https://cal/r1", "eventType": "deleted"}
    )

    assert response.success is True
    workflow_id, data = _start_data(fake_engine)
    assert workflow_id == sync_id
    assert data["changeType"] == "deleted"
    assert response.data == {"executionId": "ex-1"}


@pytest.mark.asyncio
async def test_missing_fields_are_reported(router, fake_engine):
    response = await router.handle_webhook("calendar-sync", {"resourceId": "r1"})

    assert response.success is False
    assert response.errors == ["Missing required field: resourceUri"]
    assert fake_engine.executions == {}


@pytest.mark.asyncio
async def test_inactive_target_workflow_fails(router, fake_engine):
    fake_engine.add_workflow("process-payment", active=False)

    response = await router.handle_webhook("payment", {"id": "pay_1", "status": "succeeded"})

    assert response.success is False
    assert response.errors == ["Workflow not found: process-payment"]


@pytest.mark.asyncio
async def test_payment_maps_metadata(router, fake_engine):
    fake_engine.add_workflow("process-payment")

    response = await router.handle_webhook(
        "payment",
        {
            "id": "pay_1",
            "status": "succeeded",
            "amount": 15000,
            "currency": "BRL",
            "metadata": {"patient_id": "p1", "appointment_id": "a1"},
        },
    )

    assert response.success is True
    _, data = _start_data(fake_engine)
    assert data["paymentId"] == "pay_1"
    assert data["patientId"] == "p1"
    assert data["appointmentId"] == "a1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "action, workflow_name",
    [
        ("confirm", "appointment-confirmation"),
        ("cancel", "appointment-cancellation"),
        ("reschedule", "appointment-rescheduling"),
    ],
)
async def test_confirmation_actions(router, fake_engine, action, workflow_name):
    target = fake_engine.add_workflow(workflow_name)

    response = await router.handle_webhook(
        "appointment-confirmation", {"appointmentId": "a1", "action": action}
    )

    assert response.success is True
    assert response.data["action"] == action
    workflow_id, data = _start_data(fake_engine)
    assert workflow_id == target
    assert data["source"] == "external"


@pytest.mark.asyncio
async def test_unsupported_confirmation_action(router):
    response = await router.handle_webhook(
        "appointment-confirmation", {"appointmentId": "a1", "action": "postpone"}
    )

    assert response.success is False
    assert response.errors == ["Unsupported action: postpone"]


@pytest.mark.asyncio
async def test_messaging_routes_by_message_type(router, fake_engine):
    interactive_id = fake_engine.add_workflow("whatsapp-interactive-response")
    text_id = fake_engine.add_workflow("whatsapp-text-response")
    payload = {
        "entry": [
            {
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "metadata": {"phone_number_id": "123"},
                            "messages": [
                                {"id": "m1", "from": "5511", "type": "text", "text": {"body": "SIM"}},
                                {"id": "m2", "from": "5511", "type": "interactive", "interactive": {}},
                                {"id": "m3", "from": "5511", "type": "sticker"},
                            ],
                        },
                    },
                    {"field": "message_template_status_update", "value": {"event": "APPROVED"}},
                ]
            }
        ]
    }

    response = await router.handle_webhook("messaging-provider", payload)

    assert response.success is True
    responses = response.data["responses"]
    assert [r["processed"] for r in responses] == [True, True, False]
    triggered = [e["workflowId"] for e in fake_engine.executions.values()]
    assert triggered == [text_id, interactive_id]
    first = next(iter(fake_engine.executions.values()))
    assert first["data"]["resultData"]["startData"]["text"] == "SIM"
