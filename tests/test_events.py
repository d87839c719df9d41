import pytest

from crypto_quant.monitoring import AlertManager, AlertSeverity, EventBus, EventType


def test_publish_reaches_subscribers():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.POSITION_CLOSED, received.append)

    event = bus.publish(EventType.POSITION_CLOSED, symbol="BTCUSDT", pnl=12.5, reason="Take profit")

    assert received == [event]
    assert event['pnl'] == 12.5
    assert event.sequence == 1


def test_subscribers_only_see_their_type():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.ENGINE_STARTED, received.append)

    bus.publish(EventType.ENGINE_STOPPED)

    assert received == []


def test_missing_payload_fields_rejected():
    bus = EventBus()
    with pytest.raises(ValueError, match="pnl"):
        bus.publish(EventType.POSITION_CLOSED, symbol="BTCUSDT", reason="Stop loss")
    assert bus.history() == []


def test_failing_handler_does_not_block_others(caplog):
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("handler bug")

    bus.subscribe(EventType.ENGINE_STARTED, broken)
    bus.subscribe(EventType.ENGINE_STARTED, received.append)

    bus.publish(EventType.ENGINE_STARTED)

    assert len(received) == 1
    assert "handler bug" in caplog.text


def test_subscribe_all_and_unsubscribe():
    bus = EventBus()
    everything = []
    starts = []
    bus.subscribe_all(everything.append)
    bus.subscribe(EventType.ENGINE_STARTED, starts.append)

    bus.publish(EventType.ENGINE_STARTED)
    bus.unsubscribe(EventType.ENGINE_STARTED, starts.append)
    bus.publish(EventType.ENGINE_STARTED)
    bus.publish(EventType.DAILY_RESET, date="2024-01-02")

    assert len(starts) == 1
    assert [e.type for e in everything] == [
        EventType.ENGINE_STARTED, EventType.ENGINE_STARTED, EventType.DAILY_RESET
    ]


def test_history_is_bounded_and_filterable():
    bus = EventBus(history_size=3)
    for _ in range(5):
        bus.publish(EventType.ENGINE_STARTED)
    bus.publish(EventType.ENGINE_STOPPED)

    assert len(bus.history()) == 3
    assert [e.sequence for e in bus.history(EventType.ENGINE_STARTED)] == [4, 5]

    bus.clear_history()
    assert bus.history() == []


def test_alert_manager_routes_bus_events():
    bus = EventBus()
    alerts = AlertManager(bus)
    seen = []
    alerts.add_handler(seen.append)

    bus.publish(EventType.CIRCUIT_BREAKER_TRIPPED, reason="3 consecutive losses", consecutive_losses=3)
    bus.publish(EventType.EMERGENCY_STOP, reason="Exchange outage")
    bus.publish(EventType.TRADE_ERROR, symbol="BTCUSDT", error="timeout")

    assert [a.severity for a in seen] == [
        AlertSeverity.CRITICAL, AlertSeverity.EMERGENCY, AlertSeverity.WARNING
    ]
    assert alerts.get_recent_alerts(severity=AlertSeverity.EMERGENCY)[0].message == "Trading halted: Exchange outage"

    alerts.acknowledge_all()
    assert all(a.acknowledged for a in alerts.get_recent_alerts())


def test_alert_history_is_capped():
    alerts = AlertManager(max_alerts=2)
    for i in range(4):
        alerts.send_alert(AlertSeverity.INFO, "Test", f"message {i}")

    assert [a.message for a in alerts.get_recent_alerts()] == ["message 2", "message 3"]
