from notifications import AlertKind, NotificationGate


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_second_send_within_cooldown_is_suppressed():
    clock = FakeClock()
    gate = NotificationGate(3600, clock=clock)

    assert gate.should_send(7, AlertKind.threshold) is True
    clock.advance(60)
    assert gate.should_send(7, AlertKind.threshold) is False
    clock.advance(3541)
    assert gate.should_send(7, AlertKind.threshold) is True


def test_suppressed_call_does_not_extend_cooldown():
    clock = FakeClock()
    gate = NotificationGate(3600, clock=clock)

    assert gate.should_send(1, "threshold")
    clock.advance(3000)
    assert not gate.should_send(1, "threshold")
    clock.advance(601)
    assert gate.should_send(1, "threshold")


def test_kinds_and_budgets_have_independent_cooldowns():
    clock = FakeClock()
    gate = NotificationGate(3600, clock=clock)

    assert gate.should_send(1, AlertKind.threshold)
    assert gate.should_send(1, AlertKind.exceeded)
    assert gate.should_send(2, AlertKind.threshold)
    assert not gate.should_send(1, AlertKind.exceeded)


def test_expired_entries_are_evicted():
    clock = FakeClock()
    gate = NotificationGate(3600, clock=clock)
    for budget_id in range(5):
        gate.should_send(budget_id, "threshold")
    assert len(gate) == 5

    clock.advance(3601)
    gate.should_send(99, "exceeded")
    assert len(gate) == 1


def test_store_is_capped():
    clock = FakeClock()
    gate = NotificationGate(3600, max_entries=3, clock=clock)
    for budget_id in range(10):
        clock.advance(1)
        assert gate.should_send(budget_id, "threshold")
    assert len(gate) <= 4
