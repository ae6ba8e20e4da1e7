"""Tests for Signal and OnlineStatus."""

from fetchkit import OnlineStatus, Signal


class TestSignal:
    """Tests for Signal."""

    def test_emit_and_unsubscribe(self) -> None:
        signal = Signal("focus")
        received: list[tuple] = []
        unsubscribe = signal.subscribe(lambda *args: received.append(args))

        signal.emit(1, 2)
        unsubscribe()
        signal.emit(3)

        assert received == [(1, 2)]
        assert len(signal) == 0
        unsubscribe()

    def test_failing_listener_does_not_stop_others(self) -> None:
        signal = Signal()
        received: list[str] = []

        def broken() -> None:
            raise RuntimeError("listener bug")

        signal.subscribe(broken)
        signal.subscribe(lambda: received.append("ok"))
        signal.emit()
        assert received == ["ok"]


class TestOnlineStatus:
    """Tests for OnlineStatus."""

    def test_notifies_on_transitions_only(self) -> None:
        status = OnlineStatus()
        changes: list[bool] = []
        status.add_listener(changes.append)

        status.set_online(True)
        status.set_online(False)
        status.set_online(False)
        status.set_online(True)

        assert changes == [False, True]
        assert status.is_online()

    def test_initial_state(self) -> None:
        assert OnlineStatus(online=False).is_online() is False
