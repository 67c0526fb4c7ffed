import pytest

from fleetledger.services.saga_service import SagaTransaction


class Boom(RuntimeError):
    pass


def _raise(exc):
    raise exc


def test_actions_run_in_order_and_return_results():
    calls = []
    saga = SagaTransaction(name="ok")
    saga.add(lambda: calls.append("a") or 1, lambda: calls.append("undo a"))
    saga.add(lambda: calls.append("b") or 2, lambda: calls.append("undo b"))

    assert saga.execute() == [1, 2]
    assert calls == ["a", "b"]


def test_failure_compensates_completed_steps_in_reverse():
    calls = []
    saga = SagaTransaction(name="fails")
    saga.add(lambda: calls.append("a"), lambda: calls.append("undo a"))
    saga.add(lambda: calls.append("b"), lambda: calls.append("undo b"))
    saga.add(lambda: _raise(Boom("step c")), lambda: calls.append("undo c"))

    with pytest.raises(Boom, match="step c"):
        saga.execute()

    assert calls == ["a", "b", "undo b", "undo a"]
    assert saga.compensation_failures == []


def test_failed_compensation_is_recorded_and_others_still_run():
    calls = []
    saga = SagaTransaction(name="messy")
    saga.add(lambda: calls.append("a"), lambda: calls.append("undo a"))
    saga.add(lambda: calls.append("b"), lambda: _raise(RuntimeError("undo b failed")), label="second")
    saga.add(lambda: _raise(Boom("original")), lambda: None)

    with pytest.raises(Boom, match="original"):
        saga.execute()

    assert calls == ["a", "b", "undo a"]
    assert len(saga.compensation_failures) == 1
    failure = saga.compensation_failures[0]
    assert failure.step_index == 1
    assert failure.label == "second"
    assert str(failure.error) == "undo b failed"


def test_first_step_failure_compensates_nothing():
    calls = []
    saga = SagaTransaction()
    saga.add(lambda: _raise(Boom("first")), lambda: calls.append("undo first"))

    with pytest.raises(Boom):
        saga.execute()

    assert calls == []
