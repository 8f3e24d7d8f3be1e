# Overview: Pytest coverage for the compensating-action runner.

import pytest

from commerce.services.saga import Saga


def test_compensates_in_reverse_order(app):
    undone = []

    with pytest.raises(RuntimeError):
        with Saga("demo") as saga:
            saga.run("a", lambda: 1, lambda r: undone.append(("a", r)))
            saga.run("b", lambda: 2, lambda r: undone.append(("b", r)))
            raise RuntimeError("boom")

    assert undone == [("b", 2), ("a", 1)]
    assert saga.compensated is True


def test_failed_action_is_not_compensated(app):
    undone = []

    def _fail():
        raise ValueError("step failed")

    with pytest.raises(ValueError):
        with Saga("demo") as saga:
            saga.run("a", lambda: "ok", lambda r: undone.append("a"))
            saga.run("b", _fail, lambda r: undone.append("b"))

    assert undone == ["a"]


def test_failing_compensation_does_not_stop_the_rest(app):
    undone = []

    def _broken(_):
        raise RuntimeError("cannot undo")

    saga = Saga("demo")
    saga.run("a", lambda: None, lambda r: undone.append("a"))
    saga.run("b", lambda: None, _broken)
    saga.run("c", lambda: None, lambda r: undone.append("c"))

    failed = saga.compensate()

    assert failed == ["b"]
    assert undone == ["c", "a"]
    assert saga.steps == []


def test_success_keeps_steps(app):
    with Saga("demo") as saga:
        value = saga.run("a", lambda: 42, lambda r: None)

    assert value == 42
    assert saga.compensated is False
    assert len(saga.steps) == 1
