from __future__ import annotations

import time

import dataclasses

import pytest

from contract_auditor.agents.dispatcher import ProviderDispatcher
from contract_auditor.errors import InsufficientProviders
from contract_auditor.models.finding import Confidence
from contract_auditor.models.provider import ProviderDescriptor
from contract_auditor.observability.logger import EventLogger


class _StaticProvider:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def invoke(self, target, instructions, time_budget):
        self.calls.append((target, instructions, time_budget))
        return self.response


class _RaisingProvider:
    def invoke(self, target, instructions, time_budget):
        raise ConnectionError("upstream unavailable")


class _SlowProvider:
    def __init__(self, delay: float):
        self.delay = delay

    def invoke(self, target, instructions, time_budget):
        time.sleep(self.delay)
        return {"securityScore": 90, "riskLevel": "Safe", "keyFindings": []}


def _make_descriptor(provider_id: str, timeout_sec: float = 5.0) -> ProviderDescriptor:
    return ProviderDescriptor(
        provider_id=provider_id,
        specialty="security",
        instructions=f"instructions for {provider_id}",
        timeout_sec=timeout_sec,
    )


def _good_payload(title: str = "Reentrancy") -> dict:
    return {
        "keyFindings": [{"severity": "HIGH", "title": title, "location": "withdraw()"}],
        "securityScore": 70,
        "riskLevel": "High Risk",
    }


def test_dispatch_collects_every_provider():
    providers = {
        "p1": _StaticProvider(_good_payload()),
        "p2": _StaticProvider(_good_payload()),
        "p3": _StaticProvider("not json at all"),
    }
    descriptors = [_make_descriptor(pid) for pid in ("p1", "p2", "p3")]
    events = EventLogger(None)
    outcome = ProviderDispatcher(providers, event_logger=events).dispatch("contract A {}", descriptors)

    assert [r.provider_id for r in outcome.successful] == ["p1", "p2"]
    assert [r.provider_id for r in outcome.failed] == ["p3"]
    assert "invalid_output" in outcome.failed[0].error
    assert outcome.total == 3
    assert outcome.success_rate == pytest.approx(66.67)
    assert outcome.successful[0].confidence == Confidence.HIGH
    assert events.event_types().count("provider.settled") == 3
    target, instructions, budget = providers["p1"].calls[0]
    assert target == "contract A {}"
    assert instructions == "instructions for p1"
    assert budget == 5.0


def test_slow_provider_times_out_without_cancelling_others():
    providers = {
        "fast1": _StaticProvider(_good_payload()),
        "fast2": _StaticProvider(_good_payload("Access control")),
        "slow": _SlowProvider(delay=1.0),
    }
    descriptors = [
        _make_descriptor("fast1"),
        _make_descriptor("slow", timeout_sec=0.05),
        _make_descriptor("fast2"),
    ]
    started = time.monotonic()
    outcome = ProviderDispatcher(providers).dispatch("contract A {}", descriptors)
    elapsed = time.monotonic() - started

    assert elapsed < 0.9
    assert [r.provider_id for r in outcome.successful] == ["fast1", "fast2"]
    assert outcome.failed[0].provider_id == "slow"
    assert "timed out" in outcome.failed[0].error


def test_raising_provider_is_recorded_as_failure():
    providers = {
        "p1": _StaticProvider(_good_payload()),
        "p2": _StaticProvider(_good_payload()),
        "p3": _RaisingProvider(),
    }
    descriptors = [_make_descriptor(pid) for pid in ("p1", "p2", "p3")]
    outcome = ProviderDispatcher(providers).dispatch("contract A {}", descriptors)
    assert outcome.failed[0].error == "ConnectionError: upstream unavailable"


def test_missing_provider_is_not_configured():
    providers = {"p1": _StaticProvider(_good_payload()), "p2": _StaticProvider(_good_payload())}
    descriptors = [_make_descriptor(pid) for pid in ("p1", "p2", "ghost")]
    outcome = ProviderDispatcher(providers).dispatch("contract A {}", descriptors)
    assert outcome.failed[0].provider_id == "ghost"
    assert outcome.failed[0].error == "provider_not_configured"


def test_insufficient_providers_raises():
    providers = {"p1": _StaticProvider(_good_payload()), "p2": _RaisingProvider()}
    descriptors = [_make_descriptor("p1"), _make_descriptor("p2")]
    with pytest.raises(InsufficientProviders) as excinfo:
        ProviderDispatcher(providers).dispatch("contract A {}", descriptors)
    assert excinfo.value.successes == 1
    assert excinfo.value.required == 2
    assert excinfo.value.failures[0].startswith("p2: ConnectionError")


def test_min_successes_is_configurable():
    providers = {"p1": _StaticProvider(_good_payload())}
    outcome = ProviderDispatcher(providers, min_successes=1).dispatch("contract A {}", [_make_descriptor("p1")])
    assert len(outcome.successful) == 1


def test_no_descriptors_is_insufficient():
    with pytest.raises(InsufficientProviders):
        ProviderDispatcher({}).dispatch("contract A {}", [])


def test_descriptors_sharing_a_provider_each_get_a_result():
    provider = _StaticProvider(_good_payload())
    descriptors = [
        _make_descriptor("p1"),
        dataclasses.replace(_make_descriptor("p1"), specialty="defi", instructions="defi review"),
    ]
    outcome = ProviderDispatcher({"p1": provider}).dispatch("contract Vault {}", descriptors)
    assert [result.specialty for result in outcome.successful] == ["security", "defi"]
    assert sorted(call[1] for call in provider.calls) == ["defi review", "instructions for p1"]
