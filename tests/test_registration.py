from __future__ import annotations

import pytest

from gattsim.core.errors import TransportPermissionError
from gattsim.core.model import Service
from gattsim.core.registration import RegistrationQueue
from gattsim.core.uuids import sig_uuid

SERVICES = [Service(uuid=sig_uuid(0x1800 + i), characteristics=()) for i in range(4)]


class FakeHost:
    def __init__(self) -> None:
        self.submitted: list[str] = []
        self.queue: RegistrationQueue | None = None
        self.confirm_inline = False
        self.reject_inline = False
        self.refuse: set[str] = set()

    def submit_service(self, handle, service) -> None:
        if service.uuid in self.refuse:
            raise TransportPermissionError("BLUETOOTH_CONNECT not granted")
        self.submitted.append(service.uuid)
        if self.queue is not None and (self.confirm_inline or self.reject_inline):
            self.queue.on_registration_result(service.uuid, not self.reject_inline)


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def queue(fake_host: FakeHost) -> RegistrationQueue:
    q = RegistrationQueue(fake_host)
    fake_host.queue = q
    q.attach("server")
    return q


def test_each_service_waits_for_previous_result(fake_host: FakeHost, queue: RegistrationQueue) -> None:
    for service in SERVICES:
        queue.enqueue(service)

    for index, service in enumerate(SERVICES):
        assert fake_host.submitted == [s.uuid for s in SERVICES[: index + 1]]
        assert queue.in_flight is service
        queue.on_registration_result(service.uuid, True)

    assert len(fake_host.submitted) == len(SERVICES)
    assert queue.idle
    assert queue.pending == ()


def test_failure_drains_remaining_services(fake_host: FakeHost, queue: RegistrationQueue) -> None:
    for service in SERVICES:
        queue.enqueue(service)
    queue.on_registration_result(SERVICES[0].uuid, True)
    queue.on_registration_result(SERVICES[1].uuid, False)

    assert fake_host.submitted == [SERVICES[0].uuid, SERVICES[1].uuid]
    assert queue.idle
    assert queue.pending == ()
    assert queue.failed == (SERVICES[1].uuid,)


def test_submit_error_drains_queue(fake_host: FakeHost, queue: RegistrationQueue) -> None:
    fake_host.refuse.add(SERVICES[1].uuid)
    for service in SERVICES:
        queue.enqueue(service)
    queue.on_registration_result(SERVICES[0].uuid, True)

    assert fake_host.submitted == [SERVICES[0].uuid]
    assert queue.idle
    assert queue.pending == ()
    assert queue.failed == (SERVICES[1].uuid,)


def test_inline_confirmation_submits_everything_in_order(fake_host: FakeHost, queue: RegistrationQueue) -> None:
    fake_host.confirm_inline = True
    for service in SERVICES:
        queue.enqueue(service)

    assert fake_host.submitted == [s.uuid for s in SERVICES]
    assert queue.idle
    assert queue.failed == ()


def test_services_queued_before_attach_wait_for_server(fake_host: FakeHost) -> None:
    q = RegistrationQueue(fake_host)
    q.enqueue(SERVICES[0])
    q.enqueue(SERVICES[1])
    assert fake_host.submitted == []

    q.attach("server")
    assert fake_host.submitted == [SERVICES[0].uuid]


def test_result_for_unknown_service_ignored(fake_host: FakeHost, queue: RegistrationQueue) -> None:
    queue.enqueue(SERVICES[0])
    queue.enqueue(SERVICES[1])
    queue.on_registration_result(SERVICES[3].uuid, True)

    assert fake_host.submitted == [SERVICES[0].uuid]
    assert queue.in_flight is SERVICES[0]


def test_detach_drops_pending(fake_host: FakeHost, queue: RegistrationQueue) -> None:
    for service in SERVICES:
        queue.enqueue(service)
    queue.detach()

    assert queue.pending == ()
    assert queue.idle
    queue.on_registration_result(SERVICES[0].uuid, True)
    assert fake_host.submitted == [SERVICES[0].uuid]


def test_inline_rejection_submits_only_the_first_of_a_batch(fake_host: FakeHost, queue: RegistrationQueue) -> None:
    fake_host.reject_inline = True
    queue.enqueue_all(SERVICES)

    assert fake_host.submitted == [SERVICES[0].uuid]
    assert queue.failed == (SERVICES[0].uuid,)
    assert queue.pending == ()


def test_enqueue_after_failure_is_refused_until_reset(fake_host: FakeHost, queue: RegistrationQueue) -> None:
    queue.enqueue_all(SERVICES[:2])
    queue.on_registration_result(SERVICES[0].uuid, False)
    assert queue.halted

    queue.enqueue(SERVICES[2])
    assert fake_host.submitted == [SERVICES[0].uuid]
    assert queue.pending == ()

    queue.reset()
    queue.enqueue(SERVICES[2])
    assert fake_host.submitted == [SERVICES[0].uuid, SERVICES[2].uuid]
    assert queue.failed == ()
