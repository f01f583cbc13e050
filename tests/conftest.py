import pytest

from gatekeeper.channels.base import Notifier
from gatekeeper.core.approval import ApprovalCoordinator
from gatekeeper.core.commands import CommandProcessor
from gatekeeper.core.device_log import DeviceLog, NameCache
from gatekeeper.core.ingestor import EventIngestor
from gatekeeper.core.policy_config import PolicyConfigStore
from gatekeeper.core.policy_engine import PolicyEngine
from gatekeeper.core.types import Timeouts
from gatekeeper.store.memory import MemoryStore


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.edits = []
        self._next_id = 100

    async def send_message(self, text, buttons=None, reply_keyboard=False):
        self._next_id += 1
        self.sent.append({"id": self._next_id, "text": text, "buttons": buttons})
        return self._next_id

    async def edit_message(self, message_id, text):
        self.edits.append((message_id, text))

    @property
    def approval_requests(self):
        return [m for m in self.sent if m["buttons"]]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def timeouts():
    # Auto-deny fires on the next loop iteration
    return Timeouts(auto_deny_after=0)


@pytest.fixture
def policy(tmp_path):
    return PolicyConfigStore(str(tmp_path / "data"))


@pytest.fixture
def name_cache(tmp_path):
    return NameCache(str(tmp_path / "data" / "mac_names.json"))


@pytest.fixture
def device_log(tmp_path):
    return DeviceLog(str(tmp_path / "data" / "devices.jsonl"))


@pytest.fixture
def coordinator(store, notifier, name_cache, clock):
    return ApprovalCoordinator(store, notifier, name_cache=name_cache, base_delay=0, clock=clock)


@pytest.fixture
def engine(timeouts):
    return PolicyEngine(timeouts)


@pytest.fixture
def ingestor(store, engine, coordinator, policy, device_log, clock):
    return EventIngestor(
        store=store,
        engine=engine,
        coordinator=coordinator,
        policy=policy,
        device_log=device_log,
        base_delay=0,
        clock=clock,
    )


@pytest.fixture
def commands(store, policy, coordinator, timeouts, device_log, name_cache):
    return CommandProcessor(
        store=store,
        policy=policy,
        coordinator=coordinator,
        timeouts=timeouts,
        device_log=device_log,
        name_cache=name_cache,
    )
