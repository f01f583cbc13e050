import asyncio
import json

import pytest

from gatekeeper.core.errors import RaceLossError, TransientIOError
from gatekeeper.core.types import MembershipEntry, MembershipSnapshot, SetName
from gatekeeper.store import NftablesStore, reconcile_set
from gatekeeper.store.memory import MemoryStore
from gatekeeper.store.nftables import BYPASS_MARKER, parse_set_elements

MAC_1 = "aa:bb:cc:dd:ee:01"
MAC_2 = "aa:bb:cc:dd:ee:02"


def run(coro):
    return asyncio.run(coro)


# ============================================================================
# MemoryStore
# ============================================================================

def test_entries_expire_with_clock(store, clock):
    run(store.add_member(SetName.APPROVED, MAC_1, 60))
    clock.advance(30)
    assert run(store.get_member(SetName.APPROVED, MAC_1)).expires_in == 30

    clock.advance(30)
    assert not run(store.contains(SetName.APPROVED, MAC_1))


def test_permanent_entries_can_be_removed(store):
    run(store.add_member(SetName.STATIC, MAC_1))
    assert run(store.remove_member(SetName.STATIC, MAC_1)) is True
    assert run(store.remove_member(SetName.STATIC, MAC_1)) is False


def test_extend_adds_delta_to_remaining(store, clock):
    run(store.add_member(SetName.APPROVED, MAC_1, 600))
    clock.advance(100)

    assert run(store.extend(SetName.APPROVED, MAC_1, 1800)) == 2300
    assert run(store.get_member(SetName.APPROVED, MAC_1)).expires_in == 2300


def test_extend_missing_entry_is_race_loss(store):
    with pytest.raises(RaceLossError):
        run(store.extend(SetName.APPROVED, MAC_1, 1800))


def test_extend_entry_removed_concurrently_is_race_loss(store):
    class VanishingStore(type(store)):
        async def remove_member(self, set_name, mac):
            return False

    racing = VanishingStore()
    run(racing.add_member(SetName.APPROVED, MAC_1, 600))
    with pytest.raises(RaceLossError):
        run(racing.extend(SetName.APPROVED, MAC_1, 1800))


class ReAddFailingStore(MemoryStore):
    """add_member fails once armed; restore_fails also breaks the restore."""

    def __init__(self, restore_fails=False, **kwargs):
        super().__init__(**kwargs)
        self.armed = False
        self.restore_fails = restore_fails

    async def add_member(self, set_name, mac, ttl=None):
        if self.armed:
            self.armed = self.restore_fails
            raise TransientIOError("nft timed out")
        await super().add_member(set_name, mac, ttl)


def test_extend_failed_readd_restores_previous_entry(clock):
    failing = ReAddFailingStore(clock=clock)
    run(failing.add_member(SetName.APPROVED, MAC_1, 600))
    failing.armed = True

    with pytest.raises(TransientIOError, match="previous time kept"):
        run(failing.extend(SetName.APPROVED, MAC_1, 1800))
    assert run(failing.get_member(SetName.APPROVED, MAC_1)).expires_in == 600


def test_extend_failed_restore_reports_removal(clock):
    failing = ReAddFailingStore(restore_fails=True, clock=clock)
    run(failing.add_member(SetName.APPROVED, MAC_1, 600))
    failing.armed = True

    with pytest.raises(TransientIOError, match="was removed from approved"):
        run(failing.extend(SetName.APPROVED, MAC_1, 1800))
    assert not run(failing.contains(SetName.APPROVED, MAC_1))


def test_snapshot_reflects_all_sets(store):
    async def scenario():
        await store.add_member(SetName.APPROVED, MAC_1, 600)
        await store.add_member(SetName.BLACKLIST, MAC_1)
        return await store.snapshot(MAC_1)

    assert run(scenario()) == MembershipSnapshot(approved=True, blacklisted=True)


def test_admission_order(store):
    async def scenario():
        await store.add_member(SetName.STATIC, MAC_1)
        await store.add_member(SetName.DENIED, MAC_2, 600)
        return (
            await store.is_admitted(MAC_1),
            await store.is_admitted(MAC_2),
            await store.set_bypass(True),
            await store.is_admitted(MAC_2),
        )

    static, denied, _, bypassed = run(scenario())
    assert static is True
    assert denied is False
    assert bypassed is True


def test_reconcile_replaces_set_contents(store):
    async def scenario():
        await store.add_member(SetName.STATIC, "aa:bb:cc:dd:ee:99")
        count = await reconcile_set(store, SetName.STATIC, [MAC_2, MAC_1, MAC_1])
        return count, await store.list_members(SetName.STATIC)

    count, entries = run(scenario())
    assert count == 2
    assert entries == [MembershipEntry(MAC_1), MembershipEntry(MAC_2)]


# ============================================================================
# NftablesStore
# ============================================================================

def nft_listing(*elements):
    return json.dumps({
        "nftables": [
            {"metainfo": {"version": "1.0.9"}},
            {"set": {"family": "inet", "name": "approved_macs", "table": "fw4",
                     "type": "ether_addr", "flags": ["timeout"], "elem": list(elements)}},
        ]
    })


class RecordingNftStore(NftablesStore):
    def __init__(self, outputs=None, error=None, **kwargs):
        super().__init__(**kwargs)
        self.commands = []
        self.outputs = outputs or {}
        self.error = error

    async def _run(self, *args):
        command = " ".join(args)
        self.commands.append(command)
        if self.error:
            raise self.error
        for key, output in self.outputs.items():
            if key in command:
                return output
        return ""


def test_parse_set_elements_handles_timeouts_and_permanent_entries():
    raw = nft_listing(
        {"elem": {"val": "AA:BB:CC:DD:EE:01", "timeout": 1800, "expires": 1712}},
        "aa:bb:cc:dd:ee:02",
    )
    assert parse_set_elements(raw) == [
        MembershipEntry(MAC_1, 1712),
        MembershipEntry(MAC_2, None),
    ]


def test_parse_set_elements_empty_set():
    raw = json.dumps({"nftables": [{"set": {"name": "approved_macs"}}]})
    assert parse_set_elements(raw) == []
    assert parse_set_elements("") == []


def test_parse_set_elements_garbage_is_transient():
    with pytest.raises(TransientIOError):
        parse_set_elements("{not json")


def test_nft_add_with_timeout():
    nft = RecordingNftStore()
    run(nft.add_member(SetName.APPROVED, MAC_1, 1800))
    assert nft.commands == [f"add element inet fw4 approved_macs {{ {MAC_1} timeout 1800s }}"]


def test_nft_add_permanent_uses_configured_set_name():
    nft = RecordingNftStore(set_names={"static": "my_static"})
    run(nft.add_member(SetName.STATIC, MAC_1))
    assert nft.commands == [f"add element inet fw4 my_static {{ {MAC_1} }}"]


def test_nft_remove_missing_element_returns_false():
    nft = RecordingNftStore(error=TransientIOError(
        "nft failed (1): delete element: Error: Could not process rule: No such file or directory"
    ))
    assert run(nft.remove_member(SetName.APPROVED, MAC_1)) is False


def test_nft_remove_other_failure_propagates():
    nft = RecordingNftStore(error=TransientIOError("nft failed (1): Operation not permitted"))
    with pytest.raises(TransientIOError):
        run(nft.remove_member(SetName.APPROVED, MAC_1))


def test_nft_list_members():
    nft = RecordingNftStore(outputs={"approved_macs": nft_listing(
        {"elem": {"val": MAC_1, "timeout": 1800, "expires": 900}}
    )})
    assert run(nft.list_members(SetName.APPROVED)) == [MembershipEntry(MAC_1, 900)]
    assert nft.commands == ["-j list set inet fw4 approved_macs"]


def test_nft_bypass_round_trip():
    nft = RecordingNftStore(outputs={"bypass_switch": nft_listing(BYPASS_MARKER)})
    run(nft.set_bypass(True))
    run(nft.set_bypass(False))

    assert nft.commands == [
        f"add element inet fw4 bypass_switch {{ {BYPASS_MARKER} }}",
        "flush set inet fw4 bypass_switch",
    ]
    assert run(nft.get_bypass()) is True
