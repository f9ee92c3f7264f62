"""
RundownMirror — structural refresh against a FakeClient.

Covers the combined group list, per-rundown failure isolation, status
reporting, timeline flattening, the playing-flag reset on every refresh,
and discarding of results that arrive after close().
"""

import asyncio

import pytest

from conftest import FakeClient, make_group
from superconductor_bridge.lib.errors import MalformedResponseError, TransportError
from superconductor_bridge.lib.mirror import Group, RundownMirror


class Recorder:
    def __init__(self):
        self.structures = []
        self.statuses = []

    def structure(self, groups):
        self.structures.append(list(groups))

    def status(self, status, message):
        self.statuses.append(status)


def _mirror(client):
    rec = Recorder()
    return RundownMirror(client, on_structure=rec.structure, on_status=rec.status), rec


class TestGroupFromPayload:
    def test_flattens_parts_in_order(self) -> None:
        group = Group.from_payload({
            "id": "g1", "name": "Intro",
            "parts": [
                {"timeline": [{"obj": {"id": "a"}}, {"obj": {"id": "b"}}]},
                {"timeline": [{"obj": {"id": "c"}}]},
            ],
        })
        assert group.timelines == ["a", "b", "c"]
        assert group.playing is None

    def test_drops_missing_ids_keeps_duplicates(self) -> None:
        group = Group.from_payload({
            "id": "g1", "name": "Intro",
            "parts": [
                {"timeline": [{"obj": {"id": "a"}}, {"obj": {}}, {"obj": None}, {}]},
                {"timeline": [{"obj": {"id": None}}, {"obj": {"id": "a"}}]},
            ],
        })
        assert group.timelines == ["a", "a"]

    def test_tolerates_missing_parts(self) -> None:
        assert Group.from_payload({"id": "g1", "name": "x"}).timelines == []
        assert Group.from_payload({"id": "g1", "name": "x", "parts": [{}]}).timelines == []

    def test_missing_name_falls_back_to_id(self) -> None:
        assert Group.from_payload({"id": "g1"}).name == "g1"

    def test_group_without_id_is_malformed(self) -> None:
        with pytest.raises(MalformedResponseError):
            Group.from_payload({"name": "nameless"})

    def test_non_list_parts_or_timeline_is_malformed(self) -> None:
        with pytest.raises(MalformedResponseError):
            Group.from_payload({"id": "g1", "parts": 5})
        with pytest.raises(MalformedResponseError):
            Group.from_payload({"id": "g1", "parts": [{"timeline": 7}]})


class TestRefreshStructure:
    @pytest.mark.asyncio
    async def test_n_by_m_groups_with_unique_ids(self) -> None:
        client = FakeClient({
            f"r{n}.rundown.json": [make_group(f"g{m}", f"Group {m}", f"t{n}{m}") for m in range(4)]
            for n in range(3)
        })
        mirror, rec = _mirror(client)
        assert await mirror.refresh_structure() is True
        ids = [g["id"] for g in mirror.groups]
        assert len(ids) == 12
        assert len(set(ids)) == 12
        assert rec.structures == [mirror.groups]

    @pytest.mark.asyncio
    async def test_combined_group_shape(self) -> None:
        client = FakeClient({"showA.rundown.json": [make_group("g1", "Intro", "t1")]})
        mirror, _ = _mirror(client)
        await mirror.refresh_structure()
        assert mirror.groups == [{
            "id": "showA.rundown.json|||g1",
            "label": "showA/Intro",
            "group_name": "Intro",
            "rundown_id": "showA.rundown.json",
        }]
        assert mirror.get_group("showA.rundown.json", "g1").timelines == ["t1"]

    @pytest.mark.asyncio
    async def test_failed_rundown_is_isolated(self) -> None:
        client = FakeClient({
            "a": [make_group("g1", "One")],
            "b": TransportError("boom"),
            "c": [make_group("g2", "Two")],
        })
        mirror, rec = _mirror(client)
        await mirror.refresh_structure()
        assert [g["id"] for g in mirror.groups] == ["a|||g1", "c|||g2"]
        assert mirror.has_rundown("b")
        assert mirror.get_group("b", "g1") is None
        assert "connection_failure" in rec.statuses

    @pytest.mark.asyncio
    async def test_malformed_rundown_is_empty_without_status_change(self) -> None:
        client = FakeClient({
            "a": MalformedResponseError("no groups"),
            "b": [make_group("g1", "One")],
        })
        mirror, rec = _mirror(client)
        await mirror.refresh_structure()
        assert [g["id"] for g in mirror.groups] == ["b|||g1"]
        assert rec.statuses == ["ok"]

    @pytest.mark.asyncio
    async def test_bad_group_entries_are_skipped(self) -> None:
        client = FakeClient({"a": [
            make_group("g1", "One"),
            {"name": "no id"},
            "not a dict",
            make_group("bad|||id", "Sep"),
            make_group("g2", "Two"),
        ]})
        mirror, _ = _mirror(client)
        await mirror.refresh_structure()
        assert [g["id"] for g in mirror.groups] == ["a|||g1", "a|||g2"]

    @pytest.mark.asyncio
    async def test_wrongly_typed_parts_do_not_break_siblings(self) -> None:
        client = FakeClient({
            "good": [make_group("g1", "One", "t1")],
            "bad": [{"id": "g2", "name": "Two", "parts": 5}],
            "worse": [{"id": "g3", "name": "Three", "parts": [{"timeline": 7}]}],
        })
        mirror, rec = _mirror(client)
        assert await mirror.refresh_structure() is True
        assert [g["id"] for g in mirror.groups] == ["good|||g1"]
        assert mirror.get_group("bad", "g2") is None
        assert rec.statuses == ["ok"]

    @pytest.mark.asyncio
    async def test_rundown_id_with_separator_is_skipped(self) -> None:
        client = FakeClient({
            "bad|||rundown": [make_group("g1", "One")],
            "good": [make_group("g1", "One")],
        })
        mirror, _ = _mirror(client)
        await mirror.refresh_structure()
        assert mirror.rundown_ids == ["good"]
        assert ("get_rundown_groups", "bad|||rundown") not in client.calls

    @pytest.mark.asyncio
    async def test_rundown_list_failure_clears_ids_only(self) -> None:
        client = FakeClient({"a": [make_group("g1", "One")]})
        mirror, rec = _mirror(client)
        await mirror.refresh_structure()
        groups_before = mirror.groups

        client.rundown_list_error = TransportError("refused")
        assert await mirror.refresh_structure() is False
        assert mirror.rundown_ids == []
        assert mirror.groups == groups_before
        assert mirror.get_group("a", "g1") is not None
        assert rec.statuses[-1] == "connection_failure"
        assert len(rec.structures) == 1

    @pytest.mark.asyncio
    async def test_empty_rundown_list_clears_groups(self) -> None:
        client = FakeClient({"a": [make_group("g1", "One")]})
        mirror, rec = _mirror(client)
        await mirror.refresh_structure()

        client.rundowns = {}
        assert await mirror.refresh_structure() is True
        assert mirror.groups == []
        assert mirror.get_group("a", "g1") is None
        assert rec.structures[-1] == []

    @pytest.mark.asyncio
    async def test_malformed_rundown_list_is_treated_as_empty(self) -> None:
        client = FakeClient()
        client.rundown_list_error = MalformedResponseError("huh")
        mirror, rec = _mirror(client)
        assert await mirror.refresh_structure() is True
        assert mirror.groups == []
        assert rec.structures == [[]]

    @pytest.mark.asyncio
    async def test_success_recovers_status(self) -> None:
        client = FakeClient({"a": [make_group("g1", "One")]})
        client.rundown_list_error = TransportError("down")
        mirror, rec = _mirror(client)
        await mirror.refresh_structure()
        client.rundown_list_error = None
        await mirror.refresh_structure()
        assert rec.statuses == ["connection_failure", "ok"]

    @pytest.mark.asyncio
    async def test_refresh_resets_playing_flag(self) -> None:
        # Accepted staleness: a refresh forgets the last probe until the next one
        client = FakeClient({"a": [make_group("g1", "One", "t1")]})
        mirror, _ = _mirror(client)
        await mirror.refresh_structure()
        mirror.set_playing("a", "g1", True)
        assert mirror.is_playing("a", "g1") is True

        await mirror.refresh_structure()
        assert mirror.get_group("a", "g1").playing is None
        assert mirror.is_playing("a", "g1") is False

    @pytest.mark.asyncio
    async def test_unknown_lookups(self) -> None:
        mirror, _ = _mirror(FakeClient())
        assert mirror.get_group("nope", "g1") is None
        assert mirror.is_playing("nope", "g1") is False
        mirror.set_playing("nope", "g1", True)  # no-op
        assert mirror.summary() == {"rundowns": [], "group_count": 0}


class GatedClient(FakeClient):
    """Blocks get_rundown_groups until the matching gate is opened."""

    def __init__(self, rundowns):
        super().__init__(rundowns)
        self.gates = []

    async def get_rundown_groups(self, rundown_id):
        gate = asyncio.Event()
        self.gates.append(gate)
        snapshot = self.rundowns[rundown_id]
        await gate.wait()
        return snapshot


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_results_after_close_are_discarded(self) -> None:
        client = GatedClient({"a": [make_group("g1", "One")]})
        mirror, rec = _mirror(client)
        task = asyncio.create_task(mirror.refresh_structure())
        await asyncio.sleep(0)
        while not client.gates:
            await asyncio.sleep(0)

        mirror.close()
        client.gates[0].set()
        assert await task is False
        assert mirror.groups == []
        assert rec.structures == []

    @pytest.mark.asyncio
    async def test_last_completed_refresh_wins(self) -> None:
        client = GatedClient({"a": [make_group("old", "Old")]})
        mirror, _ = _mirror(client)

        first = asyncio.create_task(mirror.refresh_structure())
        while len(client.gates) < 1:
            await asyncio.sleep(0)
        client.rundowns = {"a": [make_group("new", "New")]}
        second = asyncio.create_task(mirror.refresh_structure())
        while len(client.gates) < 2:
            await asyncio.sleep(0)

        # The later-started refresh completes first ...
        client.gates[1].set()
        await second
        assert [g["group_name"] for g in mirror.groups] == ["New"]
        # ... and the earlier one overwrites it when it finally lands.
        client.gates[0].set()
        await first
        assert [g["group_name"] for g in mirror.groups] == ["Old"]
