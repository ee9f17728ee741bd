"""Unit tests for ResourceWatcher."""

import asyncio
from typing import List, Optional
from unittest.mock import Mock

import pytest

from pausekeeper.exceptions import TransientAccessError
from pausekeeper.models.resource import ResourceIdentity, ResourceListing, WatchedResource
from pausekeeper.services.resource_watcher import ResourceWatcher
from tests.utils import SUBNETS, InMemoryResourceClient, ResourceFactory

SECURITY_GROUPS = WatchedResource(
    group="ec2.aws.crossplane.io", version="v1beta1", plural="securitygroups", kind="SecurityGroup"
)


class ScriptedClient(InMemoryResourceClient):
    """Client whose list/watch behaviour is scripted per call."""

    def __init__(self, listings: List[ResourceListing], watch_scripts: List[list]):
        super().__init__()
        self.listings = listings
        self.watch_scripts = watch_scripts
        self.list_calls = 0
        self.watch_calls: List[Optional[str]] = []
        self.idle = asyncio.Event()

    async def list(self, watched):
        listing = self.listings[min(self.list_calls, len(self.listings) - 1)]
        self.list_calls += 1
        if isinstance(listing, Exception):
            raise listing
        return listing

    async def watch(self, watched, resource_version=None, timeout_seconds=None):
        self.watch_calls.append(resource_version)
        if len(self.watch_calls) > len(self.watch_scripts):
            self.idle.set()
            await asyncio.sleep(3600)
        for step in self.watch_scripts[len(self.watch_calls) - 1]:
            if isinstance(step, Exception):
                raise step
            yield step


def _identity(name: str) -> ResourceIdentity:
    return SUBNETS.identity(name)


@pytest.mark.unit
class TestResourceWatcherLifecycle:

    @pytest.mark.asyncio
    async def test_start_creates_one_task_per_kind(self):
        client = ScriptedClient([ResourceListing(resource_version="1")], [])
        watcher = ResourceWatcher(client, [SUBNETS, SECURITY_GROUPS], Mock())

        await watcher.start()

        assert watcher.running is True
        assert set(watcher.tasks) == {SUBNETS, SECURITY_GROUPS}

        await watcher.stop()
        assert watcher.running is False
        assert watcher.tasks == {}

    @pytest.mark.asyncio
    async def test_multiple_start_calls(self):
        client = ScriptedClient([ResourceListing(resource_version="1")], [])
        watcher = ResourceWatcher(client, [SUBNETS], Mock())

        await watcher.start()
        first_task = watcher.tasks[SUBNETS]
        await watcher.start()

        assert watcher.tasks[SUBNETS] is first_task
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        watcher = ResourceWatcher(ScriptedClient([], []), [SUBNETS], Mock())

        await watcher.stop()

        assert watcher.running is False


@pytest.mark.unit
class TestResourceWatcherLoop:

    @pytest.mark.asyncio
    async def test_list_then_watch_enqueues_everything(self):
        client = ScriptedClient(
            [ResourceListing(identities=[_identity("a"), _identity("b")], resource_version="10")],
            [[_identity("c")]],
        )
        enqueue = Mock()
        watcher = ResourceWatcher(client, [SUBNETS], enqueue)

        await watcher.start()
        await asyncio.wait_for(client.idle.wait(), timeout=2)
        await watcher.stop()

        enqueued = [call.args[0].name for call in enqueue.call_args_list]
        assert enqueued[:3] == ["a", "b", "c"]
        assert client.watch_calls[0] == "10"

    @pytest.mark.asyncio
    async def test_watch_end_triggers_full_resync(self):
        client = ScriptedClient(
            [
                ResourceListing(identities=[_identity("a")], resource_version="10"),
                ResourceListing(identities=[_identity("a")], resource_version="20"),
            ],
            [[]],
        )
        enqueue = Mock()
        watcher = ResourceWatcher(client, [SUBNETS], enqueue)

        await watcher.start()
        await asyncio.wait_for(client.idle.wait(), timeout=2)
        await watcher.stop()

        assert client.list_calls == 2
        assert client.watch_calls == ["10", "20"]
        assert enqueue.call_count == 2

    @pytest.mark.asyncio
    async def test_expired_watch_relists_immediately(self):
        client = ScriptedClient(
            [ResourceListing(resource_version="10"), ResourceListing(resource_version="30")],
            [[TransientAccessError("too old resource version", status_code=410)]],
        )
        watcher = ResourceWatcher(client, [SUBNETS], Mock(), error_backoff_seconds=3600)

        await watcher.start()
        await asyncio.wait_for(client.idle.wait(), timeout=2)
        await watcher.stop()

        assert client.watch_calls == ["10", "30"]

    @pytest.mark.asyncio
    async def test_list_failure_backs_off_and_retries(self):
        client = ScriptedClient(
            [TransientAccessError("connection refused"), ResourceListing(resource_version="5")],
            [],
        )
        watcher = ResourceWatcher(client, [SUBNETS], Mock(), error_backoff_seconds=0.01)

        await watcher.start()
        await asyncio.wait_for(client.idle.wait(), timeout=2)
        await watcher.stop()

        assert client.list_calls == 2
        assert client.watch_calls == ["5"]

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_loop_alive(self):
        client = ScriptedClient(
            [ResourceListing(resource_version="1"), ResourceListing(resource_version="2")],
            [[RuntimeError("decoder bug")]],
        )
        watcher = ResourceWatcher(client, [SUBNETS], Mock(), error_backoff_seconds=0.01)

        await watcher.start()
        await asyncio.wait_for(client.idle.wait(), timeout=2)
        await watcher.stop()

        assert client.watch_calls == ["1", "2"]


@pytest.mark.unit
class TestResourceWatcherResync:

    @pytest.mark.asyncio
    async def test_resync_with_in_memory_client(self):
        client = InMemoryResourceClient([
            ResourceFactory.create_resource(name="a"),
            ResourceFactory.create_resource(name="b"),
        ])
        enqueue = Mock()
        watcher = ResourceWatcher(client, [SUBNETS], enqueue)

        resource_version = await watcher.resync(SUBNETS)

        assert resource_version == "100"
        assert {call.args[0].name for call in enqueue.call_args_list} == {"a", "b"}
