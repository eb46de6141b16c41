"""
Tests for the streaming search executor and its page-by-page backpressure.
"""

import asyncio
import gc
import unittest

import ldap

from ldapcatalog.exceptions import SearchError, TransformError
from ldapcatalog.models import SearchEntry, SearchRequest
from ldapcatalog.search import search_streaming
from ldapcatalog.tests.fakes import (
    BASE,
    Referral,
    ScriptedLDAPObject,
    entry,
    make_session,
    spin_until,
)

REQUEST = SearchRequest(filter="(objectClass=posixAccount)", page_size=3)


def dn(name: str) -> str:
    return f"uid={name},{BASE}"


class TestSearchStreaming(unittest.IsolatedAsyncioTestCase):

    async def test_plain_function_transform_sees_every_entry_in_order(self):
        fake = ScriptedLDAPObject([[entry("alice"), entry("bob")], [entry("charlie")]])
        seen: list[str] = []
        await search_streaming(make_session(fake), BASE, REQUEST, lambda e: seen.append(e.dn))
        self.assertEqual(seen, [dn("alice"), dn("bob"), dn("charlie")])

    async def test_next_page_waits_for_every_transform(self):
        fake = ScriptedLDAPObject([[entry("alice"), entry("bob")], [entry("charlie")]])
        gates = {dn(name): asyncio.Event() for name in ("alice", "bob", "charlie")}
        started: list[str] = []
        settled: list[str] = []
        settled_at_request: list[list[str]] = []
        fake.on_search = lambda: settled_at_request.append(list(settled))

        async def transform(search_entry: SearchEntry) -> None:
            started.append(search_entry.dn)
            await gates[search_entry.dn].wait()
            settled.append(search_entry.dn)

        task = asyncio.create_task(
            search_streaming(make_session(fake), BASE, REQUEST, transform)
        )
        await spin_until(lambda: len(started) == 2)
        # Give the executor every chance to misbehave
        for _ in range(20):
            await asyncio.sleep(0)
        self.assertEqual(len(fake.search_calls), 1)

        gates[dn("alice")].set()
        await spin_until(lambda: len(settled) == 1)
        for _ in range(20):
            await asyncio.sleep(0)
        self.assertEqual(len(fake.search_calls), 1)

        gates[dn("bob")].set()
        await spin_until(lambda: len(fake.search_calls) == 2)
        self.assertEqual(settled_at_request, [[], [dn("alice"), dn("bob")]])

        gates[dn("charlie")].set()
        await task
        self.assertEqual(settled, [dn("alice"), dn("bob"), dn("charlie")])

    async def test_completes_only_after_last_page_transforms_settle(self):
        fake = ScriptedLDAPObject([[entry("alice")]])
        gate = asyncio.Event()

        async def transform(search_entry: SearchEntry) -> None:
            await gate.wait()

        task = asyncio.create_task(
            search_streaming(make_session(fake), BASE, REQUEST, transform)
        )
        await spin_until(lambda: not fake.queues and len(fake.search_calls) == 1)
        for _ in range(20):
            await asyncio.sleep(0)
        self.assertFalse(task.done())
        gate.set()
        await task

    async def test_raising_transform_fails_with_transform_error(self):
        fake = ScriptedLDAPObject(
            [[entry("alice"), entry("bob"), entry("charlie")], [entry("dave")]]
        )
        seen: list[str] = []

        def transform(search_entry: SearchEntry) -> None:
            seen.append(search_entry.dn)
            if search_entry.dn == dn("bob"):
                raise ValueError("bad entry")

        with self.assertRaises(TransformError) as cm:
            await search_streaming(make_session(fake), BASE, REQUEST, transform)
        self.assertNotIsInstance(cm.exception, SearchError)
        self.assertIsInstance(cm.exception.__cause__, ValueError)
        self.assertIn("Transform function threw an exception", str(cm.exception))
        self.assertIn("bad entry", str(cm.exception))
        self.assertEqual(seen, [dn("alice"), dn("bob")])
        self.assertEqual(len(fake.search_calls), 1)
        # charlie and the search result were still outstanding
        self.assertEqual(fake.abandoned, [fake.search_calls[0].msgid])

    async def test_failing_async_transform_stops_the_stream(self):
        fake = ScriptedLDAPObject(
            [
                [entry("alice"), entry("bob"), entry("charlie")],
                [entry("dave"), entry("eve")],
            ],
            idle_polls=2,
        )
        seen: list[str] = []

        async def transform(search_entry: SearchEntry) -> None:
            seen.append(search_entry.dn)
            if search_entry.dn == dn("alice"):
                raise RuntimeError("cannot store alice")

        with self.assertRaises(TransformError) as cm:
            await search_streaming(make_session(fake), BASE, REQUEST, transform)
        self.assertIsInstance(cm.exception.__cause__, RuntimeError)
        self.assertNotIn(dn("dave"), seen)
        self.assertNotIn(dn("eve"), seen)
        self.assertEqual(len(fake.search_calls), 1)

    async def test_failure_at_page_end_does_not_request_next_page(self):
        fake = ScriptedLDAPObject([[entry("alice"), entry("bob")], [entry("charlie")]])
        gate = asyncio.Event()
        seen: list[str] = []

        async def transform(search_entry: SearchEntry) -> None:
            seen.append(search_entry.dn)
            await gate.wait()
            if search_entry.dn == dn("bob"):
                raise RuntimeError("cannot store bob")

        task = asyncio.create_task(
            search_streaming(make_session(fake), BASE, REQUEST, transform)
        )
        await spin_until(lambda: not fake.queues)
        gate.set()
        with self.assertRaises(TransformError):
            await task
        self.assertEqual(seen, [dn("alice"), dn("bob")])
        self.assertEqual(len(fake.search_calls), 1)
        self.assertEqual(fake.abandoned, [])

    async def test_sibling_failures_are_not_reported_as_unretrieved(self):
        fake = ScriptedLDAPObject([[entry("alice"), entry("bob")], [entry("charlie")]])
        gate = asyncio.Event()

        async def transform(search_entry: SearchEntry) -> None:
            await gate.wait()
            raise RuntimeError(f"database is down, cannot store {search_entry.dn}")

        task = asyncio.create_task(
            search_streaming(make_session(fake), BASE, REQUEST, transform)
        )
        await spin_until(lambda: not fake.queues)
        with self.assertNoLogs("asyncio", level="ERROR"):
            gate.set()
            with self.assertRaises(TransformError):
                await task
            del task
            gc.collect()
        self.assertEqual(len(fake.search_calls), 1)

    async def test_outstanding_transforms_are_cancelled_after_a_failure(self):
        fake = ScriptedLDAPObject([[entry("alice"), entry("bob")]])
        never = asyncio.Event()
        cancelled: list[str] = []

        async def transform(search_entry: SearchEntry) -> None:
            if search_entry.dn == dn("bob"):
                raise RuntimeError("cannot store bob")
            try:
                await never.wait()
            except asyncio.CancelledError:
                cancelled.append(search_entry.dn)
                raise

        with self.assertRaises(TransformError):
            await search_streaming(make_session(fake), BASE, REQUEST, transform)
        await spin_until(lambda: cancelled == [dn("alice")])

    async def test_non_success_status_fails_the_stream(self):
        fake = ScriptedLDAPObject(
            [[entry("alice")]],
            errors={1: ldap.OPERATIONS_ERROR({"result": 1, "desc": "Operations error"})},
        )
        with self.assertRaises(SearchError) as cm:
            await search_streaming(make_session(fake), BASE, REQUEST, lambda e: None)
        self.assertEqual(cm.exception.status, 1)
        self.assertIn("Got status 1", str(cm.exception))

    async def test_referrals_are_skipped(self):
        fake = ScriptedLDAPObject(
            [[Referral(["ldap://elsewhere/dc=other"]), entry("alice")], [entry("bob")]]
        )
        seen: list[str] = []
        referrals: list[list[str]] = []
        with self.assertLogs("ldapcatalog.search", level="WARNING"):
            await search_streaming(
                make_session(fake),
                BASE,
                REQUEST,
                lambda e: seen.append(e.dn),
                on_referral=referrals.append,
            )
        self.assertEqual(seen, [dn("alice"), dn("bob")])
        self.assertEqual(referrals, [["ldap://elsewhere/dc=other"]])

    async def test_cancelling_the_search_abandons_it(self):
        fake = ScriptedLDAPObject([[entry("alice"), entry("bob")]], idle_polls=1000000)
        task = asyncio.create_task(
            search_streaming(make_session(fake), BASE, REQUEST, lambda e: None)
        )
        await spin_until(lambda: fake.polls > 3)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(fake.abandoned, [fake.search_calls[0].msgid])

    async def test_cancelling_the_search_cancels_running_transforms(self):
        fake = ScriptedLDAPObject([[entry("alice")]])
        never = asyncio.Event()
        cancelled: list[str] = []

        async def transform(search_entry: SearchEntry) -> None:
            try:
                await never.wait()
            except asyncio.CancelledError:
                cancelled.append(search_entry.dn)
                raise

        task = asyncio.create_task(
            search_streaming(make_session(fake), BASE, REQUEST, transform)
        )
        await spin_until(lambda: not fake.queues)
        for _ in range(5):
            await asyncio.sleep(0)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        await spin_until(lambda: cancelled == [dn("alice")])
