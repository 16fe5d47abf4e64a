import asyncio
import unittest
from unittest import mock

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from newsroom.db import ConnectionError, Database
from newsroom.tests.helpers import FakeHandle, conflict_error, memory_config


class RetryExecutorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        Database.reset_instance()
        self.db = Database.get_instance(memory_config())
        self.fresh_handles = []

        def make_fresh():
            handle = FakeHandle(f"fresh-{len(self.fresh_handles) + 1}")
            self.fresh_handles.append(handle)
            return handle

        patcher = mock.patch.object(self.db, 'create_fresh_client', side_effect=make_fresh)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def asyncTearDown(self):
        await self.db.shutdown()
        Database.reset_instance()

    async def test_success_on_first_attempt(self):
        calls = []

        async def operation():
            calls.append(self.db.current_handle())
            return "front page"

        result = await self.db.execute_with_retry(operation)

        self.assertEqual(result, "front page")
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.fresh_handles, [])

    async def test_conflict_then_success(self):
        seen = []

        async def operation():
            seen.append(self.db.current_handle())
            if len(seen) == 1:
                raise conflict_error()
            return ["article-1", "article-2"]

        result = await self.db.execute_with_retry(operation, max_retries=3)

        self.assertEqual(result, ["article-1", "article-2"])
        self.assertEqual(len(seen), 2)
        self.assertEqual(len(self.fresh_handles), 1)
        self.assertIsNone(seen[0])
        self.assertIs(seen[1], self.fresh_handles[0])
        self.assertTrue(self.fresh_handles[0].closed)
        # Binding ends with the attempt
        self.assertIsNone(self.db.current_handle())

    async def test_always_conflicting(self):
        errors = []

        async def operation():
            error = conflict_error(f"s{len(errors)}")
            errors.append(error)
            raise error

        with self.assertRaises(DBAPIError) as ctx:
            await self.db.execute_with_retry(operation, max_retries=3)

        self.assertIs(ctx.exception, errors[-1])
        self.assertEqual(len(errors), 3)
        self.assertEqual(len(self.fresh_handles), 2)
        self.assertTrue(all(handle.closed for handle in self.fresh_handles))

    async def test_unrelated_error_is_not_retried(self):
        error = ValueError("slug must be unique")
        calls = []

        async def operation():
            calls.append(1)
            raise error

        with self.assertRaises(ValueError) as ctx:
            await self.db.execute_with_retry(operation, max_retries=3)

        self.assertIs(ctx.exception, error)
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.fresh_handles, [])

    async def test_single_attempt_budget(self):
        error = conflict_error()
        calls = []

        async def operation():
            calls.append(1)
            raise error

        with self.assertRaises(DBAPIError) as ctx:
            await self.db.execute_with_retry(operation, max_retries=1)

        self.assertIs(ctx.exception, error)
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.fresh_handles, [])

    async def test_invalid_budget(self):
        async def operation():
            return None

        with self.assertRaises(ValueError):
            await self.db.execute_with_retry(operation, max_retries=0)

    async def test_unrelated_error_on_fresh_client(self):
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) == 1:
                raise conflict_error()
            raise KeyError("author not found")

        with self.assertRaises(KeyError):
            await self.db.execute_with_retry(operation, max_retries=3)

        self.assertEqual(len(calls), 2)
        self.assertEqual(len(self.fresh_handles), 1)
        self.assertTrue(self.fresh_handles[0].closed)

    async def test_backoff_between_fresh_client_attempts(self):
        self.db.config.retry_backoff_seconds = 1.0

        async def operation():
            raise conflict_error()

        with mock.patch('newsroom.db.db_core.asyncio.sleep', new=mock.AsyncMock()) as sleep:
            with self.assertRaises(DBAPIError):
                await self.db.execute_with_retry(operation, max_retries=4)

        # No wait after the primary attempt, none after the final attempt
        self.assertEqual([c.args[0] for c in sleep.await_args_list], [1.0, 2.0])

    async def test_primary_connection_is_untouched(self):
        await self.db.connect()
        primary = self.db.current_handle()

        async def operation():
            raise conflict_error()

        with self.assertRaises(DBAPIError):
            await self.db.execute_with_retry(operation, max_retries=3)

        self.assertIs(self.db.current_handle(), primary)
        self.assertTrue(self.db.is_connected)
        self.assertTrue(await self.db.health_check())

    async def test_fresh_binding_is_task_local(self):
        retry_started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) == 1:
                raise conflict_error()
            retry_started.set()
            await release.wait()
            return self.db.current_handle()

        await self.db.connect()
        primary = self.db.current_handle()
        retry_task = asyncio.ensure_future(self.db.execute_with_retry(operation))

        await retry_started.wait()
        # Another caller sharing the manager still sees the primary handle
        self.assertIs(self.db.current_handle(), primary)
        release.set()

        used = await retry_task
        self.assertIs(used, self.fresh_handles[0])

    async def test_fresh_client_creation_failure_propagates(self):
        self.db.create_fresh_client.side_effect = ConnectionError("DATABASE_URL is not configured")

        async def operation():
            raise conflict_error()

        with self.assertRaises(ConnectionError):
            await self.db.execute_with_retry(operation)


class RetryWithRealEngineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        Database.reset_instance()
        self.db = Database.get_instance(memory_config())

    async def asyncTearDown(self):
        await self.db.shutdown()
        Database.reset_instance()

    async def test_retry_session_runs_on_fresh_engine(self):
        engines = []

        async def operation():
            async with self.db.session() as session:
                engines.append(session.bind)
                if len(engines) == 1:
                    raise conflict_error()
                return await session.scalar(text('SELECT 1'))

        result = await self.db.execute_with_retry(operation)

        self.assertEqual(result, 1)
        primary_engine = self.db.current_handle().engine
        self.assertIs(engines[0], primary_engine)
        self.assertIsNot(engines[1], primary_engine)


if __name__ == "__main__":
    unittest.main()
