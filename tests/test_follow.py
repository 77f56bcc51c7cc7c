"""Tests for following growing files"""

import asyncio
import os

from logpeek.reader import FileFollower, FollowState, follow

from conftest import write_gzip_log, write_log


POLL = 0.05
TIMEOUT = 5.0


async def wait_for_lines(received: list, count: int, timeout: float = TIMEOUT):
    deadline = asyncio.get_running_loop().time() + timeout
    while len(received) < count and asyncio.get_running_loop().time() < deadline:
        await asyncio.sleep(POLL)


def append(path: str, text: str):
    with open(path, 'a') as f:
        f.write(text)


class TestFollowPolling:
    """Follow in polling mode (no file watcher)"""

    def test_replays_existing_then_delivers_appended(self, log_dir):
        path = write_log(log_dir, 'app.log', ['one', 'two'])

        async def run():
            received = []
            follower = await follow(path, received.append, poll_interval=POLL, use_watcher=False)
            try:
                assert follower.state == FollowState.POLLING
                append(path, 'three\nfour\n')
                await wait_for_lines(received, 4)
            finally:
                follower.cancel()
            return received

        received = asyncio.run(run())
        assert [r.content for r in received] == ['one', 'two', 'three', 'four']
        assert [r.line_number for r in received] == [1, 2, 3, 4]

    def test_from_line_skips_replay(self, log_dir):
        path = write_log(log_dir, 'app.log', ['one', 'two', 'three'])

        async def run():
            received = []
            follower = await follow(path, received.append, from_line=2, poll_interval=POLL, use_watcher=False)
            follower.cancel()
            return received

        received = asyncio.run(run())
        assert [(r.line_number, r.content) for r in received] == [(3, 'three')]

    def test_partial_line_is_held_until_complete(self, log_dir):
        path = write_log(log_dir, 'app.log', [])

        async def run():
            received = []
            follower = await follow(path, received.append, poll_interval=POLL, use_watcher=False)
            try:
                append(path, 'par')
                await asyncio.sleep(POLL * 4)
                assert received == []
                append(path, 'tial\n')
                await wait_for_lines(received, 1)
            finally:
                follower.cancel()
            return received

        received = asyncio.run(run())
        assert [r.content for r in received] == ['partial']

    def test_truncation_restarts_from_beginning(self, log_dir):
        path = write_log(log_dir, 'app.log', ['aaaa', 'bbbb'])

        async def run():
            received = []
            follower = await follow(path, received.append, poll_interval=POLL, use_watcher=False)
            try:
                with open(path, 'w') as f:
                    f.write('c\n')
                await wait_for_lines(received, 3)
            finally:
                follower.cancel()
            return received

        received = asyncio.run(run())
        assert received[-1].content == 'c'
        assert received[-1].line_number == 1

    def test_no_delivery_after_cancel(self, log_dir):
        path = write_log(log_dir, 'app.log', ['one'])

        async def run():
            received = []
            follower = await follow(path, received.append, poll_interval=POLL, use_watcher=False)
            follower.cancel()
            follower.cancel()
            append(path, 'two\n')
            await asyncio.sleep(POLL * 4)
            return follower, received

        follower, received = asyncio.run(run())
        assert follower.closed
        assert [r.content for r in received] == ['one']


class TestFollowWatcher:
    """Follow with the watchdog observer (falls back to polling where unavailable)"""

    def test_delivers_appended_lines(self, log_dir):
        path = write_log(log_dir, 'app.log', ['first'])

        async def run():
            received = []
            follower = await follow(path, received.append)
            try:
                await asyncio.sleep(0.2)
                append(path, 'second\n')
                await wait_for_lines(received, 2)
            finally:
                follower.cancel()
            return received

        received = asyncio.run(run())
        assert [r.content for r in received] == ['first', 'second']

    def test_cancel_stops_observer_thread(self, log_dir):
        path = write_log(log_dir, 'app.log', ['first'])

        async def run():
            follower = await follow(path, lambda line: None)
            observer = follower._observer
            follower.cancel()
            assert follower._observer is None
            return follower, observer

        follower, observer = asyncio.run(run())
        assert follower.closed
        if observer is not None:
            assert not observer.is_alive()


class TestFollowCompressed:
    """Compressed files are delivered once and never followed"""

    def test_compressed_file_is_finite(self, log_dir):
        path = write_gzip_log(log_dir, 'access.log.1.gz', ['a', 'b'])

        async def run():
            received = []
            follower = await follow(path, received.append, read_compressed=True)
            return follower, received

        follower, received = asyncio.run(run())
        assert follower.closed
        assert [r.content for r in received] == ['a', 'b']

    def test_compressed_file_without_decoding_delivers_nothing(self, log_dir):
        path = write_gzip_log(log_dir, 'access.log.1.gz', ['a'])

        async def run():
            received = []
            follower = await follow(path, received.append)
            return follower, received

        follower, received = asyncio.run(run())
        assert follower.closed
        assert received == []


class TestPollingFallback:
    """Repeated read errors switch a follower to polling exactly once"""

    def test_switches_after_max_errors(self, log_dir):
        follower = FileFollower(os.path.join(log_dir, 'gone.log'), lambda line: None, max_errors=2)

        async def run():
            await follower.check()
            assert follower.state == FollowState.WATCHING
            await follower.check()

        asyncio.run(run())
        assert follower.state == FollowState.POLLING
        assert follower.error_count == 2

    def test_successful_read_resets_error_count(self, log_dir):
        path = os.path.join(log_dir, 'late.log')
        follower = FileFollower(path, lambda line: None, max_errors=3)

        async def run():
            await follower.check()
            write_log(log_dir, 'late.log', ['x'])
            await follower.check()

        asyncio.run(run())
        assert follower.error_count == 0
        assert follower.state == FollowState.WATCHING

    def test_callback_errors_do_not_stop_delivery(self, log_dir):
        path = write_log(log_dir, 'app.log', ['a', 'b'])
        seen = []

        def on_line(line):
            seen.append(line.content)
            if line.content == 'a':
                raise ValueError('boom')

        follower = FileFollower(path, on_line)
        asyncio.run(follower.check())
        assert seen == ['a', 'b']
