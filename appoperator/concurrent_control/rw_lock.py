# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Read/write lock for asyncio tasks.

Many readers may hold the lock at the same time; a writer holds it alone.
Waiting writers block new readers so a steady stream of readers cannot
starve them.

Usage:
    lock = ReadWriteLock()

    async with lock.reader:
        value = shared.value

    async with lock.writer:
        shared.value = new_value
"""

import asyncio


class _Side:
    def __init__(self, acquire, release):
        self._acquire = acquire
        self._release = release

    async def __aenter__(self):
        await self._acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self._release()


class ReadWriteLock:
    """Writer-preferring read/write lock"""

    def __init__(self):
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0
        self.reader = _Side(self.acquire_read, self.release_read)
        self.writer = _Side(self.acquire_write, self.release_write)

    @property
    def readers(self) -> int:
        return self._readers

    def is_write_locked(self) -> bool:
        return self._writer

    async def acquire_read(self):
        async with self._condition:
            await self._condition.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1

    async def release_read(self):
        async with self._condition:
            if self._readers <= 0:
                raise RuntimeError("release_read called without a held read lock")
            self._readers -= 1
            if self._readers == 0:
                self._condition.notify_all()

    async def acquire_write(self):
        async with self._condition:
            self._waiting_writers += 1
            try:
                await self._condition.wait_for(lambda: not self._writer and self._readers == 0)
            except asyncio.CancelledError:
                self._waiting_writers -= 1
                self._condition.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True

    async def release_write(self):
        async with self._condition:
            if not self._writer:
                raise RuntimeError("release_write called without a held write lock")
            self._writer = False
            self._condition.notify_all()
