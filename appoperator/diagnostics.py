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

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from appoperator.concurrent_control import ReadWriteLock


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Diagnostics(BaseModel):
    """Snapshot served by the HTTP layer"""

    last_event: datetime
    reporter: str


class SharedDiagnostics:
    """Process-wide diagnostics written by reconciles and read by the web server"""

    def __init__(self, reporter: str):
        self._lock = ReadWriteLock()
        self._diagnostics = Diagnostics(last_event=utc_now(), reporter=reporter)

    async def record_event(self, when: Optional[datetime] = None):
        async with self._lock.writer:
            self._diagnostics.last_event = when or utc_now()

    async def reporter(self) -> str:
        async with self._lock.reader:
            return self._diagnostics.reporter

    async def snapshot(self) -> Diagnostics:
        async with self._lock.reader:
            return self._diagnostics.model_copy()
