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

from contextlib import contextmanager
from typing import Optional


class OperatorError(Exception):
    """Base class for all operator errors"""


class StoreError(OperatorError):
    """A resource store operation failed

    Args:
        message: Human readable description
        status: HTTP-like status code reported by the store, if any
        phase: Reconcile phase that was running when the error happened
    """

    def __init__(self, message: str, status: Optional[int] = None, phase: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.phase = phase

    @property
    def transient(self) -> bool:
        # No status means the request never got an answer
        return self.status is None or self.status == 429 or self.status >= 500

    def __str__(self) -> str:
        prefix = f"[{self.phase}] " if self.phase else ""
        suffix = f" (status {self.status})" if self.status is not None else ""
        return f"{prefix}{self.message}{suffix}"


class NotFoundError(StoreError):
    def __init__(self, message: str, phase: Optional[str] = None):
        super().__init__(message, status=404, phase=phase)


class ConflictError(StoreError):
    def __init__(self, message: str, phase: Optional[str] = None):
        super().__init__(message, status=409, phase=phase)


class AlreadyExistsError(StoreError):
    def __init__(self, message: str, phase: Optional[str] = None):
        super().__init__(message, status=409, phase=phase)


class FinalizerProtocolError(OperatorError):
    """Adding or removing the controller finalizer failed"""

    def __init__(self, phase: str, cause: Exception):
        super().__init__(f"Finalizer error during {phase}: {cause}")
        self.phase = phase
        self.cause = cause


class SerializationError(OperatorError):
    """A resource or workload descriptor could not be built"""


class BootstrapError(OperatorError):
    """The operator cannot start serving"""


@contextmanager
def store_phase(phase: str):
    """Annotate store errors raised inside the block with the reconcile phase"""
    try:
        yield
    except StoreError as e:
        if e.phase is None:
            e.phase = phase
        raise
