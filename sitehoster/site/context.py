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

import threading
import time
from typing import Callable, Optional

from sitehoster.exceptions import ReconcileCancelled


class ReconcileContext:
    """Cooperative cancellation for one reconcile pass.

    Checked before every store call; the pass never enforces its own timeout,
    it only honours the deadline the caller hands in. ``on_checkpoint`` runs at each
    check and may cancel the context.
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        on_checkpoint: Optional[Callable[["ReconcileContext"], None]] = None,
    ):
        self.deadline = deadline
        self._cancelled = cancel_event or threading.Event()
        self._on_checkpoint = on_checkpoint

    @classmethod
    def with_timeout(cls, seconds: float) -> "ReconcileContext":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self):
        if self._on_checkpoint is not None:
            self._on_checkpoint(self)
        if self._cancelled.is_set():
            raise ReconcileCancelled("reconcile cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise ReconcileCancelled("reconcile deadline exceeded")
