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

import logging
import threading
import time
import uuid
from typing import Optional

import redis

logger = logging.getLogger(__name__)

# Delete the key only if we still own it
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# Push the expiry out only if we still own it
EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class LockAcquireError(Exception):
    pass


class RedisLock:
    """
    Distributed lock on a single Redis key.

    The key is set with NX/EX to a per-acquire UUID so a holder can only release or
    extend its own lock, and a crashed holder's lock expires after ``expire_time``.
    """

    def __init__(
        self,
        key: str,
        redis_url: str = "redis://localhost:6379",
        expire_time: int = 30,
        retry_times: int = 3,
        retry_delay: float = 0.1,
    ):
        if not key:
            raise ValueError("Redis lock key is required")
        self._key = key
        self._redis_url = redis_url
        self._expire_time = expire_time
        self._retry_times = retry_times
        self._retry_delay = retry_delay
        self._redis_client = None
        self._lock_value: Optional[str] = None
        self._release_sha: Optional[str] = None
        self._extend_sha: Optional[str] = None

    @property
    def key(self) -> str:
        return self._key

    def _client(self):
        if self._redis_client is None:
            self._redis_client = redis.from_url(self._redis_url, decode_responses=True)
            self._redis_client.ping()
            self._release_sha = self._redis_client.script_load(RELEASE_SCRIPT)
            self._extend_sha = self._redis_client.script_load(EXTEND_SCRIPT)
        return self._redis_client

    def is_locked(self) -> bool:
        return self._lock_value is not None

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Try to take the lock.

        With a timeout, keep retrying every ``retry_delay`` until it elapses; otherwise
        make ``retry_times`` extra attempts. Returns False when the lock stays taken.
        """
        if self.is_locked():
            return True

        client = self._client()
        value = str(uuid.uuid4())
        deadline = time.monotonic() + timeout if timeout is not None else None
        attempt = 0
        while True:
            if client.set(self._key, value, nx=True, ex=self._expire_time):
                self._lock_value = value
                logger.debug(f"Acquired lock {self._key}")
                return True

            attempt += 1
            if deadline is not None:
                if time.monotonic() + self._retry_delay > deadline:
                    break
            elif attempt > self._retry_times:
                break
            time.sleep(self._retry_delay)

        logger.debug(f"Failed to acquire lock {self._key} after {attempt} attempts")
        return False

    def release(self):
        if not self.is_locked():
            return
        try:
            released = self._client().evalsha(self._release_sha, 1, self._key, self._lock_value)
            if not released:
                logger.warning(f"Lock {self._key} expired before it was released")
        finally:
            self._lock_value = None

    def extend(self, expire_time: Optional[int] = None) -> bool:
        """Refresh the expiry of a held lock; False means it was lost"""
        if not self.is_locked():
            return False
        ttl = expire_time or self._expire_time
        extended = self._client().evalsha(self._extend_sha, 1, self._key, self._lock_value, ttl)
        if not extended:
            self._lock_value = None
            return False
        return True

    def __enter__(self):
        if not self.acquire():
            raise LockAcquireError(f"Failed to acquire lock {self._key}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class ThreadingLock:
    """In-process lock with the same interface as RedisLock; instances with the same key share one lock.

    The shared lock lives in a registry only while some instance holds or waits for it.
    """

    # key -> [lock, number of holders and waiters]
    _locks = {}
    _registry_lock = threading.Lock()

    def __init__(self, key: str, **kwargs):
        if not key:
            raise ValueError("Lock key is required")
        self._key = key
        self._entry = None
        self._held = False

    def _ref(self):
        with ThreadingLock._registry_lock:
            entry = ThreadingLock._locks.setdefault(self._key, [threading.Lock(), 0])
            entry[1] += 1
        return entry

    def _unref(self, entry):
        with ThreadingLock._registry_lock:
            entry[1] -= 1
            if entry[1] == 0 and ThreadingLock._locks.get(self._key) is entry:
                del ThreadingLock._locks[self._key]

    @property
    def key(self) -> str:
        return self._key

    def is_locked(self) -> bool:
        return self._held

    def acquire(self, timeout: Optional[float] = None) -> bool:
        if self._held:
            return True
        entry = self._ref()
        acquired = entry[0].acquire(timeout=timeout if timeout is not None else -1)
        if not acquired:
            self._unref(entry)
            return False
        self._entry = entry
        self._held = True
        return True

    def release(self):
        if self._held:
            entry, self._entry = self._entry, None
            self._held = False
            entry[0].release()
            self._unref(entry)

    def extend(self, expire_time: Optional[int] = None) -> bool:
        return self._held

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


def create_lock(lock_type: str = "redis", **kwargs):
    """Factory for lock implementations: "redis" or "threading" """
    if lock_type == "redis":
        return RedisLock(**kwargs)
    if lock_type == "threading":
        return ThreadingLock(**kwargs)
    raise ValueError(f"Unknown lock type: {lock_type}")
