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
Celery Beat schedule for the periodic full resync of Sites
"""

from sitehoster.config import settings

CELERY_BEAT_SCHEDULE = {
    # Re-enqueue every Site so drift in children is corrected even without watch events
    "resync-sites": {
        "task": "sitehoster.tasks.reconcile_site_task.resync_sites_task",
        "schedule": settings.resync_interval,
        "options": {
            "expires": settings.resync_interval,
        },
    },
}

CELERY_TIMEZONE = "UTC"
