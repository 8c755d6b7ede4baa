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

from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse


def create_app(ready: Optional[Callable[[], bool]] = None) -> FastAPI:
    """Health probe app; ``ready`` reports whether the controller has synced"""
    app = FastAPI(title="site-hoster probes")

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz():
        if ready is not None and not ready():
            return JSONResponse(status_code=503, content={"status": "not ready"})
        return {"status": "ok"}

    return app
