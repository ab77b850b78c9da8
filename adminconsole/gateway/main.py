from __future__ import annotations

import os
from typing import Optional

from fastapi import FastAPI

from adminconsole.config.settings import Settings
from adminconsole.gateway.routers import metrics, projects
from adminconsole.policy.capability_map import CapabilityMapMiddleware


def create_app(map_path: Optional[str] = None, reload_sec: Optional[int] = None) -> FastAPI:
    cfg = Settings()
    app = FastAPI(title="Admin Console Gateway", version="v0.1.0")

    # capability route map: configs/security/capability_map.yaml unless overridden
    app.add_middleware(
        CapabilityMapMiddleware,
        map_path=map_path or cfg.CAPABILITY_MAP_PATH,
        reload_sec=reload_sec or cfg.CAPABILITY_RELOAD_SEC,
    )

    app.include_router(projects.router)
    app.include_router(metrics.router)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn  # type: ignore

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("CONSOLE_GATEWAY_PORT", "8080")))
