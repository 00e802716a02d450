"""
cluster_bootstrap.api.__main__

`python -m cluster_bootstrap.api`: serve the status API with the environment's settings.
"""

from __future__ import annotations

import uvicorn

from cluster_bootstrap.api.app import create_app
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.settings import Settings, get_settings

log = get_logger(__name__)


def serve(settings: Settings) -> None:
    app = create_app(settings=settings)
    default_secret = Settings.model_fields["jwt_secret"].default
    if settings.jwt_secret_file is None and settings.jwt_secret == default_secret:
        log.warning("status_api_default_secret", hint="set CLUSTER_BOOTSTRAP_JWT_SECRET_FILE")
    # create_app configured logging; keep uvicorn from installing its own handlers.
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
        access_log=False,
    )


def main() -> None:
    serve(get_settings())


if __name__ == "__main__":
    main()
