import logging

from fastapi import FastAPI

from image_builder import api
from image_builder.api import router
from image_builder.db import init_db
from image_builder.logging_config import configure_logging


logger = logging.getLogger(__name__)


app = FastAPI(title="Image Builder")
app.include_router(router)


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    init_db()
    api.get_build_manager()
    logger.info("image-builder startup complete")


@app.on_event("shutdown")
def shutdown() -> None:
    if api.build_manager is not None:
        api.build_manager.stop()
