import os

from image_builder.config import get_settings


os.environ.setdefault("IMAGE_BUILDER_DATABASE_URL", "sqlite:///./image_builder_test.db")
os.environ.setdefault("IMAGE_BUILDER_DISABLE_WORKERS", "true")
os.environ.setdefault("IMAGE_BUILDER_RETRY_SLEEP_SEC", "0")
get_settings.cache_clear()
