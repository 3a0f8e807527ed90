import json
import logging
import threading
import uuid

from image_builder.builder import Builder, load_driver_factory
from image_builder.config import get_settings
from image_builder.db import session_scope
from image_builder.driver import DriverFactory
from image_builder.errors import BuildError
from image_builder.metrics import metrics
from image_builder.models import Build
from image_builder.recorder import EventRecorder
from image_builder.repositories import cas_build_state, write_event
from image_builder.sanitize import sanitize_error
from image_builder.schemas import BuildConfig
from image_builder.state_machine import BuildState
from image_builder.ui import LoggingUi


logger = logging.getLogger(__name__)


def source_kind(config: BuildConfig) -> str:
    return "remote" if config.clone.remote_source is not None else "template"


class BuildManager:
    """Runs submitted builds on background threads, at most N at a time."""

    def __init__(self, driver_factory: DriverFactory | None = None):
        settings = get_settings()
        self._driver_factory = driver_factory
        self._slots = threading.BoundedSemaphore(settings.max_concurrent_builds)
        self._lock = threading.Lock()
        self._cancel_events: dict[str, threading.Event] = {}
        self._threads: dict[str, threading.Thread] = {}

    def driver_factory(self) -> DriverFactory:
        if self._driver_factory is None:
            path = get_settings().driver_factory
            if not path:
                raise RuntimeError("no driver factory configured (IMAGE_BUILDER_DRIVER_FACTORY)")
            self._driver_factory = load_driver_factory(path)
        return self._driver_factory

    def submit(self, config: BuildConfig) -> tuple[str, list[str]]:
        """Validate and queue a build; raises ConfigError on invalid config."""
        warnings = config.prepare()
        build_id = uuid.uuid4().hex
        with session_scope() as session:
            session.add(
                Build(
                    build_id=build_id,
                    vm_name=config.location.vm_name,
                    source_kind=source_kind(config),
                    state=BuildState.QUEUED.value,
                )
            )
            session.flush()
            write_event(
                session,
                "build.queued",
                {"vm_name": config.location.vm_name, "warnings": warnings},
                build_id,
            )

        cancel = threading.Event()
        with self._lock:
            self._cancel_events[build_id] = cancel
        if not get_settings().disable_workers:
            thread = threading.Thread(
                target=self.run_build,
                args=(build_id, config, cancel),
                name=f"build-{build_id[:8]}",
                daemon=True,
            )
            with self._lock:
                self._threads[build_id] = thread
            thread.start()
        logger.info("build queued build_id=%s vm_name=%s", build_id, config.location.vm_name)
        return build_id, warnings

    def cancel(self, build_id: str) -> bool:
        with self._lock:
            cancel = self._cancel_events.get(build_id)
        if cancel is not None:
            cancel.set()
        with session_scope() as session:
            build = session.get(Build, build_id)
            if build is None:
                return False
            if cas_build_state(
                session, build, BuildState.QUEUED.value, BuildState.CANCELLED.value
            ):
                metrics.inc("builds_cancelled_total")
                write_event(session, "build.cancelled", {"while": "queued"}, build_id)
            else:
                write_event(session, "build.cancel_requested", {"state": build.state}, build_id)
        logger.info("build cancel requested build_id=%s", build_id)
        return True

    def _transition(
        self, build_id: str, expected: str, target: str, last_error: str | None = None
    ) -> bool:
        with session_scope() as session:
            build = session.get(Build, build_id)
            if build is None:
                return False
            return cas_build_state(session, build, expected, target, last_error)

    def run_build(
        self, build_id: str, config: BuildConfig, cancel: threading.Event | None = None
    ) -> str:
        cancel = cancel or threading.Event()
        with self._slots:
            if not self._transition(
                build_id, BuildState.QUEUED.value, BuildState.RUNNING.value
            ):
                logger.info("build no longer queued build_id=%s", build_id)
                return BuildState.CANCELLED.value
            metrics.inc("builds_started_total")
            with session_scope() as session:
                write_event(session, "build.started", {}, build_id)
            try:
                return self._execute(build_id, config, cancel)
            finally:
                with self._lock:
                    self._cancel_events.pop(build_id, None)
                    self._threads.pop(build_id, None)

    def _execute(self, build_id: str, config: BuildConfig, cancel: threading.Event) -> str:
        secrets = config.secrets()
        ui = LoggingUi(build_id=build_id, secrets=secrets)
        try:
            builder = Builder(config, self.driver_factory())
            artifact = builder.run(ui, cancel, EventRecorder(build_id))
        except BuildError as exc:
            target = BuildState.CANCELLED if exc.cancelled else BuildState.FAILED
            return self._finish(build_id, target, error=exc.detail)
        except Exception as exc:  # noqa: BLE001
            logger.exception("build crashed build_id=%s", build_id)
            return self._finish(
                build_id, BuildState.FAILED, error=sanitize_error(exc, secrets)
            )

        artifact_payload = artifact.to_dict() if artifact is not None else None
        return self._finish(build_id, BuildState.SUCCEEDED, artifact=artifact_payload)

    def _finish(
        self,
        build_id: str,
        target: BuildState,
        error: str | None = None,
        artifact: dict | None = None,
    ) -> str:
        with session_scope() as session:
            build = session.get(Build, build_id)
            if build is None:
                return target.value
            if not cas_build_state(
                session, build, BuildState.RUNNING.value, target.value, error
            ):
                logger.warning(
                    "unexpected build state build_id=%s state=%s target=%s",
                    build_id,
                    build.state,
                    target.value,
                )
                return build.state
            if artifact is not None:
                build.artifact_id = artifact["id"]
                build.artifact_json = json.dumps(artifact, sort_keys=True, default=str)
            payload: dict = {}
            if error:
                payload["error"] = error
            if artifact is not None:
                payload["artifact_id"] = artifact["id"]
            write_event(session, f"build.{target.value.lower()}", payload, build_id)
        metrics.build_finished(target)
        logger.info("build finished build_id=%s state=%s", build_id, target.value)
        return target.value

    def stop(self, timeout: float = 1.0) -> None:
        with self._lock:
            events = list(self._cancel_events.values())
            threads = list(self._threads.values())
        for event in events:
            event.set()
        for thread in threads:
            thread.join(timeout=timeout)
