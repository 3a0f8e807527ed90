import logging
import threading
from urllib.parse import urlsplit

from image_builder.clients.http import RequestFailure
from image_builder.clients.remote_source import RemoteSourceClient
from image_builder.errors import RemoteDeployError
from image_builder.metrics import metrics
from image_builder.runner import Step, StepAction, halt
from image_builder.sanitize import sanitize_url
from image_builder.schemas import RemoteSourceConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import get_ui, state_secrets


logger = logging.getLogger(__name__)


def check_remote_url(config: RemoteSourceConfig) -> str | None:
    """Return an error for URLs the deployment would reject, else None."""
    try:
        path = urlsplit(config.url).path.lower()
    except ValueError:
        return "URL must point to an OVF (.ovf) or OVA (.ova) file"
    if not (path.endswith(".ovf") or path.endswith(".ova")):
        return "URL must point to an OVF (.ovf) or OVA (.ova) file"
    if config.skip_tls_verify and config.url.lower().startswith("http://"):
        return "skip_tls_verify is only applicable for HTTPS URLs, but URL uses HTTP protocol"
    return None


class StepProbeRemoteSource(Step):
    def __init__(self, config: RemoteSourceConfig, client: RemoteSourceClient):
        self.config = config
        self.client = client

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        problem = check_remote_url(self.config)
        if problem:
            return halt(state, problem)

        ui = get_ui(state)
        ui.say("Checking remote OVF/OVA source...")
        secrets = state_secrets(state) + (self.config.password_value,)
        try:
            info = self.client.head(
                self.config.url,
                username=self.config.username,
                password=self.config.password_value,
                skip_tls_verify=self.config.skip_tls_verify,
            )
        except RequestFailure as exc:
            metrics.inc("remote_deploy_failures_total")
            return halt(
                state,
                RemoteDeployError(
                    url=self.config.url,
                    cause=exc.detail,
                    operation="remote source check failed",
                    secrets=secrets,
                ),
            )
        logger.info(
            "remote source reachable url=%s status=%s size=%s",
            sanitize_url(self.config.url),
            info.status_code,
            info.content_length,
        )
        return StepAction.CONTINUE
