import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from image_builder.schemas import ContentLibraryDestinationConfig, LocationConfig


logger = logging.getLogger(__name__)

BUILDER_ID = "image-builder.vsphere"


@dataclass
class Artifact:
    name: str
    datacenter: str
    location: LocationConfig
    vm: Any
    content_library: ContentLibraryDestinationConfig | None = None
    output_dir: str | None = None
    state_data: dict[str, Any] = field(default_factory=dict)

    builder_id = BUILDER_ID

    @property
    def id(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.name

    def files(self) -> list[str]:
        if not self.output_dir:
            return []
        root = Path(self.output_dir)
        if not root.is_dir():
            return []
        return sorted(str(path) for path in root.rglob("*") if path.is_file())

    def state(self, name: str) -> Any:
        if name == "registry_metadata":
            return self.registry_metadata()
        return self.state_data.get(name)

    def registry_metadata(self) -> dict[str, Any]:
        labels: dict[str, str] = {}
        metadata = self.state_data.get("metadata")
        if isinstance(metadata, dict):
            labels.update({str(key): str(value) for key, value in metadata.items()})
        if self.location.cluster:
            labels["cluster"] = self.location.cluster
        if self.location.host:
            labels["host"] = self.location.host
        if self.content_library is not None:
            labels["content_library_destination"] = (
                f"{self.content_library.library}/{self.content_library.name}"
            )
        source = self.state_data.get("source_template") or ""
        if source:
            labels["source_template"] = source
        return {
            "id": self.name,
            "region": self.datacenter,
            "provider": "vsphere",
            "source_id": source,
            "labels": labels,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "builder_id": self.builder_id,
            "datacenter": self.datacenter,
            "files": self.files(),
            "content_library_item_uuid": self.state_data.get("content_library_item_uuid"),
            "metadata": self.registry_metadata(),
        }

    def destroy(self) -> None:
        if self.output_dir:
            try:
                shutil.rmtree(self.output_dir)
            except OSError as exc:
                logger.warning(
                    "failed to remove output directory path=%s error=%s", self.output_dir, exc
                )
        self.vm.destroy()
