"""Capability boundary over the hypervisor management plane.

Steps only ever talk to these protocols. A concrete transport (SOAP/REST
client, session handling, task polling) is supplied by a driver factory and
is not part of this package.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from image_builder.ui import Ui


@dataclass
class Disk:
    disk_size: int
    thin_provisioned: bool = False
    eagerly_scrub: bool = False
    controller_index: int = 0


@dataclass
class StorageSpec:
    disk_controller_types: list[str] = field(default_factory=list)
    disks: list[Disk] = field(default_factory=list)


@dataclass
class CloneRequest:
    name: str
    folder: str
    cluster: str
    host: str
    resource_pool: str
    datastore: str
    linked_clone: bool = False
    network: str = ""
    mac_address: str = ""
    annotation: str = ""
    vapp_properties: dict[str, str] = field(default_factory=dict)
    primary_disk_size: int = 0
    storage: StorageSpec = field(default_factory=StorageSpec)


@dataclass
class OvfAuth:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"OvfAuth(username={self.username!r}, password='***')"


@dataclass
class OvfOption:
    option: str
    description: str = ""


@dataclass
class DeployRequest:
    url: str
    name: str
    folder: str
    cluster: str
    host: str
    resource_pool: str
    datastore: str
    auth: OvfAuth | None = None
    skip_tls_verify: bool = False
    network: str = ""
    mac_address: str = ""
    annotation: str = ""
    vapp_properties: dict[str, str] = field(default_factory=dict)
    deployment_option: str = ""
    storage: StorageSpec = field(default_factory=StorageSpec)
    locale: str = "US"


@dataclass
class HardwareSpec:
    cpus: int = 0
    cpu_cores: int = 0
    cpu_reservation: int = 0
    cpu_limit: int = 0
    cpu_hot_add_enabled: bool = False
    ram: int = 0
    ram_reservation: int = 0
    ram_reserve_all: bool = False
    memory_hot_add_enabled: bool = False
    video_ram: int = 0
    displays: int = 0
    vgpu_profile: str = ""
    nested_hv: bool = False
    firmware: str = ""
    force_bios_setup: bool = False
    vtpm_enabled: bool = False


@dataclass
class ToolsConfig:
    sync_time_with_host: bool | None = None
    upgrade_policy: str = ""


@dataclass
class LinuxPrep:
    host_name: str
    domain: str
    time_zone: str
    hw_clock_utc: bool


@dataclass
class WindowsSysprep:
    computer_name: str
    full_name: str
    organization_name: str
    product_key: str
    workgroup: str
    time_zone: int
    auto_logon: bool
    auto_logon_count: int
    admin_password: str | None
    run_once_commands: list[str]

    def __repr__(self) -> str:
        return (
            f"WindowsSysprep(computer_name={self.computer_name!r}, "
            f"workgroup={self.workgroup!r}, admin_password='***')"
        )


@dataclass
class SysprepText:
    value: str


Identity = LinuxPrep | WindowsSysprep | SysprepText


@dataclass
class IPv6Settings:
    address: str
    prefix_length: int
    gateways: list[str] = field(default_factory=list)


@dataclass
class AdapterSettings:
    ip_address: str | None = None
    subnet_mask: str = ""
    gateways: list[str] = field(default_factory=list)
    dns_servers: list[str] = field(default_factory=list)
    dns_domain: str = ""
    ipv6: IPv6Settings | None = None

    @property
    def dhcp(self) -> bool:
        return self.ip_address is None


@dataclass
class GlobalIPSettings:
    dns_servers: list[str] = field(default_factory=list)
    dns_suffixes: list[str] = field(default_factory=list)


@dataclass
class CustomizationSpec:
    identity: Identity
    adapters: list[AdapterSettings]
    global_ip: GlobalIPSettings


@dataclass
class ExportRequest:
    name: str
    output_dir: str
    format: str = "ovf"
    manifest: str = "sha256"
    force: bool = False
    image_files: bool = False
    options: list[str] = field(default_factory=list)


@dataclass
class ContentLibraryImport:
    library: str
    name: str
    description: str
    cluster: str = ""
    folder: str = ""
    host: str = ""
    resource_pool: str = ""
    datastore: str = ""
    ovf: bool = False
    ovf_flags: list[str] = field(default_factory=list)


class Datastore(Protocol):
    def name(self) -> str: ...

    def upload_file(self, src: str, dst: str, host: str) -> None: ...

    def delete(self, path: str) -> None: ...

    def resolve_path(self, path: str) -> str: ...


class VirtualMachine(Protocol):
    def name(self) -> str: ...

    def datacenter(self) -> str: ...

    def metadata(self) -> dict[str, str]: ...

    def clone(
        self, cancel: threading.Event, request: CloneRequest
    ) -> "VirtualMachine | None": ...

    def configure(self, spec: HardwareSpec) -> None: ...

    def customize(self, spec: CustomizationSpec) -> None: ...

    def add_config_params(
        self, params: dict[str, str], tools: ToolsConfig | None
    ) -> None: ...

    def set_boot_order(self, order: list[str]) -> None: ...

    def power_on(self) -> None: ...

    def power_off(self) -> None: ...

    def is_powered_off(self) -> bool: ...

    def start_shutdown(self) -> None: ...

    def wait_for_shutdown(self, cancel: threading.Event, timeout_sec: float) -> None: ...

    def wait_for_ip(
        self, cancel: threading.Event, timeout_sec: float, network: str | None
    ) -> str: ...

    def find_sata_controller(self) -> Any: ...

    def add_sata_controller(self) -> None: ...

    def add_cdrom(self, controller_type: str, iso_path: str) -> None: ...

    def eject_cdroms(self) -> None: ...

    def remove_cdroms(self) -> None: ...

    def get_dir(self) -> str: ...

    def add_floppy(self, img_path: str) -> None: ...

    def remove_floppy(self) -> None: ...

    def create_snapshot(self, name: str) -> None: ...

    def convert_to_template(self) -> None: ...

    def export(self, cancel: threading.Event, request: ExportRequest) -> str: ...

    def import_to_content_library(self, request: ContentLibraryImport) -> None: ...

    def find_content_library_item_uuid(self, library: str, name: str) -> str: ...

    def destroy(self) -> None: ...


class Driver(Protocol):
    def find_vm(self, name: str) -> VirtualMachine: ...

    def pre_clean_vm(
        self,
        ui: Ui,
        vm_path: str,
        force: bool,
        cluster: str,
        host: str,
        resource_pool: str,
    ) -> None: ...

    def deploy_ovf(
        self, cancel: threading.Event, request: DeployRequest, ui: Ui
    ) -> VirtualMachine | None: ...

    def get_ovf_options(
        self,
        cancel: threading.Event,
        url: str,
        auth: OvfAuth | None,
        locale: str,
    ) -> list[OvfOption]: ...

    def find_datastore(self, name: str, host: str) -> Datastore: ...

    def resolve_datastore(self, cluster: str, datastore_cluster: str) -> Datastore: ...

    def close(self) -> None: ...


DriverFactory = Callable[[Any], Driver]
