import posixpath
import time
from datetime import datetime
from ipaddress import ip_address

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from image_builder.errors import ConfigError


def _secret(value: SecretStr | None) -> str:
    return value.get_secret_value() if value is not None else ""


class ConnectConfig(BaseModel):
    vcenter_server: str = ""
    username: str = ""
    password: SecretStr | None = None
    insecure_connection: bool = False
    datacenter: str = ""

    def prepare(self) -> list[str]:
        errors: list[str] = []
        if not self.vcenter_server:
            errors.append("'vcenter_server' is required")
        if not self.username:
            errors.append("'username' is required")
        if not _secret(self.password):
            errors.append("'password' is required")
        return errors


class LocationConfig(BaseModel):
    vm_name: str = ""
    folder: str = ""
    cluster: str = ""
    host: str = ""
    resource_pool: str = ""
    datastore: str = ""
    datastore_cluster: str = ""
    set_host_for_datastore_uploads: bool = False

    def prepare(self) -> list[str]:
        errors: list[str] = []
        if not self.vm_name:
            errors.append("'vm_name' is required")
        if not self.cluster and not self.host:
            errors.append("'host' or 'cluster' is required")
        if self.folder:
            self.folder = posixpath.normpath(self.folder).lstrip("/")
        return errors

    @property
    def vm_path(self) -> str:
        return posixpath.join(self.folder, self.vm_name)


class HardwareConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cpus: int = Field(default=0, ge=0, alias="CPUs")
    cpu_cores: int = Field(default=0, ge=0)
    cpu_reservation: int = Field(default=0, ge=0, alias="CPU_reservation")
    cpu_limit: int = Field(default=0, alias="CPU_limit")
    cpu_hot_plug: bool = Field(default=False, alias="CPU_hot_plug")
    ram: int = Field(default=0, ge=0, alias="RAM")
    ram_reservation: int = Field(default=0, ge=0, alias="RAM_reservation")
    ram_reserve_all: bool = Field(default=False, alias="RAM_reserve_all")
    ram_hot_plug: bool = Field(default=False, alias="RAM_hot_plug")
    video_ram: int = Field(default=0, ge=0)
    displays: int = Field(default=0, ge=0)
    vgpu_profile: str = ""
    nested_hv: bool = Field(default=False, alias="NestedHV")
    firmware: str = ""
    force_bios_setup: bool = False
    vtpm: bool = Field(default=False, alias="vTPM")

    def prepare(self) -> list[str]:
        errors: list[str] = []
        if self.ram_reservation > 0 and self.ram_reserve_all:
            errors.append("'RAM_reservation' and 'RAM_reserve_all' cannot be used together")
        if self.firmware not in ("", "bios", "efi", "efi-secure"):
            errors.append("'firmware' must be '', 'bios', 'efi' or 'efi-secure'")
        if self.vtpm and self.firmware not in ("efi", "efi-secure"):
            errors.append(
                "'vTPM' could be enabled only when 'firmware' set to 'efi' or 'efi-secure'"
            )
        return errors

    def is_empty(self) -> bool:
        return self == HardwareConfig()


class DiskConfig(BaseModel):
    disk_size: int = Field(default=0, ge=0)
    disk_thin_provisioned: bool = False
    disk_eagerly_scrub: bool = False
    disk_controller_index: int = Field(default=0, ge=0)


class StorageConfig(BaseModel):
    disk_controller_type: list[str] = Field(default_factory=list)
    storage: list[DiskConfig] = Field(default_factory=list)

    def prepare(self) -> list[str]:
        errors: list[str] = []
        for index, disk in enumerate(self.storage):
            if disk.disk_size == 0:
                errors.append(f"storage[{index}].'disk_size' is required")
            if disk.disk_controller_index >= len(self.disk_controller_type):
                errors.append(
                    f"storage[{index}].'disk_controller_index' references an unknown disk controller"
                )
        return errors


class RemoteSourceConfig(BaseModel):
    url: str = ""
    username: str = ""
    password: SecretStr | None = None
    skip_tls_verify: bool = False

    def prepare(self) -> list[str]:
        errors: list[str] = []
        if not self.url:
            errors.append("'url' is required when using 'remote_source'")
        elif not (self.url.startswith("http://") or self.url.startswith("https://")):
            errors.append("'remote_source' URL must use HTTP or HTTPS protocol")
        password = _secret(self.password)
        if self.username and not password:
            errors.append(
                "'password' is required when 'username' is specified for remote source"
            )
        if password and not self.username:
            errors.append(
                "'username' is required when 'password' is specified for remote source"
            )
        return errors

    @property
    def password_value(self) -> str:
        return _secret(self.password)

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password_value)


class VAppConfig(BaseModel):
    properties: dict[str, str] = Field(default_factory=dict)
    deployment_option: str = ""


class CloneConfig(BaseModel):
    template: str = ""
    remote_source: RemoteSourceConfig | None = None
    disk_size: int = Field(default=0, ge=0)
    linked_clone: bool = False
    network: str = ""
    mac_address: str = ""
    notes: str = ""
    destroy: bool = False
    vapp: VAppConfig = Field(default_factory=VAppConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def prepare(self) -> list[str]:
        errors = self.storage.prepare()
        if not self.template and self.remote_source is None:
            errors.append("either 'template' or 'remote_source' must be specified")
        elif self.template and self.remote_source is not None:
            errors.append(
                "cannot specify both 'template' and 'remote_source' - choose one source type"
            )
        if self.remote_source is not None:
            errors.extend(self.remote_source.prepare())
        if self.linked_clone and self.disk_size != 0:
            errors.append("'linked_clone' and 'disk_size' cannot be used together")
        if self.mac_address and not self.network:
            errors.append("'network' is required when 'mac_address' is specified")
        return errors


class LinuxOptions(BaseModel):
    domain: str = ""
    host_name: str = ""
    hw_clock_utc: bool = True
    time_zone: str = "UTC"

    def prepare(self) -> list[str]:
        errors: list[str] = []
        if not self.host_name:
            errors.append("linux options: `host_name` is required")
        if not self.domain:
            errors.append("linux options: `domain` is required")
        if not self.time_zone:
            self.time_zone = "UTC"
        return errors


class WindowsOptions(BaseModel):
    run_once_command_list: list[str] = Field(default_factory=list)
    auto_logon: bool | None = None
    auto_logon_count: int | None = None
    admin_password: SecretStr | None = None
    time_zone: int | None = None
    workgroup: str = ""
    computer_name: str = ""
    full_name: str = "Administrator"
    organization_name: str = "Built by image-builder"
    product_key: str = ""

    def prepare(self) -> list[str]:
        errors: list[str] = []
        if not self.computer_name:
            errors.append("windows options: `computer_name` is required")
        if not self.full_name:
            self.full_name = "Administrator"
        if not self.organization_name:
            self.organization_name = "Built by image-builder"
        return errors


class NetworkInterface(BaseModel):
    dns_server_list: list[str] = Field(default_factory=list)
    dns_domain: str = ""
    ipv4_address: str = ""
    ipv4_netmask: int = Field(default=0, ge=0, le=32)
    ipv6_address: str = ""
    ipv6_netmask: int = Field(default=0, ge=0, le=128)


CUSTOMIZE_MUTUALLY_EXCLUSIVE = (
    "only one of `linux_options`, `windows_options`, `windows_sysprep_file` can be set"
)
SYSPREP_FILE_DEPRECATED = (
    "`windows_sysprep_file` is deprecated and will be removed in a future release. "
    "please use `windows_sysprep_text`."
)


class CustomizeConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    linux_options: LinuxOptions | None = None
    windows_options: WindowsOptions | None = None
    windows_sysprep_file: str = ""
    windows_sysprep_text: str = ""
    network_interfaces: list[NetworkInterface] = Field(
        default_factory=list, alias="network_interface"
    )
    ipv4_gateway: str = ""
    ipv6_gateway: str = ""
    dns_server_list: list[str] = Field(default_factory=list)
    dns_suffix_list: list[str] = Field(default_factory=list)

    def prepare(self) -> tuple[list[str], list[str]]:
        warnings: list[str] = []
        errors: list[str] = []

        if not self.network_interfaces:
            errors.append("one or more `network_interface` must be provided")

        selected = 0
        if self.linux_options is not None:
            selected += 1
        if self.windows_options is not None:
            selected += 1
        if self.windows_sysprep_file:
            warnings.append(SYSPREP_FILE_DEPRECATED)
            selected += 1
        if self.windows_sysprep_text:
            selected += 1

        if selected > 1:
            errors.append(CUSTOMIZE_MUTUALLY_EXCLUSIVE)
        elif selected == 0:
            errors.append(
                "one of `linux_options`, `windows_options`, `windows_sysprep_file`, "
                "or 'windows_sysprep_text' must be set"
            )

        if self.linux_options is not None:
            errors.extend(self.linux_options.prepare())
        if self.windows_options is not None:
            errors.extend(self.windows_options.prepare())

        for index, nic in enumerate(self.network_interfaces):
            for field_name in ("ipv4_address", "ipv6_address"):
                value = getattr(nic, field_name)
                if value and not _is_ip(value):
                    errors.append(
                        f"network_interface[{index}]: `{field_name}` is not a valid IP address"
                    )
        for field_name in ("ipv4_gateway", "ipv6_gateway"):
            value = getattr(self, field_name)
            if value and not _is_ip(value):
                errors.append(f"`{field_name}` is not a valid IP address")
        return warnings, errors


def _is_ip(value: str) -> bool:
    try:
        ip_address(value)
    except ValueError:
        return False
    return True


class CDRomConfig(BaseModel):
    cdrom_type: str = ""
    iso_paths: list[str] = Field(default_factory=list)

    def prepare(self, reattach: "ReattachCDRomConfig") -> list[str]:
        errors: list[str] = []
        if self.cdrom_type not in ("", "ide", "sata"):
            errors.append("'cdrom_type' must be 'ide' or 'sata'")
        for iso_path in self.iso_paths:
            if not iso_path.strip():
                errors.append("ISO path cannot be empty or whitespace-only")
        if reattach.reattach_cdroms < 0 or reattach.reattach_cdroms > 4:
            errors.append(
                "'reattach_cdroms' should be between 1 and 4, "
                "if set to 0, `reattach_cdroms` is ignored and the step is skipped"
            )
        elif reattach.reattach_cdroms > 0 and not self.iso_paths:
            errors.append("'reattach_cdroms' requires at least one entry in 'iso_paths'")
        return errors


class RemoveCDRomConfig(BaseModel):
    remove_cdrom: bool = False


class ReattachCDRomConfig(BaseModel):
    reattach_cdroms: int = 0


class FloppyConfig(BaseModel):
    floppy_img_path: str = ""


class ConfigParamsConfig(BaseModel):
    configuration_parameters: dict[str, str] = Field(default_factory=dict)
    tools_sync_time: bool = False
    tools_upgrade_policy: bool = False


class RunConfig(BaseModel):
    boot_order: str = ""


class WaitIpConfig(BaseModel):
    ip_wait_timeout_sec: int | None = Field(default=None, ge=1)
    ip_wait_address: str | None = None


class ShutdownConfig(BaseModel):
    shutdown_timeout_sec: int | None = Field(default=None, ge=1)
    disable_shutdown: bool = False


class ExportConfig(BaseModel):
    name: str = ""
    force: bool = False
    image_files: bool = False
    manifest: str = ""
    output_directory: str = ""
    options: list[str] = Field(default_factory=list)
    output_format: str = ""

    def prepare(self, location: LocationConfig) -> list[str]:
        errors: list[str] = []
        if not self.name:
            self.name = location.vm_name
        if not self.output_directory:
            self.output_directory = f"output-{location.vm_name}"
        if self.output_format == "":
            self.output_format = "ovf"
        elif self.output_format not in ("ovf", "ova"):
            errors.append(
                f"unsupported output format: {self.output_format}. "
                "available options include 'ovf' and 'ova'"
            )
        if self.manifest == "":
            self.manifest = "sha256"
        elif self.manifest not in ("none", "sha1", "sha256", "sha512"):
            errors.append(
                f"unsupported hash: {self.manifest}. available options include "
                "'none', 'sha1', 'sha256', and 'sha512'"
            )
        return errors


class ContentLibraryDestinationConfig(BaseModel):
    library: str = ""
    name: str = ""
    description: str = ""
    cluster: str = ""
    folder: str = ""
    host: str = ""
    resource_pool: str = ""
    datastore: str = ""
    destroy: bool = False
    ovf: bool = False
    skip_import: bool = False
    ovf_flags: list[str] = Field(default_factory=list)

    def prepare(self, location: LocationConfig) -> list[str]:
        errors: list[str] = []
        if not self.library:
            errors.append("a library name must be provided")
        if self.ovf:
            if not self.name:
                self.name = location.vm_name
        else:
            if self.name and self.name == location.vm_name:
                errors.append(
                    "the content library destination name must be different from the VM name"
                )
            if not self.name:
                self.name = f"{location.vm_name}{int(time.time())}"
            self.cluster = self.cluster or location.cluster
            self.host = self.host or location.host
            self.resource_pool = self.resource_pool or location.resource_pool
        if not self.description:
            self.description = f"Built by image-builder {location.vm_name} VM template"
        return errors


class BuildConfig(BaseModel):
    connect: ConnectConfig = Field(default_factory=ConnectConfig)
    location: LocationConfig = Field(default_factory=LocationConfig)
    hardware: HardwareConfig = Field(default_factory=HardwareConfig)
    clone: CloneConfig = Field(default_factory=CloneConfig)
    customize: CustomizeConfig | None = None
    cdrom: CDRomConfig = Field(default_factory=CDRomConfig)
    remove_cdrom: RemoveCDRomConfig = Field(default_factory=RemoveCDRomConfig)
    reattach_cdrom: ReattachCDRomConfig = Field(default_factory=ReattachCDRomConfig)
    floppy: FloppyConfig = Field(default_factory=FloppyConfig)
    config_params: ConfigParamsConfig = Field(default_factory=ConfigParamsConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    wait_ip: WaitIpConfig = Field(default_factory=WaitIpConfig)
    shutdown: ShutdownConfig = Field(default_factory=ShutdownConfig)
    communicator: str = "ssh"
    create_snapshot: bool = False
    snapshot_name: str = ""
    convert_to_template: bool = False
    content_library_destination: ContentLibraryDestinationConfig | None = None
    export: ExportConfig | None = None
    force: bool = False

    def prepare(self) -> list[str]:
        warnings: list[str] = []
        errors: list[str] = []
        errors.extend(self.connect.prepare())
        errors.extend(self.location.prepare())
        errors.extend(self.hardware.prepare())
        errors.extend(self.clone.prepare())
        if self.customize is not None:
            customize_warnings, customize_errors = self.customize.prepare()
            warnings.extend(customize_warnings)
            errors.extend(customize_errors)
        errors.extend(self.cdrom.prepare(self.reattach_cdrom))
        if self.content_library_destination is not None:
            errors.extend(self.content_library_destination.prepare(self.location))
        if self.export is not None:
            errors.extend(self.export.prepare(self.location))
        if self.communicator == "none" and self.shutdown.disable_shutdown:
            warnings.append(
                "The parameter `disable_shutdown` is ignored as it requires a `communicator`."
            )
        if errors:
            raise ConfigError(errors, warnings)
        return warnings

    def secrets(self) -> tuple[str, ...]:
        values = [_secret(self.connect.password)]
        if self.clone.remote_source is not None:
            values.append(self.clone.remote_source.password_value)
        if self.customize is not None and self.customize.windows_options is not None:
            values.append(_secret(self.customize.windows_options.admin_password))
        return tuple(value for value in values if value)


class BuildCreateResponse(BaseModel):
    build_id: str
    state: str
    warnings: list[str] = Field(default_factory=list)


class BuildRead(BaseModel):
    build_id: str
    vm_name: str
    source_kind: str
    state: str
    last_error: str | None
    artifact_id: str | None
    created_at: datetime
    updated_at: datetime


class BuildEventRead(BaseModel):
    id: int
    timestamp: datetime
    event_type: str
    payload: dict
