import ipaddress
import logging
import threading
from pathlib import Path

from image_builder.driver import (
    AdapterSettings,
    CustomizationSpec,
    GlobalIPSettings,
    Identity,
    IPv6Settings,
    LinuxPrep,
    SysprepText,
    WindowsSysprep,
)
from image_builder.errors import StepError
from image_builder.runner import Step, StepAction, halt
from image_builder.schemas import CustomizeConfig, NetworkInterface, WindowsOptions
from image_builder.state_bag import StateBag
from image_builder.steps.common import fail, get_ui, get_vm


logger = logging.getLogger(__name__)

DEFAULT_WINDOWS_TIME_ZONE = 85


def v4_cidr_mask_to_dotted(bits: int) -> str:
    return str(ipaddress.IPv4Network(f"0.0.0.0/{bits}").netmask)


def match_gateway(address: str, bits: int, gateway: str) -> bool:
    """True when `gateway` falls inside the network of `address`/`bits`."""
    try:
        ip = ipaddress.ip_address(address)
        gw = ipaddress.ip_address(gateway)
        if ip.version != gw.version:
            return False
        network = ipaddress.ip_network(f"{ip}/{bits}", strict=False)
    except ValueError:
        return False
    return gw in network


def windows_sysprep(options: WindowsOptions) -> WindowsSysprep:
    admin_password = (
        options.admin_password.get_secret_value()
        if options.admin_password is not None
        else None
    )
    return WindowsSysprep(
        computer_name=options.computer_name,
        full_name=options.full_name,
        organization_name=options.organization_name,
        product_key=options.product_key,
        workgroup=options.workgroup,
        time_zone=(
            options.time_zone
            if options.time_zone is not None
            else DEFAULT_WINDOWS_TIME_ZONE
        ),
        auto_logon=bool(options.auto_logon),
        auto_logon_count=(
            options.auto_logon_count if options.auto_logon_count is not None else 1
        ),
        admin_password=admin_password,
        run_once_commands=list(options.run_once_command_list) or [""],
    )


def identity_settings(config: CustomizeConfig) -> Identity:
    if config.linux_options is not None:
        linux = config.linux_options
        return LinuxPrep(
            host_name=linux.host_name,
            domain=linux.domain,
            time_zone=linux.time_zone or "UTC",
            hw_clock_utc=linux.hw_clock_utc,
        )
    if config.windows_options is not None:
        return windows_sysprep(config.windows_options)
    if config.windows_sysprep_file:
        try:
            text = Path(config.windows_sysprep_file).read_text()
        except OSError as exc:
            raise StepError(
                "error on reading %s: %s" % (config.windows_sysprep_file, exc)
            ) from exc
        return SysprepText(value=text)
    if config.windows_sysprep_text:
        return SysprepText(value=config.windows_sysprep_text)
    raise StepError("no customization identity found")


def adapter_settings(
    config: CustomizeConfig,
    nic: NetworkInterface,
    add_v4_gateway: bool,
    add_v6_gateway: bool,
) -> tuple[AdapterSettings, bool, bool]:
    adapter = AdapterSettings(
        dns_servers=list(nic.dns_server_list),
        dns_domain=nic.dns_domain,
    )
    v4_found = False
    v6_found = False

    if nic.ipv4_address:
        adapter.ip_address = nic.ipv4_address
        adapter.subnet_mask = v4_cidr_mask_to_dotted(nic.ipv4_netmask)
        gateway = config.ipv4_gateway
        if add_v4_gateway and gateway and match_gateway(nic.ipv4_address, nic.ipv4_netmask, gateway):
            adapter.gateways = [gateway]
            v4_found = True

    if nic.ipv6_address:
        adapter.ipv6 = IPv6Settings(address=nic.ipv6_address, prefix_length=nic.ipv6_netmask)
        gateway = config.ipv6_gateway
        if add_v6_gateway and gateway and match_gateway(nic.ipv6_address, nic.ipv6_netmask, gateway):
            adapter.ipv6.gateways = [gateway]
            v6_found = True

    return adapter, v4_found, v6_found


def adapter_settings_list(config: CustomizeConfig) -> list[AdapterSettings]:
    # Each gateway is attached to the first interface that can reach it, and
    # IPv4 and IPv6 are tracked separately.
    adapters: list[AdapterSettings] = []
    v4_assigned = False
    v6_assigned = False
    for nic in config.network_interfaces:
        adapter, v4_found, v6_found = adapter_settings(
            config, nic, not v4_assigned, not v6_assigned
        )
        v4_assigned = v4_assigned or v4_found
        v6_assigned = v6_assigned or v6_found
        adapters.append(adapter)
    return adapters


def build_customization_spec(config: CustomizeConfig) -> CustomizationSpec:
    return CustomizationSpec(
        identity=identity_settings(config),
        adapters=adapter_settings_list(config),
        global_ip=GlobalIPSettings(
            dns_servers=list(config.dns_server_list),
            dns_suffixes=list(config.dns_suffix_list),
        ),
    )


class StepCustomize(Step):
    def __init__(self, config: CustomizeConfig):
        self.config = config

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        ui = get_ui(state)
        vm = get_vm(state)
        if vm is None:
            return halt(state, "no virtual machine available to customize")

        try:
            spec = build_customization_spec(self.config)
        except StepError as exc:
            return fail(state, exc)

        ui.say("Customizing VM...")
        try:
            vm.customize(spec)
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc)
        logger.info("customized vm adapters=%s", len(spec.adapters))
        return StepAction.CONTINUE
