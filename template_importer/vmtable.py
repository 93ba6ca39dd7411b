"""Table of running VMs and the IPv4 addresses their guest agents report."""

from __future__ import annotations

from typing import Iterable, List

from template_importer.host import ProxmoxHost
from template_importer.models import GuestAddresses

NOT_RUNNING = "Not Running"
NO_IP_DATA = "No IP Data"
NOT_AVAILABLE = "Not Available"
NOT_FOUND = "Not Found"


def guest_ipv4_addresses(interfaces: Iterable[dict]) -> List[str]:
    addresses: List[str] = []
    for iface in interfaces:
        for entry in iface.get("ip-addresses") or []:
            if entry.get("ip-address-type") != "ipv4":
                continue
            address = entry.get("ip-address")
            if address and address != "127.0.0.1":
                addresses.append(address)
    return addresses


def describe_vm(host: ProxmoxHost, vmid: int) -> GuestAddresses:
    config = host.config(vmid)
    name = config.get("name") if config else None

    status = host.status(vmid)
    if status is None:
        return GuestAddresses(vmid, name, NOT_FOUND)
    if status != "running":
        return GuestAddresses(vmid, name, NOT_RUNNING)
    interfaces = host.guest_interfaces(vmid)
    if interfaces is None:
        return GuestAddresses(vmid, name, NO_IP_DATA)
    addresses = guest_ipv4_addresses(interfaces)
    return GuestAddresses(vmid, name, ", ".join(addresses) if addresses else NOT_AVAILABLE)


def collect_rows(host: ProxmoxHost) -> List[GuestAddresses]:
    return [describe_vm(host, entry.vmid) for entry in host.list_vms() if entry.status == "running"]


def print_vm_ip_table(host: ProxmoxHost) -> None:
    blue, green, yellow, red, reset = "\033[0;34m", "\033[0;32m", "\033[1;33m", "\033[0;31m", "\033[0m"
    rule = "-" * 40
    print(f"{blue}{'VM ID':<6} {'VM NAME':<20} {'IP ADDRESSES':<15}{reset}")
    print(f"{blue}{rule}{reset}")
    for row in collect_rows(host):
        name = f"{row.name:<20}" if row.name else f"{red}{NOT_FOUND:<20}{reset}"
        print(f"{green}{row.vmid:<6}{reset} {yellow}{name}{reset} {blue}{row.addresses}{reset}")
    print(f"{blue}{rule}{reset}")
