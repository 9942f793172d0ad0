import asyncio
import ipaddress
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

from tasmota_admin.models.device import CanonicalDeviceStatus
from tasmota_admin.services.tasmota import TasmotaService

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class DiscoveryRangeError(ValueError):
    """The requested address range cannot be parsed or is too large."""


# ------------------- Range Parsing -------------------

def expand_range(ip_range: str, max_addresses: int) -> List[str]:
    """
    Expand an address range into host addresses.

    Supported forms:
        "192.168.1.0/24"              CIDR block (network/broadcast excluded)
        "192.168.1.10-192.168.1.50"   inclusive span
        "192.168.1.10-50"             inclusive span on the last octet
        "192.168.1.23"                single address
    """
    try:
        if "/" in ip_range:
            network = ipaddress.ip_network(ip_range, strict=False)
            if network.num_addresses > max_addresses + 2:
                raise DiscoveryRangeError(f"IP range too large. Maximum {max_addresses} addresses allowed.")
            hosts = [str(host) for host in network.hosts()] or [str(network.network_address)]
        elif "-" in ip_range:
            start_text, end_text = (part.strip() for part in ip_range.split("-", 1))
            start = ipaddress.ip_address(start_text)
            if "." not in end_text and ":" not in end_text:
                end_text = start_text.rsplit(".", 1)[0] + "." + end_text
            end = ipaddress.ip_address(end_text)
            if int(end) < int(start):
                raise DiscoveryRangeError("Range end must not be before range start")
            if int(end) - int(start) + 1 > max_addresses:
                raise DiscoveryRangeError(f"IP range too large. Maximum {max_addresses} addresses allowed.")
            hosts = [str(ipaddress.ip_address(value)) for value in range(int(start), int(end) + 1)]
        else:
            hosts = [str(ipaddress.ip_address(ip_range))]
    except ValueError as e:
        if isinstance(e, DiscoveryRangeError):
            raise
        raise DiscoveryRangeError(f"Invalid IP range '{ip_range}': {e}") from e

    if len(hosts) > max_addresses:
        raise DiscoveryRangeError(f"IP range too large. Maximum {max_addresses} addresses allowed.")
    return hosts

# ------------------- Core Logic -------------------

async def probe_host(
    service: TasmotaService,
    host: str,
    semaphore: asyncio.Semaphore,
    timeout_ms: int,
) -> Optional[CanonicalDeviceStatus]:
    async with semaphore:
        status = await service.get_status(host, timeout_ms)
    if not status.online:
        logger.debug(f"No Tasmota device answered at {host}")
        return None
    return status


async def discover_devices(
    service: TasmotaService,
    hosts: List[str],
    max_concurrency: int = 20,
    timeout_ms: int = 3000,
) -> Tuple[List[CanonicalDeviceStatus], Dict[str, Any]]:
    start_time = datetime.now()
    semaphore = asyncio.Semaphore(max_concurrency)
    tasks = [probe_host(service, host, semaphore, timeout_ms) for host in hosts]
    results = await asyncio.gather(*tasks)

    found = [status for status in results if status is not None]
    duration = (datetime.now() - start_time).total_seconds()

    summary = {
        "total_scanned": len(hosts),
        "total_found": len(found),
        "duration_sec": round(duration, 2),
    }
    logger.info(f"Discovery scanned {summary['total_scanned']} hosts, found {summary['total_found']} in {summary['duration_sec']}s")

    return found, summary
