# meshgate/core/validators.py
"""
Input validation for nodes and published services

Each function returns a list of FieldError; an empty list means valid.
Callers raise ValidationFailed with the collected errors before touching
the registry.
"""

import ipaddress
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import FieldError

DOMAIN_PATTERN = re.compile(
    r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)
HOSTNAME_PATTERN = re.compile(
    r"^(?=.{1,253}$)[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$"
)
PATH_PATTERN = re.compile(r"^/[A-Za-z0-9._~%/+:@=-]*$")
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
TTL_PATTERN = re.compile(r"^(\d+)([smhd])$")
TTL_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}

HTTP_PROTOS = ("http", "https")
STREAM_PROTOS = ("tcp", "udp")


def is_valid_domain(domain: str) -> bool:
    return bool(domain) and bool(DOMAIN_PATTERN.match(domain.lower()))


def normalize_subnet(subnet: str) -> str:
    """10.0.0.5/24 -> 10.0.0.0/24. Raises ValueError."""
    return str(ipaddress.ip_network(subnet.strip(), strict=False))


def validate_ip_list(field: str, values: Optional[Iterable[str]]) -> List[FieldError]:
    """Every entry must be an IP address or CIDR"""
    errors = []
    for value in values or []:
        try:
            ipaddress.ip_network(str(value), strict=False)
        except ValueError:
            errors.append(FieldError(field, f"Invalid IP or CIDR: {value}"))
    return errors


def is_valid_host(host: str) -> bool:
    """IPv4/IPv6 literal or RFC 1123 hostname"""
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return bool(HOSTNAME_PATTERN.match(host.lower()))


def is_loopback_host(host: str) -> bool:
    if host.lower() == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def validate_backend_host(host: Optional[str]) -> List[FieldError]:
    """Absent is fine (node address is used); loopback never is"""
    if host is None:
        return []
    if not host.strip():
        return [FieldError("backend_host", "Backend host must not be empty")]
    if not is_valid_host(host):
        return [FieldError("backend_host", f"Backend host must be an IP address or hostname: {host!r}")]
    if is_loopback_host(host):
        return [FieldError("backend_host", "Backend host must not be a loopback address")]
    return []


def validate_service_name(name: Any) -> List[FieldError]:
    if not isinstance(name, str) or not name.strip():
        return [FieldError("name", "Name must not be empty")]
    if CONTROL_CHARS.search(name):
        return [FieldError("name", "Name must not contain control characters")]
    return []


def validate_path_location(path: Any) -> List[FieldError]:
    if not isinstance(path, str) or not PATH_PATTERN.match(path):
        return [FieldError("path_location", "Path must start with / and use only URL path characters")]
    return []


def validate_port(field: str, port: Any, low: int = 1, high: int = 65535) -> List[FieldError]:
    if not isinstance(port, int) or isinstance(port, bool) or not low <= port <= high:
        return [FieldError(field, f"Port must be between {low} and {high}")]
    return []


def validate_choice(field: str, value: Any, choices: Tuple[str, ...]) -> List[FieldError]:
    if value not in choices:
        return [FieldError(field, f"Must be one of: {', '.join(choices)}")]
    return []


def parse_ttl(ttl: str) -> timedelta:
    """
    Parse a duration like 30m, 2h or 1d

    Raises:
        ValueError: Unrecognised format or zero duration
    """
    match = TTL_PATTERN.match(ttl.strip().lower()) if ttl else None
    if not match or int(match.group(1)) == 0:
        raise ValueError(f"Invalid ttl: {ttl!r}")
    return timedelta(**{TTL_UNITS[match.group(2)]: int(match.group(1))})


def expires_at_from_ttl(ttl: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    if not ttl:
        return None
    return (now or datetime.utcnow()) + parse_ttl(ttl)


def validate_ttl(ttl: Optional[str]) -> List[FieldError]:
    if ttl is None:
        return []
    try:
        parse_ttl(ttl)
    except ValueError:
        return [FieldError("ttl", "Expected a duration such as 30m, 2h or 1d")]
    return []


def subnet_strings(networks: Optional[Iterable[Any]]) -> Optional[List[Any]]:
    """
    CIDR strings from plain strings, {"subnet": ...} mappings or objects with
    a `subnet` attribute. None stays None.
    """
    if networks is None:
        return None
    result = []
    for network in networks:
        if isinstance(network, dict):
            network = network.get("subnet")
        elif not isinstance(network, str):
            network = getattr(network, "subnet", network)
        result.append(network)
    return result


def validate_gateway_networks(is_gateway: bool, networks: Optional[List[Any]]) -> List[FieldError]:
    """Subnets must parse, and are only allowed on gateway nodes"""
    networks = subnet_strings(networks)
    if not networks:
        return []
    if not is_gateway:
        return [FieldError("gateway_networks", "Only gateway nodes may declare networks")]

    errors = []
    for subnet in networks:
        if not isinstance(subnet, str):
            errors.append(FieldError("gateway_networks", f"Invalid CIDR: {subnet!r}"))
            continue
        try:
            normalize_subnet(subnet)
        except ValueError:
            errors.append(FieldError("gateway_networks", f"Invalid CIDR: {subnet}"))
    return errors


def validate_node_fields(data: Dict[str, Any]) -> List[FieldError]:
    """Create/update payload for a node (keys that are absent are not checked)"""
    errors = []

    if "name" in data and not (data["name"] or "").strip():
        errors.append(FieldError("name", "Name must not be empty"))

    errors.extend(validate_gateway_networks(
        bool(data.get("is_gateway")), data.get("gateway_networks")
    ))
    return errors


def validate_http_service(data: Dict[str, Any], partial: bool = False) -> List[FieldError]:
    """
    HTTP service payload

    Args:
        data: Field values
        partial: Update mode, required fields may be absent
    """
    errors = []

    for required in ("name", "domain", "backend_port", "node_id"):
        if not partial and data.get(required) is None:
            errors.append(FieldError(required, "Field is required"))

    if data.get("name") is not None:
        errors.extend(validate_service_name(data["name"]))
    if data.get("domain") is not None and not is_valid_domain(data["domain"]):
        errors.append(FieldError("domain", f"Invalid domain: {data['domain']}"))
    if "backend_proto" in data:
        errors.extend(validate_choice("backend_proto", data["backend_proto"], HTTP_PROTOS))
    if data.get("backend_port") is not None:
        errors.extend(validate_port("backend_port", data["backend_port"]))
    if data.get("path_location") is not None:
        errors.extend(validate_path_location(data["path_location"]))

    errors.extend(validate_backend_host(data.get("backend_host")))
    errors.extend(validate_ip_list("allowed_ips", data.get("allowed_ips")))
    errors.extend(validate_ip_list("blocked_ips", data.get("blocked_ips")))
    errors.extend(validate_ttl(data.get("ttl")))
    return errors


def validate_tcp_service(
    data: Dict[str, Any],
    port_bounds: Tuple[int, int],
    partial: bool = False,
) -> List[FieldError]:
    """
    TCP/UDP service payload

    Args:
        data: Field values
        port_bounds: Allowed public port range (low, high)
        partial: Update mode, required fields may be absent
    """
    errors = []

    for required in ("name", "backend_port", "node_id"):
        if not partial and data.get(required) is None:
            errors.append(FieldError(required, "Field is required"))

    if data.get("name") is not None:
        errors.extend(validate_service_name(data["name"]))
    if data.get("domain") and not is_valid_domain(data["domain"]):
        errors.append(FieldError("domain", f"Invalid domain: {data['domain']}"))
    if "proto" in data:
        errors.extend(validate_choice("proto", data["proto"], STREAM_PROTOS))
    if data.get("backend_port") is not None:
        errors.extend(validate_port("backend_port", data["backend_port"]))
    if data.get("port") is not None:
        errors.extend(validate_port("port", data["port"], *port_bounds))
    if data.get("ssl") and data.get("proto") == "udp":
        errors.append(FieldError("ssl", "SSL is not supported for UDP services"))

    errors.extend(validate_backend_host(data.get("backend_host")))
    errors.extend(validate_ip_list("allowed_ips", data.get("allowed_ips")))
    errors.extend(validate_ip_list("blocked_ips", data.get("blocked_ips")))
    errors.extend(validate_ttl(data.get("ttl")))
    return errors
