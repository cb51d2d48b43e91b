"""Map I/O devices (network, block, PCI, files, IP routes) to their NUMA nodes."""

from __future__ import annotations

import os
import re
import socket
import stat
import struct
import warnings
from collections.abc import Callable
from pathlib import Path

from numakit.bitmask import Bitmask
from numakit.topology import NumaWarning

_PCI_PATH = re.compile(r"(/devices/pci[0-9a-fA-F:/]+\.[0-9]+)/")
_HEX_FIELD = re.compile(r"\s*(?:0[xX])?([0-9a-fA-F]+)")
_DEV_NUMBERS = re.compile(r"\s*\+?(\d+):\s*\+?(\d+)")

_RTM_GETROUTE = 26
_NLM_F_REQUEST = 1
_NLMSG_ERROR = 2
_RTA_DST = 1
_RTA_OIF = 4
_NLMSG_HDR = struct.Struct("=IHHII")
_RTMSG = struct.Struct("=BBBBBBBBI")
_RTATTR = struct.Struct("=HH")


class AffinityError(Exception):
    """A device specification could not be mapped to a node.

    ``unknown_node`` is true when the device exists but the kernel reports
    no node for it.
    """

    def __init__(self, message: str, *, unknown_node: bool = False) -> None:
        super().__init__(message)
        self.unknown_node = unknown_node


class _NodeLookupFailed(Exception):
    def __init__(self, unknown: bool) -> None:
        super().__init__()
        self.unknown = unknown


def _read_node(mask: Bitmask, path: Path) -> None:
    try:
        node = int(path.read_text(encoding="ascii").strip())
    except (OSError, ValueError, UnicodeDecodeError):
        raise _NodeLookupFailed(unknown=False) from None
    if node < 0:
        raise _NodeLookupFailed(unknown=True)
    mask.setbit(node)


def _parse_failure(failure: _NodeLookupFailed, cls: str | None, dev: str) -> AffinityError:
    cls = cls or ""
    if failure.unknown:
        sep = " " if cls else ""
        return AffinityError(
            f"Kernel does not know node mask for{sep}{cls} device `{dev}'",
            unknown_node=True,
        )
    return AffinityError(f"Cannot read node mask for {cls} device `{dev}'")


def affinity_class(mask: Bitmask, cls: str, dev: str, sysfs_root="/sys") -> Bitmask:
    """Set the node of device ``dev`` of sysfs class ``cls`` in ``mask``."""
    root = Path(sysfs_root)
    dev = dev.lstrip()
    if "/" in dev or "." in dev:
        raise AffinityError(f"Illegal characters in `{dev}' specification")

    try:
        link = os.readlink(root / "class" / cls / dev)
    except OSError:
        link = ""
    match = _PCI_PATH.search(link)
    if match:
        device = link[match.start():match.end(1) + 1]
        try:
            _read_node(mask, root / device.strip("/") / "numa_node")
        except _NodeLookupFailed as failure:
            raise _parse_failure(failure, None, device) from None
        return mask

    try:
        _read_node(mask, root / "class" / cls / dev / "device" / "numa_node")
    except _NodeLookupFailed as failure:
        raise _parse_failure(failure, cls, dev) from None
    return mask


def _read_dev_numbers(path: Path) -> tuple[int, int] | None:
    try:
        text = path.read_text(encoding="ascii")
    except (OSError, UnicodeDecodeError):
        return None
    match = _DEV_NUMBERS.match(text)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def affinity_file(mask: Bitmask, path, sysfs_root="/sys") -> Bitmask:
    """Set the node of the block device holding ``path`` (or of the device node itself)."""
    root = Path(sysfs_root)
    try:
        st = os.stat(path)
    except OSError:
        raise AffinityError(f"Cannot stat file {path}") from None

    cls = "block"
    device = st.st_dev
    if stat.S_ISCHR(st.st_mode):
        cls = "misc"
        device = st.st_rdev
    elif stat.S_ISBLK(st.st_mode):
        device = st.st_rdev

    try:
        names = sorted(entry.name for entry in os.scandir(root / "class" / cls))
    except OSError:
        raise AffinityError(f"Cannot enumerate {cls} devices in sysfs") from None

    major = minor = 0
    wanted = (os.major(device), os.minor(device))
    for name in names:
        if name.startswith("."):
            continue
        numbers = _read_dev_numbers(root / "class" / "block" / name / "dev")
        if numbers is None:
            warnings.warn(f"Cannot parse sysfs device {name}", NumaWarning, stacklevel=2)
            continue
        major, minor = numbers
        if numbers != wanted:
            continue
        return affinity_class(mask, "block", name, root)
    raise AffinityError(f"Cannot find block device {major:x}:{minor:x} in sysfs for `{path}'")


def _scan_hex(text: str, separators: tuple[str, ...]) -> list[int]:
    """Read hex fields joined by ``separators``, stopping at the first mismatch."""
    values: list[int] = []
    pos = 0
    for sep in (*separators, None):
        match = _HEX_FIELD.match(text, pos)
        if match is None:
            break
        values.append(int(match.group(1), 16))
        pos = match.end()
        if sep is None or not text.startswith(sep, pos):
            break
        pos += len(sep)
    return values


def affinity_pci(mask: Bitmask, spec: str, sysfs_root="/sys") -> Bitmask:
    """Set the node of PCI device ``[segment:]bus:device[.function]`` in ``mask``."""
    fields = _scan_hex(spec, (":", ":", "."))
    if len(fields) in (3, 4):
        seg, bus, dev, *rest = fields
    else:
        fields = _scan_hex(spec, (":", "."))
        if len(fields) not in (2, 3):
            raise AffinityError(f"Cannot parse PCI device `{spec}'")
        seg = 0
        bus, dev, *rest = fields
    func = rest[0] if rest else 0

    path = (
        Path(sysfs_root)
        / "devices"
        / f"pci{seg:04x}:{bus:02x}"
        / f"{seg:04x}:{bus:02x}:{dev:02x}.{func:x}"
        / "numa_node"
    )
    try:
        _read_node(mask, path)
    except _NodeLookupFailed as failure:
        raise _parse_failure(failure, None, spec) from None
    return mask


def _find_route(family: int, address: str) -> int:
    """Ask rtnetlink for the outgoing interface index of a route to ``address``."""
    if family not in (socket.AF_INET, socket.AF_INET6):
        raise AffinityError(f"Cannot handle network family {family:x}")
    packed = socket.inet_pton(family, address.split("%", 1)[0])
    attr_len = _RTATTR.size + len(packed)
    attr = _RTATTR.pack(attr_len, _RTA_DST) + packed + b"\0" * (-attr_len % 4)
    body = _RTMSG.pack(family, len(packed) * 8, 0, 0, 0, 0, 0, 0, 0) + attr
    request = (
        _NLMSG_HDR.pack(_NLMSG_HDR.size + len(body), _RTM_GETROUTE, _NLM_F_REQUEST, 1, 0)
        + body
    )

    netlink = getattr(socket, "AF_NETLINK", None)
    route = getattr(socket, "NETLINK_ROUTE", None)
    if netlink is None or route is None:
        raise AffinityError("Cannot request rtnetlink route: netlink is not available")
    try:
        with socket.socket(netlink, socket.SOCK_RAW, route) as sock:
            sock.sendto(request, (0, 0))
            reply = sock.recv(65536)
    except OSError as exc:
        raise AffinityError(f"Cannot request rtnetlink route: {exc.strerror or exc}") from None

    if len(reply) < _NLMSG_HDR.size:
        raise AffinityError("rtnetlink query did not return interface")
    length, msg_type, *_ = _NLMSG_HDR.unpack_from(reply)
    if msg_type == _NLMSG_ERROR:
        (code,) = struct.unpack_from("=i", reply, _NLMSG_HDR.size)
        raise AffinityError(f"Cannot request rtnetlink route: {os.strerror(-code)}")

    offset = _NLMSG_HDR.size + _RTMSG.size
    end = min(length, len(reply))
    while offset + _RTATTR.size <= end:
        rta_len, rta_type = _RTATTR.unpack_from(reply, offset)
        if rta_len < _RTATTR.size:
            break
        if rta_type == _RTA_OIF:
            return struct.unpack_from("=i", reply, offset + _RTATTR.size)[0]
        offset += (rta_len + 3) & ~3
    raise AffinityError("rtnetlink query did not return interface")


def _affinity_ip(mask: Bitmask, host: str, sysfs_root="/sys") -> Bitmask:
    """Set the node of the network device that routes to ``host``."""
    try:
        infos = socket.getaddrinfo(host, None)
    except socket.gaierror as exc:
        raise AffinityError(f"Cannot resolve {host}: {exc.strerror}") from None
    family, *_, sockaddr = infos[0]
    oif = _find_route(family, sockaddr[0])
    try:
        name = socket.if_indextoname(oif)
    except OSError:
        raise AffinityError(f"Cannot resolve network interface {oif}") from None
    return affinity_class(mask, "net", name, sysfs_root)


_Handler = Callable[[Bitmask, str, object], Bitmask]

_HANDLERS: tuple[tuple[str, _Handler], ...] = (
    ("netdev:", lambda mask, rest, root: affinity_class(mask, "net", rest, root)),
    ("ip:", _affinity_ip),
    ("file:", affinity_file),
    ("block:", lambda mask, rest, root: affinity_class(mask, "block", rest, root)),
    ("pci:", affinity_pci),
)


def resolve_affinity(spec: str, mask: Bitmask, sysfs_root="/sys") -> bool:
    """Resolve an I/O device specification such as ``pci:0000:00:1f.2`` into ``mask``.

    Returns False when ``spec`` names no known device kind, True when the
    device's node was set; raises AffinityError when the lookup fails.
    """
    for prefix, handler in _HANDLERS:
        if spec.startswith(prefix):
            handler(mask, spec[len(prefix):], sysfs_root)
            return True
    return False