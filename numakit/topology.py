"""Discovery of NUMA nodes and CPUs from sysfs and the task status file."""

from __future__ import annotations

import errno
import os
import re
import warnings
from pathlib import Path
from typing import NamedTuple

from numakit.bitmask import Bitmask, parse_bitmap, read_mask

NODE_DIR = Path("devices/system/node")
CPU_DIR = Path("devices/system/cpu")

_FALLBACK_NODEMASK_BITS = 1024
_FALLBACK_CPUMASK_BITS = 1024
_LEADING_DIGITS = re.compile(r"\d+")
_TRAILING_NUMBER = re.compile(r"(\d*)\s*$")
_CPU_ENTRY = re.compile(r"cpu\d+")


class NumaWarning(UserWarning):
    """A non-fatal problem while reading NUMA information."""


class NumaError(OSError):
    """A NUMA query or placement request failed.

    ``mask`` holds the fallback mask that was computed, if any.
    """

    def __init__(self, code: int, message: str, *, mask: Bitmask | None = None) -> None:
        super().__init__(code, message)
        self.mask = mask


class NodeSize(NamedTuple):
    """Total and free memory of a node in bytes; -1 where unknown."""

    total: int
    free: int


def _warn(message: str) -> None:
    warnings.warn(message, NumaWarning, stacklevel=3)


def _copy(mask: Bitmask) -> Bitmask:
    return Bitmask(len(mask)).copy_from(mask)


def _status_mask_bits(lines: list[str] | None, prefix: str) -> int:
    """Mask width from a status line: nine characters encode 32 bits."""
    for line in lines or ():
        if line.startswith(prefix):
            return len(line[len(prefix):]) * 32 // 9
    return 0


class NumaTopology:
    """Snapshot of the node and CPU layout seen by the current task."""

    def __init__(self, sysfs_root="/sys", proc_status="/proc/self/status") -> None:
        self._root = Path(sysfs_root)
        self._status_path = Path(proc_status)
        self._cpu_cache: dict[int, Bitmask] = {}
        self._cpu_cache_stale = True

        status = self._read_status()
        self._nodemask_size = (
            _status_mask_bits(status, "Mems_allowed:\t") or _FALLBACK_NODEMASK_BITS
        )
        self._scan_nodes()
        self._max_cpu = self._count_configured_cpus() - 1
        self._cpumask_size = max(
            _status_mask_bits(status, "Cpus_allowed:\t") or _FALLBACK_CPUMASK_BITS,
            self._max_cpu + 1,
        )
        self._set_task_constraints(status)

    # -- discovery -------------------------------------------------------

    def _read_status(self) -> list[str] | None:
        try:
            with open(self._status_path, encoding="ascii", errors="replace") as fh:
                return fh.readlines()
        except OSError:
            return None

    def _scan_nodes(self) -> None:
        try:
            names = [entry.name for entry in os.scandir(self._root / NODE_DIR)]
        except OSError:
            names = None
        if names is None:
            indices: list[int] = []
            self._max_node = 0
        else:
            indices = []
            for name in names:
                if not name.startswith("node"):
                    continue
                digits = _LEADING_DIGITS.match(name[4:])
                indices.append(int(digits.group()) if digits else 0)
            self._max_node = max(indices, default=-1)

        self._nodemask_size = max(self._nodemask_size, self._max_node + 1)
        self._nodes = Bitmask(self._nodemask_size)
        self._memnodes = Bitmask(self._nodemask_size)
        for node in indices:
            self._nodes.setbit(node)
            if self.node_size64(node).total > 0:
                self._memnodes.setbit(node)

    def _count_configured_cpus(self) -> int:
        try:
            count = sum(
                1
                for entry in os.scandir(self._root / CPU_DIR)
                if _CPU_ENTRY.fullmatch(entry.name)
            )
        except OSError:
            count = 0
        if count:
            return count
        try:
            count = os.sysconf("SC_NPROCESSORS_CONF")
        except (OSError, ValueError):
            count = os.cpu_count() or 0
        if count <= 0:
            raise NumaError(errno.EINVAL, "sysconf(NPROCESSORS_CONF) failed")
        return count

    @staticmethod
    def _load_mask(text: str, target: Bitmask) -> int:
        try:
            parsed = read_mask(text, len(target))
        except ValueError:
            return -1
        weight = parsed.weight()
        if weight == 0:
            return -1
        target.copy_from(parsed)
        return weight

    def _set_task_constraints(self, lines: list[str] | None) -> None:
        self._all_cpus = self.allocate_cpumask()
        self._possible_cpus = self.allocate_cpumask()
        self._all_nodes = self.allocate_nodemask()
        self._possible_nodes = self.allocate_nodemask()
        self._no_nodes = self.allocate_nodemask()
        self._task_cpus = -1
        self._task_nodes = -1
        if lines is None:
            return

        for line in lines:
            value = line.rsplit("\t", 1)[-1]
            if line.startswith("Cpus_allowed:"):
                self._task_cpus = self._load_mask(value, self._all_cpus)
            if line.startswith("Mems_allowed:"):
                self._task_nodes = self._load_mask(value, self._all_nodes)

        hicpu = self._max_cpu
        for cpu in range(hicpu + 1):
            self._possible_cpus.setbit(cpu)
        for node in range(self._max_node + 1):
            self._possible_nodes.setbit(node)

        # The allowed CPU list may be wider than the CPUs that exist.
        if self._task_cpus <= 0:
            for cpu in range(hicpu + 1):
                self._all_cpus.setbit(cpu)
            self._task_cpus = hicpu + 1
        if self._task_cpus > hicpu + 1:
            self._task_cpus = hicpu + 1
            for cpu in range(hicpu + 1, len(self._all_cpus)):
                self._all_cpus.clearbit(cpu)

        if self._task_nodes <= 0:
            for node in range(self._max_node + 1):
                self._all_nodes.setbit(node)
            self._task_nodes = self._max_node + 1

    # -- sizes and counts ------------------------------------------------

    @property
    def sysfs_root(self) -> Path:
        return self._root

    def max_node(self) -> int:
        """Highest node number present in the system."""
        return self._max_node

    def num_configured_nodes(self) -> int:
        """Number of nodes that have memory."""
        return sum(1 for node in self._memnodes if node <= self._max_node)

    def num_configured_cpus(self) -> int:
        return self._max_cpu + 1

    def num_possible_nodes(self) -> int:
        return self._nodemask_size

    def num_possible_cpus(self) -> int:
        return self._cpumask_size

    def num_task_nodes(self) -> int:
        return self._task_nodes

    def num_task_cpus(self) -> int:
        return self._task_cpus

    def allocate_nodemask(self) -> Bitmask:
        return Bitmask(self._nodemask_size)

    def allocate_cpumask(self) -> Bitmask:
        return Bitmask(self._cpumask_size)

    # -- masks -----------------------------------------------------------

    @property
    def nodes(self) -> Bitmask:
        """Nodes listed in sysfs."""
        return _copy(self._nodes)

    @property
    def memory_nodes(self) -> Bitmask:
        """Nodes that report memory."""
        return _copy(self._memnodes)

    @property
    def all_nodes(self) -> Bitmask:
        """Nodes the task may allocate from."""
        return _copy(self._all_nodes)

    @property
    def possible_nodes(self) -> Bitmask:
        return _copy(self._possible_nodes)

    @property
    def all_cpus(self) -> Bitmask:
        """CPUs the task may run on."""
        return _copy(self._all_cpus)

    @property
    def possible_cpus(self) -> Bitmask:
        return _copy(self._possible_cpus)

    @property
    def no_nodes(self) -> Bitmask:
        return _copy(self._no_nodes)

    # -- per-node queries ------------------------------------------------

    def node_size64(self, node: int) -> NodeSize:
        """Read total and free memory of ``node`` from its sysfs meminfo."""
        path = self._root / NODE_DIR / f"node{node}" / "meminfo"
        try:
            text = path.read_text(encoding="ascii", errors="replace")
        except OSError:
            return NodeSize(-1, -1)

        total = free = -1
        found = 0
        for line in text.splitlines():
            unit = line.lower().find("kb")
            if unit < 0:
                continue
            digits = _TRAILING_NUMBER.search(line[:unit]).group(1)
            value = int(digits) << 10 if digits else -1
            if "MemTotal" in line:
                total = value
                found += value >= 0
            if "MemFree" in line:
                free = value
                found += value >= 0
        if found != 2:
            _warn(f"Cannot parse sysfs meminfo ({found})")
        return NodeSize(total, free)

    def node_to_cpus(self, node: int) -> Bitmask:
        """CPUs that belong to ``node``, cached until node_to_cpu_update().

        Raises NumaError when the node is out of range, or when its cpumap
        cannot be read; in that case the error's ``mask`` has every bit set.
        """
        if node < 0 or node > self._max_node:
            raise NumaError(errno.ERANGE, f"node {node} out of range")

        update = self._cpu_cache_stale
        self._cpu_cache_stale = False
        cached = self._cpu_cache.get(node)
        if cached is not None and not update:
            return _copy(cached)

        mask = self.allocate_cpumask()
        path = self._root / NODE_DIR / f"node{node}" / "cpumap"
        failed = False
        reason = "empty file"
        try:
            with open(path, encoding="ascii", errors="replace") as fh:
                line = fh.readline()
        except OSError as exc:
            line = ""
            reason = exc.strerror or str(exc)
        if not line:
            if self._nodes.isbitset(node):
                _warn(f"/sys not mounted or invalid. Assuming one node: {reason}")
                _warn(f"(cannot open or correctly parse {path})")
            mask.setall()
            failed = True
        else:
            try:
                mask = parse_bitmap(line, len(mask))
            except ValueError:
                _warn("Cannot parse cpumap. Assuming one node")
                mask.setall()
                failed = True

        if cached is not None:
            if update:
                cached.copy_from(mask)
        elif not failed:
            self._cpu_cache[node] = _copy(mask)

        if failed:
            raise NumaError(errno.EIO, f"cannot read cpus of node {node}", mask=mask)
        return mask

    def node_to_cpu_update(self) -> None:
        """Mark the cached node-to-CPU maps as stale."""
        self._cpu_cache_stale = True

    def node_of_cpu(self, cpu: int) -> int:
        """Return the node that ``cpu`` belongs to."""
        if cpu > self.num_possible_cpus():
            raise NumaError(errno.EINVAL, f"cpu {cpu} out of range")
        for node in range(self._max_node + 1):
            try:
                cpus = self.node_to_cpus(node)
            except NumaError:
                continue
            if cpus.isbitset(cpu):
                return node
        raise NumaError(errno.EINVAL, f"cpu {cpu} is on no node")

    # -- placement -------------------------------------------------------

    @staticmethod
    def _set_affinity(cpus: Bitmask) -> None:
        try:
            os.sched_setaffinity(0, set(cpus))
        except OSError as exc:
            raise NumaError(exc.errno or errno.EINVAL, f"sched_setaffinity: {exc}") from exc

    def run_on_node(self, node: int) -> None:
        """Run the current task on the CPUs of ``node``; -1 means all CPUs."""
        if node >= self.num_possible_nodes():
            raise NumaError(errno.EINVAL, f"node {node} out of range")
        if node == -1:
            cpus = self.allocate_cpumask().setall()
        else:
            try:
                cpus = self.node_to_cpus(node)
            except NumaError:
                _warn("Cannot read node cpumask from sysfs")
                raise
        self._set_affinity(cpus)

    def run_on_node_mask(self, mask: Bitmask) -> None:
        """Run the current task on the CPUs of the allowed nodes in ``mask``."""
        cpus = self.allocate_cpumask()
        for node in mask:
            if not self._all_nodes.isbitset(node):
                _warn(f"node {node} not allowed")
                continue
            try:
                nodecpus = self.node_to_cpus(node)
            except NumaError:
                _warn("Cannot read node cpumask from sysfs")
                continue
            for cpu in nodecpus:
                cpus.setbit(cpu)
        self._set_affinity(cpus)

    def get_run_node_mask(self) -> Bitmask:
        """Allowed nodes that hold at least one CPU the task may run on."""
        result = self.allocate_nodemask()
        try:
            allowed = os.sched_getaffinity(0)
        except OSError:
            return result.copy_from(self._no_nodes)
        for node in range(self._max_node + 1):
            if not self._all_nodes.isbitset(node):
                continue
            try:
                nodecpus = self.node_to_cpus(node)
            except NumaError:
                continue
            if any(cpu in allowed for cpu in nodecpus):
                result.setbit(node)
        return result