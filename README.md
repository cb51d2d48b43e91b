# numakit

Tools for looking at the NUMA layout of a Linux machine from Python. There are
also a few graph kernels that are handy for memory-placement benchmarks.

## Modules

- **`numakit.bitmask`**: `Bitmask` is a fixed-size bit set for node and CPU
  masks. It has `setbit`, `clearbit`, `setall`, `clearall`, `isbitset`,
  `weight`, `nbytes` and `copy_from`. Iterating over it yields the indices of
  the set bits, and `len()` gives its size in bits. Bits outside the size are
  ignored. `parse_bitmap(line, size)` reads a sysfs `cpumap` line, and
  `read_mask(text, size)` reads a `Cpus_allowed:` or `Mems_allowed:` value
  from a status file. Both raise `ValueError` on malformed input.
- **`numakit.topology`**: `NumaTopology(sysfs_root="/sys", proc_status="/proc/self/status")`
  finds the configured nodes, the nodes that have memory, the configured CPUs
  and the CPUs and nodes the task is allowed to use. It provides:
  - `max_node()` and the `num_*` counters.
  - `node_size64(node)`, which returns a `NodeSize(total, free)` in bytes.
  - `node_to_cpus(node)`, which is cached until `node_to_cpu_update()` is called.
  - `node_of_cpu(cpu)`.
  - `run_on_node(node)` and `run_on_node_mask(mask)`, which set the CPU
    affinity of the current process.
  - `get_run_node_mask()`.
  - Mask properties: `nodes`, `memory_nodes`, `all_nodes`, `possible_nodes`,
    `all_cpus`, `possible_cpus` and `no_nodes`.

  Failures raise `NumaError`, a subclass of `OSError`. When a node's cpumap
  cannot be read, the error's `mask` attribute holds an all-set fallback mask.
  Problems that do not stop the call are reported as `NumaWarning` through the
  `warnings` module.
- **`numakit.distance`**: `DistanceTable(topology).distance(a, b)` reads the
  node distance matrix from sysfs the first time it is needed. It returns 0 for
  unknown nodes.
- **`numakit.nodestring`**: `parse_nodestring`, `parse_nodestring_all`,
  `parse_cpustring` and `parse_cpustring_all` turn strings into bitmasks.
  - Accepted forms include `1,3,5-7`, `+0-1` (relative to the allowed set),
    `!2` (inverted) and `all`.
  - Node strings may also name a device, as in `pci:0000:00:1f.2`; this is
    resolved through `numakit.affinity`.
  - Bad input raises `ParseError`, a subclass of `ValueError`.
- **`numakit.affinity`**: `resolve_affinity(spec, mask, sysfs_root="/sys")`
  maps `netdev:`, `ip:`, `file:`, `block:` and `pci:` specifications to the
  node a device is attached to.
  - It returns `False` for an unknown prefix and `True` once the node bit has
    been set.
  - It raises `AffinityError` when the lookup fails. The error's
    `unknown_node` is true when the kernel knows no node for the device.
  - `affinity_class`, `affinity_file` and `affinity_pci` can also be called
    directly.
- **`numakit.kernels`**: `CsrGraph(node_array, edge_array, edge_values=None)`
  is a validated compressed-sparse-row graph. The kernels that run on it are:
  - `bfs(graph, start_seed=0, seeds=1)`: hop counts, with `-1` for nodes that
    are not reached.
  - `sssp(graph, start_seed=0, seeds=1, weight_max=sys.maxsize)`: shortest
    weighted distances.
  - `pagerank(graph, alpha=0.85, epsilon=0.01)`: push-style PageRank.
- **`numakit.mt`**: `MersenneTwister` is a 32-bit generator whose initial
  buffer is the C library's `rand()` stream after `srand(1)`. It has `random()`
  and `refill()`. `glibc_rand_sequence(seed, count)` returns that `rand()`
  stream.

## Installation

```
pip install numakit
```

To run the test suite:

```
pip install "numakit[test]"
pytest
```

## Examples

Look at the machine's topology:

```python
from numakit.topology import NumaTopology, NumaError
from numakit.distance import DistanceTable

topo = NumaTopology()
print("highest node:", topo.max_node())
print("nodes with memory:", topo.num_configured_nodes())
for node in topo.nodes:
    try:
        print(node, list(topo.node_to_cpus(node)))
    except NumaError as exc:
        print(node, "unknown:", exc)

table = DistanceTable(topo)
print("distance 0 -> 0:", table.distance(0, 0))
```

Parse a node list against the nodes the task may use:

```python
from numakit.nodestring import parse_nodestring, ParseError

try:
    mask = parse_nodestring("0-1", topo)
except ParseError as exc:
    print("bad node list:", exc)
else:
    print(mask.weight(), "nodes selected:", list(mask))
```

Run a graph kernel:

```python
from numakit.kernels import CsrGraph, bfs

graph = CsrGraph(node_array=[0, 1, 2, 2], edge_array=[1, 2])
print(bfs(graph))  # [0, 1, 2]
```

`NumaTopology` takes `sysfs_root` and `proc_status` arguments, so it can read
a captured copy of `/sys` and of a status file instead of the live system.

## What it does not do

numakit only reads the NUMA layout and sets CPU affinity. It does not cover the following:

- It does not set or query memory policies (bind, interleave, preferred).
- It does not allocate memory on particular nodes.
- It does not migrate pages between nodes.
- It does not flush CPU caches.
- It ships no command-line programs. Everything is used as a library.