import os

import pytest

from numakit.affinity import (
    AffinityError,
    affinity_class,
    affinity_file,
    affinity_pci,
    resolve_affinity,
)
from numakit.bitmask import Bitmask
from numakit.topology import NumaWarning


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


def _pci_node(root, dirname, device, node):
    _write(root / "devices" / dirname / device / "numa_node", f"{node}\n")


def test_pci_full_spec(tmp_path):
    _pci_node(tmp_path, "pci0000:00", "0000:00:1f.2", 1)
    mask = affinity_pci(Bitmask(16), "0000:00:1f.2", tmp_path)
    assert list(mask) == [1]


def test_pci_segment_optional(tmp_path):
    _pci_node(tmp_path, "pci0000:00", "0000:00:1f.2", 3)
    mask = affinity_pci(Bitmask(16), "00:1f.2", tmp_path)
    assert list(mask) == [3]


def test_pci_function_optional(tmp_path):
    _pci_node(tmp_path, "pci0000:00", "0000:00:1f.0", 2)
    assert list(affinity_pci(Bitmask(16), "0000:00:1f", tmp_path)) == [2]
    assert list(affinity_pci(Bitmask(16), "00:1f", tmp_path)) == [2]


def test_pci_unparseable(tmp_path):
    with pytest.raises(AffinityError, match="Cannot parse PCI device"):
        affinity_pci(Bitmask(16), "zz", tmp_path)


def test_pci_unknown_node(tmp_path):
    _pci_node(tmp_path, "pci0000:00", "0000:00:1f.2", -1)
    with pytest.raises(AffinityError) as info:
        affinity_pci(Bitmask(16), "0000:00:1f.2", tmp_path)
    assert info.value.unknown_node
    assert "Kernel does not know node mask for device" in str(info.value)


def test_pci_missing_device(tmp_path):
    with pytest.raises(AffinityError) as info:
        affinity_pci(Bitmask(16), "0000:00:1f.2", tmp_path)
    assert not info.value.unknown_node


def test_class_rejects_bad_characters(tmp_path):
    with pytest.raises(AffinityError, match="Illegal characters"):
        affinity_class(Bitmask(16), "net", "../eth0", tmp_path)
    with pytest.raises(AffinityError, match="Illegal characters"):
        affinity_class(Bitmask(16), "net", "eth0.1", tmp_path)


def test_class_device_directory(tmp_path):
    _write(tmp_path / "class" / "net" / "eth0" / "device" / "numa_node", "4\n")
    mask = affinity_class(Bitmask(16), "net", "  eth0", tmp_path)
    assert list(mask) == [4]


def test_class_follows_pci_symlink(tmp_path):
    _pci_node(tmp_path, "pci0000:00", "0000:00:1f.2", 5)
    link = tmp_path / "class" / "block" / "sda"
    link.parent.mkdir(parents=True)
    os.symlink(
        "../../devices/pci0000:00/0000:00:1f.2/ata1/host0/block/sda", link
    )
    mask = affinity_class(Bitmask(16), "block", "sda", tmp_path)
    assert list(mask) == [5]


def test_class_unknown_node_mentions_class(tmp_path):
    _write(tmp_path / "class" / "net" / "eth0" / "device" / "numa_node", "-1\n")
    with pytest.raises(AffinityError) as info:
        affinity_class(Bitmask(16), "net", "eth0", tmp_path)
    assert info.value.unknown_node
    assert "for net device `eth0'" in str(info.value)


def test_file_maps_to_block_device(tmp_path):
    sysfs = tmp_path / "sys"
    target = tmp_path / "data.bin"
    target.write_bytes(b"x")
    st = os.stat(target)
    dev = sysfs / "class" / "block" / "fakedisk"
    _write(dev / "dev", f"{os.major(st.st_dev)}:{os.minor(st.st_dev)}\n")
    _write(dev / "device" / "numa_node", "1\n")
    mask = affinity_file(Bitmask(16), target, sysfs)
    assert list(mask) == [1]


def test_file_without_matching_device(tmp_path):
    sysfs = tmp_path / "sys"
    target = tmp_path / "data.bin"
    target.write_bytes(b"x")
    st = os.stat(target)
    _write(
        sysfs / "class" / "block" / "other" / "dev",
        f"{os.major(st.st_dev) + 1}:{os.minor(st.st_dev)}\n",
    )
    with pytest.raises(AffinityError, match="Cannot find block device"):
        affinity_file(Bitmask(16), target, sysfs)


def test_file_warns_on_unparseable_dev(tmp_path):
    sysfs = tmp_path / "sys"
    target = tmp_path / "data.bin"
    target.write_bytes(b"x")
    _write(sysfs / "class" / "block" / "broken" / "dev", "garbage\n")
    with pytest.warns(NumaWarning, match="broken"):
        with pytest.raises(AffinityError):
            affinity_file(Bitmask(16), target, sysfs)


def test_file_missing(tmp_path):
    with pytest.raises(AffinityError, match="Cannot stat file"):
        affinity_file(Bitmask(16), tmp_path / "nope", tmp_path)


def test_file_no_class_directory(tmp_path):
    target = tmp_path / "data.bin"
    target.write_bytes(b"x")
    with pytest.raises(AffinityError, match="Cannot enumerate block devices"):
        affinity_file(Bitmask(16), target, tmp_path / "sys")


def test_resolve_dispatches_prefixes(tmp_path):
    _pci_node(tmp_path, "pci0000:00", "0000:00:1f.2", 2)
    _write(tmp_path / "class" / "net" / "eth0" / "device" / "numa_node", "3\n")
    _write(tmp_path / "class" / "block" / "sdb" / "device" / "numa_node", "6\n")
    mask = Bitmask(16)
    assert resolve_affinity("pci:0000:00:1f.2", mask, tmp_path) is True
    assert resolve_affinity("netdev:eth0", mask, tmp_path) is True
    assert resolve_affinity("block:sdb", mask, tmp_path) is True
    assert list(mask) == [2, 3, 6]


def test_resolve_unknown_prefix(tmp_path):
    mask = Bitmask(16)
    assert resolve_affinity("all", mask, tmp_path) is False
    assert resolve_affinity("pcie:00:1f.2", mask, tmp_path) is False
    assert mask.weight() == 0


def test_resolve_propagates_errors(tmp_path):
    with pytest.raises(AffinityError):
        resolve_affinity("netdev:missing", Bitmask(16), tmp_path)