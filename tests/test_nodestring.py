import pytest

from numakit.affinity import AffinityError
from numakit.nodestring import (
    ParseError,
    parse_cpustring,
    parse_cpustring_all,
    parse_nodestring,
    parse_nodestring_all,
)
from numakit.topology import NumaTopology


@pytest.fixture
def topology(tmp_path):
    root = tmp_path / "sys"
    node_dir = root / "devices" / "system" / "node"
    for n in range(3):
        d = node_dir / f"node{n}"
        d.mkdir(parents=True)
        (d / "meminfo").write_text(
            f"Node {n} MemTotal:       1024 kB\nNode {n} MemFree:        512 kB\n"
        )
    for c in range(4):
        (root / "devices" / "system" / "cpu" / f"cpu{c}").mkdir(parents=True)
    pci = root / "devices" / "pci0000:00" / "0000:00:1f.2"
    pci.mkdir(parents=True)
    (pci / "numa_node").write_text("1\n")

    status = tmp_path / "status"
    status.write_text(
        "Name:\tpython\n"
        "Cpus_allowed:\t00000005\n"
        "Mems_allowed:\t00000000,00000003\n"
    )
    return NumaTopology(root, status)


def test_all_matches_allowed_nodes(topology):
    assert parse_nodestring("all", topology) == topology.all_nodes


def test_all_variant_matches_possible_nodes(topology):
    assert parse_nodestring_all("all", topology) == topology.possible_nodes


def test_empty_string_is_empty_mask(topology):
    mask = parse_nodestring("", topology)
    assert mask.weight() == 0
    assert mask == topology.no_nodes


def test_single_node(topology):
    assert list(parse_nodestring("1", topology)) == [1]


def test_mask_sizes(topology):
    assert len(parse_nodestring("0", topology)) == topology.num_possible_nodes()
    assert len(parse_cpustring("0", topology)) == topology.num_possible_cpus()


def test_range_of_allowed_nodes(topology):
    assert sorted(parse_nodestring("0-1", topology)) == [0, 1]


def test_disallowed_node_rejected_but_possible(topology):
    with pytest.raises(ParseError):
        parse_nodestring("2", topology)
    assert list(parse_nodestring_all("2", topology)) == [2]


def test_range_end_out_of_range(topology):
    with pytest.raises(ParseError):
        parse_nodestring("0-2", topology)
    assert parse_nodestring_all("0-2", topology) == topology.possible_nodes


def test_relative_cpu_selects_nth_allowed(topology):
    allowed = list(topology.all_cpus)
    assert list(parse_cpustring("+1", topology)) == [allowed[1]]


def test_relative_past_end_rejected(topology):
    with pytest.raises(ParseError):
        parse_cpustring("+5", topology)


def test_invert_flips_configured_nodes(topology):
    result = parse_nodestring("!0", topology)
    assert set(result) == set(range(topology.num_configured_nodes())) - {0}


def test_invert_cpus(topology):
    result = parse_cpustring_all("!0-1", topology)
    assert set(result) == set(range(topology.num_configured_cpus())) - {0, 1}


def test_cpu_range_skips_disallowed(topology):
    assert parse_cpustring("0-2", topology) == topology.all_cpus


def test_comma_list(topology):
    assert set(parse_cpustring_all("0,2-3", topology)) == {0, 2, 3}


def test_hex_and_octal_numbers(topology):
    assert parse_cpustring_all("0x2", topology) == parse_cpustring_all("2", topology)
    assert parse_cpustring_all("03", topology) == parse_cpustring_all("3", topology)


def test_all_after_list(topology):
    assert parse_cpustring("0,all", topology) == topology.all_cpus


@pytest.mark.parametrize("text", ["1x", "1,", "0-", "abc", "foo:1", "-1", "08", "all1"])
def test_malformed_strings(topology, text):
    with pytest.raises(ParseError):
        parse_nodestring_all(text, topology)


@pytest.mark.parametrize("text", ["1x", "3,", "-", "all,0"])
def test_malformed_cpu_strings(topology, text):
    with pytest.raises(ParseError):
        parse_cpustring_all(text, topology)


def test_pci_affinity(topology):
    assert list(parse_nodestring("pci:0000:00:1f.2", topology)) == [1]


def test_pci_affinity_missing_device(topology):
    with pytest.raises(ParseError) as excinfo:
        parse_nodestring("pci:0000:00:1e.0", topology)
    assert isinstance(excinfo.value.__cause__, AffinityError)


def test_netdev_illegal_characters(topology):
    with pytest.raises(ParseError, match="Illegal characters"):
        parse_nodestring("netdev:eth0.1", topology)


def test_inverted_affinity(topology):
    result = parse_nodestring("!pci:0000:00:1f.2", topology)
    assert set(result) == set(range(topology.num_configured_nodes())) - {1}