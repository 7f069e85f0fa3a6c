"""Tests for the NetworkTopology model."""

import pytest

from ipocalypse.models.topology import NetworkTopology


def test_from_address_derives_subnet():
    topology = NetworkTopology.from_address("eth0", "192.168.1.100/24", "192.168.1.1")

    assert topology.subnet == "192.168.1.0/24"
    assert topology.host_ip == "192.168.1.100"
    assert topology.prefix_len == 24


@pytest.mark.parametrize(
    "host_address,capacity",
    [
        ("10.0.0.2/24", 252),
        ("10.0.0.2/30", 0),
        ("10.0.0.2/16", 65532),
    ],
)
def test_address_capacity(host_address, capacity):
    topology = NetworkTopology.from_address("eth0", host_address, "10.0.0.1")
    assert topology.address_capacity == capacity


@pytest.mark.parametrize(
    "kwargs,message",
    [
        (
            dict(interface="", host_address="10.0.0.2/24", subnet="10.0.0.0/24", gateway="10.0.0.1"),
            "interface",
        ),
        (
            dict(interface="eth0", host_address="10.0.1.2/24", subnet="10.0.0.0/24", gateway="10.0.0.1"),
            "not in subnet",
        ),
        (
            dict(interface="eth0", host_address="fd00::2/64", subnet="fd00::/64", gateway="fd00::1"),
            "IPv4",
        ),
    ],
)
def test_invalid_topologies(kwargs, message):
    with pytest.raises(ValueError, match=message):
        NetworkTopology(**kwargs)


def test_subnet_must_be_a_network_address():
    with pytest.raises(ValueError):
        NetworkTopology("eth0", "10.0.0.2/24", "10.0.0.5/24", "10.0.0.1")


def test_topology_is_immutable():
    topology = NetworkTopology.from_address("eth0", "10.0.0.42/24", "10.0.0.1")
    with pytest.raises(AttributeError):
        topology.gateway = "10.0.0.254"


def test_host_may_sit_inside_a_larger_subnet():
    topology = NetworkTopology("eth1", "10.0.5.2/24", "10.0.0.0/16", "10.0.0.1")

    assert topology.host_ip == "10.0.5.2"
    assert topology.prefix_len == 16


def test_point_to_point_subnet_has_no_capacity():
    topology = NetworkTopology.from_address("ptp0", "10.0.0.2/31", "10.0.0.3")
    assert topology.address_capacity == 0
