import struct

import numpy as np
import pytest

from flatnets.serialization import deserialize, load_parameters, save_parameters, serialize


def test_layout_is_count_then_little_endian_floats():
    payload = serialize(np.array([1.0, -2.5], dtype=np.float32))
    assert payload == struct.pack("<i", 2) + struct.pack("<ff", 1.0, -2.5)


def test_special_values_survive_bit_exact():
    values = np.array([0.0, -0.0, np.inf, -np.inf, np.nan, 1e-45, 3.4e38], dtype=np.float32)
    restored = deserialize(serialize(values))
    assert restored.view(np.uint32).tolist() == values.view(np.uint32).tolist()


def test_empty_parameters():
    payload = serialize(np.zeros(0, dtype=np.float32))
    assert payload == b"\x00\x00\x00\x00"
    assert deserialize(payload).size == 0


@pytest.mark.parametrize(
    "payload",
    [b"", b"\x01\x00", struct.pack("<i", 3) + struct.pack("<ff", 1.0, 2.0), struct.pack("<i", -1)],
)
def test_malformed_payloads(payload):
    with pytest.raises(ValueError):
        deserialize(payload)


def test_expected_count_mismatch():
    with pytest.raises(ValueError, match="the network has 5"):
        deserialize(serialize(np.ones(4, dtype=np.float32)), expected_count=5)


def test_file_round_trip(tmp_path):
    params = np.linspace(-1.0, 1.0, 11, dtype=np.float32)
    path = save_parameters(tmp_path / "nested" / "weights.bin", params)
    assert (tmp_path / "nested" / "weights.bin").stat().st_size == 4 + 4 * 11
    np.testing.assert_array_equal(load_parameters(path, expected_count=11), params)
