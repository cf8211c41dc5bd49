import json

import numpy as np
import pytest

from flatnets.config import layer_from_dict, load_network, network_from_dict, network_to_dict, read_mapping
from flatnets.core.layers import Convolution, Dropout, MaxPool
from flatnets.core.layout import ConfigurationError
from flatnets.training.metrics import classification_report

CONV_NETWORK = {
    "input": {"type": "convolution", "width": 8, "height": 8, "is_grayscale": True},
    "layers": [
        {"type": "convolution", "kernel_size": 3, "padding": 1, "kernels_per_channel": 4, "activation": "leaky_relu"},
        {"type": "maxpool", "pool_size": 2},
        {"type": "dropout", "dropout_rate": 0.2},
        {"type": "dense", "neurons": 16},
        {"type": "softmax", "neurons": 2},
    ],
}


def test_network_from_dict_connects_layers():
    network = network_from_dict(CONV_NETWORK)
    conv, pool, dropout, dense, softmax = network.layers
    assert isinstance(conv, Convolution) and conv.num_outputs == 8 * 8 * 4
    assert isinstance(pool, MaxPool) and pool.num_outputs == 4 * 4 * 4
    assert isinstance(dropout, Dropout) and dropout.rate == 0.2
    assert dense.num_inputs == 64
    assert network.output_count == 2


def test_json_round_trip(tmp_path):
    network = network_from_dict(CONV_NETWORK)
    path = tmp_path / "network.json"
    path.write_text(json.dumps(network_to_dict(network)))
    assert load_network(path) == network


def test_yaml_network(tmp_path):
    yaml = pytest.importorskip("yaml")
    path = tmp_path / "network.yaml"
    path.write_text(yaml.safe_dump(CONV_NETWORK))
    assert load_network(path) == network_from_dict(CONV_NETWORK)


def test_read_mapping_rejects_unknown_suffix_and_lists(tmp_path):
    with pytest.raises(ValueError):
        read_mapping(tmp_path / "network.toml")
    path = tmp_path / "list.json"
    path.write_text("[1, 2]")
    with pytest.raises(TypeError):
        read_mapping(path)


@pytest.mark.parametrize(
    "entry",
    [{"type": "lstm"}, {"neurons": 3}, {"type": "dense"}, {"type": "convolution", "stride": 2}],
)
def test_bad_layer_entries(entry):
    with pytest.raises(ConfigurationError):
        layer_from_dict(entry)


def test_bad_network_description():
    with pytest.raises(ConfigurationError):
        network_from_dict({"layers": []})
    with pytest.raises(ConfigurationError):
        network_from_dict({"input": {"type": "image"}, "layers": [{"type": "dense", "neurons": 2}]})


def test_classification_report_counts_labels():
    predictions = np.array([[0.9, 0.1], [0.6, 0.7], [0.2, 0.8], [0.4, 0.3]])
    targets = np.array([[1, 0], [0, 1], [0, 1], [1, 0]])
    report = classification_report(predictions, targets, threshold=0.5)
    assert report.total == 4
    # rows 0 and 2 match on every label
    assert report.correct == 2
    assert report.subset_accuracy == 0.5
    assert report.argmax_accuracy == 1.0
    first, second = report.classes
    assert (first.precision, first.recall) == (0.5, 0.5)
    assert (second.precision, second.recall) == (1.0, 1.0)
    assert report.as_metrics()["macro_f1"] == pytest.approx(0.75)


def test_classification_report_edge_cases():
    empty = classification_report(np.zeros((0, 3)), np.zeros((0, 3)), threshold=0.5)
    assert empty.subset_accuracy == 0.0 and empty.classes == []
    with pytest.raises(ValueError):
        classification_report(np.zeros((2, 3)), np.zeros((2, 2)), threshold=0.5)
