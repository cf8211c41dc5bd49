import numpy as np
import pytest

from flatnets.data import available_datasets, get_dataset, one_hot
from flatnets.data.csv_loader import read_labelled_csv
from flatnets.data.registry import holdout_split
from flatnets.data.synthetic import make_stripes


def _write_csv(path, rows):
    lines = ["label," + ",".join(f"p{i}" for i in range(len(rows[0]) - 1))]
    lines += [",".join(str(v) for v in row) for row in rows]
    path.write_text("\n".join(lines) + "\n")


def test_builtin_datasets_registered():
    assert {"blobs", "csv", "stripes"} <= set(available_datasets())


def test_read_labelled_csv_scales_features(tmp_path):
    path = tmp_path / "train.csv"
    _write_csv(path, [[3, 0, 255, 51], [0, 255, 0, 0]])
    features, labels = read_labelled_csv(path)
    assert labels.tolist() == [3, 0]
    np.testing.assert_allclose(features, [[0.0, 1.0, 0.2], [1.0, 0.0, 0.0]], rtol=1e-6)
    assert features.dtype == np.float32


def test_csv_dataset_with_test_file(tmp_path):
    train, test = tmp_path / "train.csv", tmp_path / "test.csv"
    _write_csv(train, [[0, 10, 20], [1, 30, 40], [2, 50, 60]])
    _write_csv(test, [[1, 0, 0]])
    spec = get_dataset("csv", train_path=train, test_path=test, num_classes=3)
    assert (spec.num_inputs, spec.num_outputs) == (2, 3)
    assert len(spec.train) == 3 and len(spec.test) == 1
    x, y = spec.test[0]
    assert y.tolist() == [0.0, 1.0, 0.0]
    assert spec.provenance["type"] == "csv"


def test_csv_dataset_holdout_is_seeded(tmp_path):
    path = tmp_path / "train.csv"
    _write_csv(path, [[i % 2, i, i] for i in range(20)])
    first = get_dataset("csv", train_path=path, test_split=0.25, seed=3)
    second = get_dataset("csv", train_path=path, test_split=0.25, seed=3)
    assert len(first.test) == 5 and len(first.train) == 15
    assert first.num_outputs == 2
    np.testing.assert_array_equal(np.stack([x for x, _ in first.test]), np.stack([x for x, _ in second.test]))


def test_unknown_dataset_lists_available():
    with pytest.raises(KeyError, match="blobs"):
        get_dataset("imagenet")


def test_blobs_shapes_and_determinism():
    spec = get_dataset("blobs", n=40, d=3, classes=4, seed=1)
    assert (spec.num_inputs, spec.num_outputs) == (3, 4)
    assert len(spec.train) + len(spec.test) == 40
    again = get_dataset("blobs", n=40, d=3, classes=4, seed=1)
    np.testing.assert_array_equal(spec.train[0][0], again.train[0][0])
    assert all(y.sum() == 1.0 for _, y in spec.train)


def test_stripes_orientation():
    images, labels = make_stripes(n=4, size=6, noise=0.0, seed=0)
    for image, label in zip(images.reshape(4, 6, 6), labels):
        if label == 0:
            assert np.all(image == image[:, :1])
        else:
            assert np.all(image == image[:1, :])


def test_one_hot_and_holdout_validation():
    np.testing.assert_array_equal(one_hot([2, 0], 3), [[0, 0, 1], [1, 0, 0]])
    with pytest.raises(ValueError):
        one_hot([3], 3)
    with pytest.raises(ValueError):
        holdout_split(10, 1.0, 0)
