import numpy as np
import pytest

from flatnets.core.activations import stable_softmax
from flatnets.core.buffers import BufferSet
from flatnets.core.layers import (
    ConnectedInput,
    Convolution,
    ConvolutionInput,
    Dense,
    Dropout,
    MaxPool,
    Softmax,
)
from flatnets.core.layout import connect
from flatnets.kernels import create_backend, dropout_keep_mask, fill_random, init_limit

BACKENDS = ["vectorized", "parallel"]


def _forward(backend, buffers, inputs, keep=None):
    keep = keep or {}
    buffers.load_inputs(inputs)
    for index, layer in enumerate(buffers.network.layers):
        backend.forward(layer, buffers, keep.get(index))


def _backward(backend, buffers, upstream, keep=None):
    keep = keep or {}
    layers = buffers.network.layers
    last = layers[-1]
    buffers.zero_errors()
    start = last.next_layer_error_offset
    buffers.error_rows()[:, start : start + last.num_outputs] = upstream
    for index in range(len(layers) - 1, -1, -1):
        backend.backward(layers[index], buffers, keep.get(index))


def _random_parameters(network, seed=0):
    buffers_rng = np.random.default_rng(seed)
    params = np.zeros(network.parameter_count, dtype=np.float32)
    for layer in network.layers:
        fill_random(layer, params, buffers_rng)
    return params


def _reference_conv(image, kernel, layer):
    out = np.zeros(layer.num_outputs, dtype=np.float64)
    size = layer.kernel_size
    in_h, in_w = layer.input_height, layer.input_width
    out_h, out_w = layer.output_height, layer.output_width
    for ic in range(layer.input_channels):
        for k in range(layer.kernels_per_channel):
            oc = ic * layer.kernels_per_channel + k
            for y in range(out_h):
                for x in range(out_w):
                    acc = 0.0
                    for ky in range(size):
                        for kx in range(size):
                            iy = y * layer.stride + ky - layer.padding
                            ix = x * layer.stride + kx - layer.padding
                            if 0 <= iy < in_h and 0 <= ix < in_w:
                                acc += image[ic * in_h * in_w + iy * in_w + ix] * kernel[oc * size * size + ky * size + kx]
                    out[oc * out_h * out_w + y * out_w + x] = 1.0 / (1.0 + np.exp(-acc))
    return out


@pytest.mark.parametrize("backend_name", BACKENDS)
def test_dense_forward_matches_matmul(backend_name):
    network = connect([Dense(neurons=4, activation="sigmoid")], ConnectedInput(inputs=3))
    buffers = BufferSet(network, batch_size=2)
    buffers.parameters[...] = _random_parameters(network)
    inputs = np.array([[0.5, -1.0, 2.0], [1.0, 0.0, -0.25]], dtype=np.float32)
    _forward(create_backend(backend_name), buffers, inputs)

    weights = buffers.parameters[:12].reshape(4, 3).astype(np.float64)
    bias = buffers.parameters[12:16].astype(np.float64)
    expected = 1.0 / (1.0 + np.exp(-(inputs @ weights.T + bias)))
    np.testing.assert_allclose(buffers.outputs(), expected, rtol=1e-5, atol=1e-6)


@pytest.mark.parametrize("backend_name", BACKENDS)
def test_forward_writes_only_its_output_slice(backend_name):
    network = connect([Dense(neurons=4, activation="relu"), Softmax(neurons=2)], ConnectedInput(inputs=3))
    buffers = BufferSet(network, batch_size=3)
    buffers.parameters[...] = _random_parameters(network)
    buffers.activations.fill(7.0)
    buffers.load_inputs(np.ones((2, 3), dtype=np.float32))
    before = buffers.activations.reshape(3, network.activation_count).copy()

    create_backend(backend_name).forward(network.layers[0], buffers)

    after = buffers.activations.reshape(3, network.activation_count)
    dense = network.layers[0]
    out = slice(dense.activation_output_offset, dense.activation_output_offset + dense.num_outputs)
    mask = np.ones_like(after, dtype=bool)
    mask[:2, out] = False
    np.testing.assert_array_equal(after[mask], before[mask])
    assert np.all(after[:2, out] != 7.0)
    # the third block is outside the active batch and stays untouched
    np.testing.assert_array_equal(after[2], before[2])


@pytest.mark.parametrize("backend_name", BACKENDS)
def test_softmax_outputs_form_a_distribution(backend_name):
    network = connect([Softmax(neurons=5)], ConnectedInput(inputs=4))
    buffers = BufferSet(network, batch_size=4)
    buffers.parameters[...] = _random_parameters(network, seed=3)
    rng = np.random.default_rng(5)
    inputs = rng.normal(0.0, 1.0, size=(4, 4)).astype(np.float32)
    inputs[1] *= 1000.0
    _forward(create_backend(backend_name), buffers, inputs)
    outputs = buffers.outputs()
    np.testing.assert_allclose(outputs.sum(axis=1), 1.0, atol=1e-5)
    assert np.all(outputs >= 0.0) and np.all(outputs <= 1.0)


@pytest.mark.parametrize("backend_name", BACKENDS)
def test_softmax_nan_logits_fall_back_to_uniform(backend_name):
    network = connect([Softmax(neurons=4)], ConnectedInput(inputs=3))
    buffers = BufferSet(network, batch_size=1)
    buffers.parameters[...] = _random_parameters(network)
    _forward(create_backend(backend_name), buffers, np.full((1, 3), np.nan, dtype=np.float32))
    np.testing.assert_allclose(buffers.outputs(), np.full((1, 4), 0.25), atol=1e-7)


def test_stable_softmax_handles_infinite_rows():
    logits = np.array([[np.inf, 1.0, 0.0], [1.0, 2.0, 3.0], [np.nan, np.nan, np.nan]], dtype=np.float32)
    probs = stable_softmax(logits)
    np.testing.assert_allclose(probs[0], np.full(3, 1 / 3), atol=1e-7)
    np.testing.assert_allclose(probs[2], np.full(3, 1 / 3), atol=1e-7)
    np.testing.assert_allclose(probs[1].sum(), 1.0, atol=1e-6)
    assert probs.dtype == np.float32


@pytest.mark.parametrize("backend_name", BACKENDS)
def test_convolution_forward_matches_reference(backend_name):
    network = connect(
        [Convolution(kernel_size=3, stride=2, padding=1, kernels_per_channel=2, activation="sigmoid")],
        ConvolutionInput(width=5, height=4, is_grayscale=False),
    )
    layer = network.layers[0]
    buffers = BufferSet(network, batch_size=2)
    buffers.parameters[...] = _random_parameters(network, seed=8)
    rng = np.random.default_rng(2)
    inputs = rng.normal(size=(2, layer.num_inputs)).astype(np.float32)
    _forward(create_backend(backend_name), buffers, inputs)
    for sample in range(2):
        expected = _reference_conv(inputs[sample], buffers.parameters, layer)
        np.testing.assert_allclose(buffers.outputs()[sample], expected, rtol=1e-5, atol=1e-6)


@pytest.mark.parametrize("backend_name", BACKENDS)
@pytest.mark.parametrize(("activation", "slope"), [("relu", 0.0), ("leaky_relu", 0.1)])
def test_dense_rectifier_backward_matches_reference(backend_name, activation, slope):
    network = connect([Dense(neurons=2, activation=activation, alpha=0.1)], ConnectedInput(inputs=1))
    buffers = BufferSet(network, batch_size=1)
    buffers.parameters[...] = [1.0, -1.0, 0.0, 0.0]
    backend = create_backend(backend_name)
    _forward(backend, buffers, np.array([[1.0]], dtype=np.float32))
    np.testing.assert_allclose(buffers.outputs()[0], [1.0, -slope], atol=1e-7)

    _backward(backend, buffers, np.array([[2.0, 3.0]], dtype=np.float32))
    layer = network.layers[0]
    # the negative unit passes its error scaled by the configured slope
    error = buffers.error_rows()[0, layer.current_layer_error_offset]
    assert error == pytest.approx(2.0 - 3.0 * slope)
    np.testing.assert_allclose(buffers.gradient_rows()[0], [2.0, 3.0 * slope, 2.0, 3.0 * slope], atol=1e-6)


@pytest.mark.parametrize("backend_name", BACKENDS)
@pytest.mark.parametrize(("activation", "slope"), [("relu", 0.0), ("leaky_relu", 0.1)])
def test_convolution_rectifier_backward_matches_reference(backend_name, activation, slope):
    network = connect([Convolution(kernel_size=1, activation=activation, alpha=0.1)], ConvolutionInput(width=2, height=1))
    buffers = BufferSet(network, batch_size=1)
    buffers.parameters[...] = 1.0
    backend = create_backend(backend_name)
    _forward(backend, buffers, np.array([[1.0, -1.0]], dtype=np.float32))
    np.testing.assert_allclose(buffers.outputs()[0], [1.0, -slope], atol=1e-7)

    _backward(backend, buffers, np.array([[2.0, 3.0]], dtype=np.float32))
    layer = network.layers[0]
    start = layer.current_layer_error_offset
    np.testing.assert_allclose(buffers.error_rows()[0, start : start + 2], [2.0, 3.0 * slope], atol=1e-6)
    assert buffers.gradient_rows()[0, 0] == pytest.approx(2.0 - 3.0 * slope)

@pytest.mark.parametrize("backend_name", BACKENDS)
def test_maxpool_backward_routes_error_without_loss(backend_name):
    network = connect([MaxPool(pool_size=2)], ConvolutionInput(width=4, height=4))
    buffers = BufferSet(network, batch_size=2)
    rng = np.random.default_rng(0)
    inputs = np.stack([rng.permutation(16), rng.permutation(16)]).astype(np.float32)
    upstream = rng.normal(size=(2, 4)).astype(np.float32)
    backend = create_backend(backend_name)
    _forward(backend, buffers, inputs)
    _backward(backend, buffers, upstream)

    routed = buffers.error_rows()[:, :16]
    np.testing.assert_allclose(routed.sum(axis=1), upstream.sum(axis=1), rtol=1e-6)
    for sample in range(2):
        image = inputs[sample].reshape(4, 4)
        for y in range(2):
            for x in range(2):
                window = image[2 * y : 2 * y + 2, 2 * x : 2 * x + 2]
                ky, kx = np.unravel_index(np.argmax(window), (2, 2))
                index = (2 * y + ky) * 4 + 2 * x + kx
                assert routed[sample, index] == pytest.approx(upstream[sample, y * 2 + x])
        assert np.count_nonzero(routed[sample]) == 4


@pytest.mark.parametrize("backend_name", BACKENDS)
def test_maxpool_ties_route_to_last_position(backend_name):
    network = connect([MaxPool(pool_size=2)], ConvolutionInput(width=4, height=4))
    buffers = BufferSet(network, batch_size=1)
    backend = create_backend(backend_name)
    _forward(backend, buffers, np.ones((1, 16), dtype=np.float32))
    _backward(backend, buffers, np.array([[1.0, 2.0, 3.0, 4.0]], dtype=np.float32))
    routed = buffers.error_rows()[0, :16].reshape(4, 4)
    expected = np.zeros((4, 4), dtype=np.float32)
    expected[1, 1], expected[1, 3], expected[3, 1], expected[3, 3] = 1.0, 2.0, 3.0, 4.0
    np.testing.assert_array_equal(routed, expected)


@pytest.mark.parametrize("backend_name", BACKENDS)
def test_dropout_mask_is_shared_across_the_batch(backend_name):
    network = connect([Dropout(rate=0.5)], ConnectedInput(inputs=32))
    layer = network.layers[0]
    buffers = BufferSet(network, batch_size=3)
    keep = dropout_keep_mask(layer, np.random.default_rng(4), training=True)
    assert keep.shape == (32,) and 0 < keep.sum() < 32

    inputs = np.arange(1, 97, dtype=np.float32).reshape(3, 32)
    backend = create_backend(backend_name)
    _forward(backend, buffers, inputs, keep={0: keep})
    outputs = buffers.outputs()
    # every sample in one forward call sees the same dropped units
    for sample in range(3):
        np.testing.assert_array_equal(outputs[sample] != 0.0, keep)
        np.testing.assert_array_equal(outputs[sample][keep], inputs[sample][keep])

    upstream = np.ones((3, 32), dtype=np.float32)
    _backward(backend, buffers, upstream, keep={0: keep})
    np.testing.assert_array_equal(buffers.error_rows()[:, :32], np.where(keep, 1.0, 0.0)[None, :].repeat(3, 0))


def test_dropout_mask_is_a_noop_outside_training():
    layer = connect([Dropout(rate=0.9)], ConnectedInput(inputs=8)).layers[0]
    rng = np.random.default_rng(0)
    state = rng.bit_generator.state
    keep = dropout_keep_mask(layer, rng, training=False)
    assert keep.all()
    assert rng.bit_generator.state == state


def test_fill_random_is_seeded_and_bounded():
    network = connect(
        [Convolution(kernel_size=3, kernels_per_channel=2), Dense(neurons=4), Softmax(neurons=3)],
        ConvolutionInput(width=5, height=5),
    )
    first = _random_parameters(network, seed=42)
    second = _random_parameters(network, seed=42)
    np.testing.assert_array_equal(first, second)
    assert not np.array_equal(first, _random_parameters(network, seed=43))
    for layer in network.layers:
        chunk = first[layer.parameter_offset : layer.parameter_offset + layer.parameter_count]
        assert np.all(np.abs(chunk) <= init_limit(layer))
    conv, dense, _ = network.layers
    assert init_limit(conv) == pytest.approx(np.sqrt(2.0 / conv.parameter_count))
    assert init_limit(dense) == pytest.approx(np.sqrt(6.0 / (dense.num_inputs + dense.num_outputs)))


def test_vectorized_gradients_match_finite_differences():
    network = connect(
        [Convolution(kernel_size=3, activation="sigmoid"), Dense(neurons=2, activation="sigmoid")],
        ConvolutionInput(width=4, height=4),
    )
    backend = create_backend("vectorized")
    buffers = BufferSet(network, batch_size=1)
    buffers.parameters[...] = _random_parameters(network, seed=1)
    rng = np.random.default_rng(6)
    inputs = rng.normal(size=(1, 16)).astype(np.float32)
    target = np.array([[0.2, 0.9]])

    def loss():
        _forward(backend, buffers, inputs)
        return 0.5 * float(np.sum((buffers.outputs().astype(np.float64) - target) ** 2))

    loss()
    _backward(backend, buffers, (buffers.outputs() - target).astype(np.float32))
    analytic_params = buffers.gradient_rows()[0].copy()
    analytic_inputs = buffers.error_rows()[0, :16].copy()

    eps = 1e-2
    numeric_params = np.zeros(network.parameter_count)
    for index in range(network.parameter_count):
        original = buffers.parameters[index]
        buffers.parameters[index] = original + eps
        plus = loss()
        buffers.parameters[index] = original - eps
        minus = loss()
        buffers.parameters[index] = original
        numeric_params[index] = (plus - minus) / (2 * eps)
    np.testing.assert_allclose(analytic_params, numeric_params, rtol=1e-2, atol=1e-3)

    numeric_inputs = np.zeros(16)
    for index in range(16):
        original = inputs[0, index]
        inputs[0, index] = original + eps
        plus = loss()
        inputs[0, index] = original - eps
        minus = loss()
        inputs[0, index] = original
        numeric_inputs[index] = (plus - minus) / (2 * eps)
    np.testing.assert_allclose(analytic_inputs, numeric_inputs, rtol=1e-2, atol=1e-3)


def test_backends_agree_on_a_mixed_network():
    network = connect(
        [
            Convolution(kernel_size=3, padding=1, stride=1, kernels_per_channel=2, activation="leaky_relu", alpha=0.05),
            MaxPool(pool_size=2),
            Dropout(rate=0.3),
            Dense(neurons=6, activation="sigmoid"),
            Softmax(neurons=3),
        ],
        ConvolutionInput(width=6, height=6, is_grayscale=False),
    )
    params = _random_parameters(network, seed=10)
    rng = np.random.default_rng(11)
    inputs = rng.normal(size=(4, network.input_count)).astype(np.float32)
    upstream = rng.normal(size=(4, 3)).astype(np.float32)
    keep = {2: dropout_keep_mask(network.layers[2], np.random.default_rng(12), training=True)}

    results = {}
    for name in BACKENDS:
        buffers = BufferSet(network, batch_size=5)
        buffers.parameters[...] = params
        backend = create_backend(name)
        _forward(backend, buffers, inputs, keep)
        _backward(backend, buffers, upstream, keep)
        results[name] = (buffers.activation_rows().copy(), buffers.error_rows().copy(), buffers.gradient_rows().copy())

    for vec, par in zip(results["vectorized"], results["parallel"]):
        np.testing.assert_allclose(vec, par, rtol=1e-4, atol=1e-5)


def test_gather_tables_use_a_bounded_cache():
    from flatnets.kernels.vectorized import convolution_taps, pool_windows

    assert convolution_taps.cache_info().maxsize == 32
    assert pool_windows.cache_info().maxsize == 32
