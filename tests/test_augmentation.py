import numpy as np
import pytest

from pyimgtensor.augmentation import (
    AugmentationPipeline,
    AugmentationStep,
    apply_augmentations,
    list_augmentations,
    parse_augmentation_spec,
    register_augmentation,
)
from pyimgtensor.augmentation.registry import AugmentationRegistry
from pyimgtensor.buffer import DType, Layout, PixelBuffer
from pyimgtensor.errors import ShapeError, UnsupportedOperationError, ValidationError
from pyimgtensor.geometry import flip
from pyimgtensor.layout import cast_dtype, convert_layout


def _gradient(h: int = 4, w: int = 6, c: int = 3) -> PixelBuffer:
    ys, xs = np.mgrid[0:h, 0:w]
    plane = (10 * ys + xs).astype(np.uint8)
    return PixelBuffer.from_array(np.repeat(plane[..., None], c, axis=2))


def test_builtin_ops_are_registered() -> None:
    names = list_augmentations()
    for name in (
        "flip", "hflip", "vflip", "rotate", "brightness", "contrast", "saturation",
        "hue", "color_jitter", "noise", "normalize", "cutout",
    ):
        assert name in names


def test_steps_apply_in_order() -> None:
    buf = _gradient()
    out = apply_augmentations(buf, [{"op_name": "hflip"}, {"opName": "brightness", "params": {"delta": 0.1}}])
    expected = np.clip(flip(buf, "horizontal").to_array().astype(np.float64) + 25.5, 0, 255)
    np.testing.assert_array_equal(out.to_array(), np.rint(expected).astype(np.uint8))


def test_empty_spec_returns_input() -> None:
    buf = _gradient()
    assert apply_augmentations(buf, []) is buf


def test_unknown_op_aborts_before_any_step_runs() -> None:
    calls = []

    @register_augmentation("test_counting_op", overwrite=True)
    def _counting(buf, params):
        calls.append(1)
        return buf

    with pytest.raises(UnsupportedOperationError) as exc:
        apply_augmentations(_gradient(), [{"op_name": "test_counting_op"}, {"op_name": "sharpen"}])
    assert calls == []
    assert "sharpen" in str(exc.value)


def test_registry_rejects_duplicates_and_resolves_aliases() -> None:
    registry = AugmentationRegistry()
    registry.register("a", lambda buf, params: buf, aliases=("alias_a",))
    assert registry.resolve("alias_a") == "a"
    assert "alias_a" in registry
    with pytest.raises(KeyError):
        registry.register("a", lambda buf, params: buf)
    with pytest.raises(UnsupportedOperationError):
        registry.get("missing")


@pytest.mark.parametrize("layout", ["HWC", "CHW"])
def test_rotate_quarter_turns(layout) -> None:
    buf = convert_layout(_gradient(c=1), layout)
    plane = _gradient(c=1).to_array()[..., 0]

    ccw = apply_augmentations(buf, [{"op": "rotate", "params": {"angle": 90}}])
    assert (ccw.width, ccw.height) == (4, 6)
    assert ccw.layout is buf.layout
    np.testing.assert_array_equal(convert_layout(ccw, "HWC").to_array()[..., 0], np.rot90(plane, 1))

    cw = apply_augmentations(buf, [{"op": "rotate", "params": {"angle": -90}}])
    np.testing.assert_array_equal(convert_layout(cw, "HWC").to_array()[..., 0], np.rot90(plane, -1))

    half = apply_augmentations(buf, [{"op": "rotate", "params": {"angle": 180}}])
    np.testing.assert_array_equal(convert_layout(half, "HWC").to_array()[..., 0], np.rot90(plane, 2))

    assert apply_augmentations(buf, [{"op": "rotate", "params": {"angle": 360}}]) == buf


def test_rotate_rejects_non_right_angles() -> None:
    with pytest.raises(UnsupportedOperationError):
        apply_augmentations(_gradient(), [{"op": "rotate", "params": {"angle": 45}}])


def test_brightness_clamps_uint8_and_spares_alpha() -> None:
    arr = np.full((2, 2, 4), 250, dtype=np.uint8)
    out = apply_augmentations(PixelBuffer.from_array(arr), [{"op": "brightness", "params": {"delta": 0.5}}])
    values = out.to_array()
    assert np.all(values[..., :3] == 255)
    assert np.all(values[..., 3] == 250)


def test_brightness_on_normalized_float_uses_unit_scale() -> None:
    buf = cast_dtype(_gradient(), "float32", normalized=True)
    out = apply_augmentations(buf, [{"op": "brightness", "params": {"delta": -1.0}}])
    assert out.dtype is DType.FLOAT32
    assert out.normalized is True
    assert np.all(out.values() == 0.0)


def test_contrast_pivots_on_mean() -> None:
    arr = np.array([[[100], [200]]], dtype=np.uint8)
    out = apply_augmentations(PixelBuffer.from_array(arr), [{"op": "contrast", "params": {"factor": 2.0}}])
    assert out.values().tolist() == [50, 250]

    flat = apply_augmentations(PixelBuffer.from_array(arr), [{"op": "contrast", "params": {"factor": 0.0}}])
    assert flat.values().tolist() == [150, 150]


def test_saturation_zero_gives_gray() -> None:
    arr = np.array([[[255, 0, 0, 9]]], dtype=np.uint8)
    out = apply_augmentations(PixelBuffer.from_array(arr), [{"op": "saturation", "params": {"factor": 0.0}}])
    # luma of pure red: 0.299 * 255 = 76.245
    assert out.values().tolist() == [76, 76, 76, 9]


def test_saturation_requires_color_channels() -> None:
    with pytest.raises(UnsupportedOperationError):
        apply_augmentations(_gradient(c=1), [{"op": "saturation", "params": {"factor": 0.5}}])


def test_noise_is_reproducible_for_same_seed() -> None:
    buf = _gradient()
    spec = [{"op": "noise", "params": {"seed": 42, "std": 0.1}}]
    a = apply_augmentations(buf, spec)
    b = apply_augmentations(buf, spec)
    c = apply_augmentations(buf, [{"op": "noise", "params": {"seed": 43, "std": 0.1}}])
    assert a.values().tobytes() == b.values().tobytes()
    assert a != c
    assert a != buf


def test_noise_requires_seed() -> None:
    with pytest.raises(ValidationError) as exc:
        apply_augmentations(_gradient(), [{"op": "noise", "params": {"std": 0.1}}])
    assert any("seed" in issue for issue in exc.value.issues)


def test_unknown_param_is_rejected() -> None:
    with pytest.raises(ValidationError):
        apply_augmentations(_gradient(), [{"op": "brightness", "params": {"delta": 0.1, "gamma": 2}}])


def test_cutout_is_seeded_and_fills_region() -> None:
    buf = PixelBuffer.from_array(np.full((20, 20, 3), 200, dtype=np.uint8))
    spec = [{"op": "cutout", "params": {"seed": 3, "num_cutouts": 2, "fill_value": 0}}]
    a = apply_augmentations(buf, spec)
    b = apply_augmentations(buf, spec)
    assert a == b
    values = a.to_array()
    assert np.any(values == 0)
    assert np.all((values == 0) | (values == 200))


def test_normalize_step_changes_dtype() -> None:
    out = apply_augmentations(_gradient(), [{"op": "normalize", "params": {"preset": "scale"}}])
    assert out.dtype is DType.FLOAT32
    assert out.normalized is True


def test_augmentations_reject_non_image_channel_counts() -> None:
    buf = PixelBuffer.from_array(np.zeros((2, 2, 2), dtype=np.uint8))
    with pytest.raises(ShapeError):
        apply_augmentations(buf, [{"op": "hflip"}])


def test_legacy_mapping_runs_in_fixed_order() -> None:
    steps = parse_augmentation_spec(
        {"saturation": 0.5, "brightness": 0.1, "rotation": 90, "flipHorizontal": True, "contrast": 1.0}
    )
    assert [s.op_name for s in steps] == ["rotate", "hflip", "brightness", "saturation"]


def test_spec_with_steps_key_and_dataclass_steps() -> None:
    steps = parse_augmentation_spec({"steps": [AugmentationStep("vflip"), {"name": "hflip"}]})
    assert [s.op_name for s in steps] == ["vflip", "hflip"]


def test_malformed_steps_report_every_issue() -> None:
    with pytest.raises(ValidationError) as exc:
        parse_augmentation_spec([{"params": {}}, {"op_name": "flip", "params": 3}])
    assert len(exc.value.issues) == 2


def test_pipeline_object_is_reusable() -> None:
    pipeline = AugmentationPipeline.from_spec([{"op": "vflip"}, {"op": "vflip"}])
    buf = convert_layout(_gradient(), Layout.CHW)
    assert len(pipeline) == 2
    assert pipeline(buf) == buf
    assert "vflip" in repr(pipeline)


def _colorful(h: int = 5, w: int = 7, c: int = 3) -> PixelBuffer:
    rng = np.random.default_rng(11)
    return PixelBuffer.from_array(rng.integers(0, 256, size=(h, w, c), dtype=np.uint8))


def test_hue_rotates_around_color_wheel() -> None:
    arr = np.array([[[255, 0, 0, 7]]], dtype=np.uint8)
    out = apply_augmentations(PixelBuffer.from_array(arr), [{"op": "hue", "params": {"delta": 1 / 3}}])
    np.testing.assert_allclose(out.values().astype(int), [0, 255, 0, 7], atol=1)

    cyan = apply_augmentations(PixelBuffer.from_array(arr), [{"op": "hue", "params": {"value": 0.5}}])
    np.testing.assert_allclose(cyan.values().astype(int), [0, 255, 255, 7], atol=1)


def test_hue_full_turn_is_identity_and_keeps_layout() -> None:
    buf = convert_layout(_colorful(), "CHW")
    out = apply_augmentations(buf, [{"op": "hue", "params": {"delta": 1.0}}])
    assert out.layout is Layout.CHW
    np.testing.assert_allclose(out.to_array().astype(int), buf.to_array().astype(int), atol=1)


def test_hue_on_normalized_float() -> None:
    buf = cast_dtype(PixelBuffer.from_array(np.array([[[255, 0, 0]]], dtype=np.uint8)), "float32", normalized=True)
    out = apply_augmentations(buf, [{"op": "hue", "params": {"delta": -1 / 3}}])
    assert out.normalized is True
    np.testing.assert_allclose(out.values(), [0.0, 0.0, 1.0], atol=1e-5)


def test_hue_requires_color_channels() -> None:
    with pytest.raises(UnsupportedOperationError):
        apply_augmentations(_gradient(c=1), [{"op": "hue", "params": {"delta": 0.1}}])


def test_color_jitter_is_reproducible_for_same_seed() -> None:
    spec = {"brightness": 0.2, "contrast": 0.3, "saturation": [0.5, 1.5], "hue": 0.1}
    buf = _colorful()
    a = apply_augmentations(buf, [{"op": "color_jitter", "params": {**spec, "seed": 3}}])
    b = apply_augmentations(buf, [{"op": "color_jitter", "params": {**spec, "seed": 3}}])
    c = apply_augmentations(buf, [{"op": "color_jitter", "params": {**spec, "seed": 4}}])
    assert a == b
    assert a != c
    assert a.shape == buf.shape


def test_color_jitter_fixed_range_matches_single_op() -> None:
    buf = _colorful()
    jittered = apply_augmentations(buf, [{"op": "color_jitter", "params": {"brightness": [0.1, 0.1], "seed": 0}}])
    direct = apply_augmentations(buf, [{"op": "brightness", "params": {"delta": 0.1}}])
    assert jittered == direct


def test_color_jitter_without_adjustments_is_identity() -> None:
    buf = _colorful()
    assert apply_augmentations(buf, [{"op": "color_jitter", "params": {"seed": 1}}]) == buf
    assert apply_augmentations(buf, [{"op": "color_jitter", "params": {"contrast": 0, "seed": 1}}]) == buf


def test_color_jitter_brightness_only_works_on_grayscale() -> None:
    buf = _gradient(c=1)
    out = apply_augmentations(buf, [{"op": "color_jitter", "params": {"brightness": 0.1, "seed": 2}}])
    assert out.channels == 1
    with pytest.raises(UnsupportedOperationError):
        apply_augmentations(buf, [{"op": "color_jitter", "params": {"saturation": [0.2, 0.4], "seed": 2}}])


@pytest.mark.parametrize(
    "params",
    [
        {"brightness": 0.1},
        {"hue": 0.7, "seed": 1},
        {"contrast": -0.2, "seed": 1},
        {"saturation": [1.5, 0.5], "seed": 1},
        {"brightness": "bright", "seed": 1},
        {"sharpness": 0.2, "seed": 1},
    ],
)
def test_color_jitter_rejects_bad_params(params) -> None:
    with pytest.raises(ValidationError):
        apply_augmentations(_colorful(), [{"op": "color_jitter", "params": params}])
