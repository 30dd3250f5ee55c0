import numpy as np
import pytest

from pyimgtensor.buffer import CropRegion, Layout, PixelBuffer
from pyimgtensor.errors import BoundsError, ChannelIndexError, ShapeError, ValidationError
from pyimgtensor.geometry import (
    FIVE_CROP_NAMES,
    extract_channel,
    extract_grid,
    extract_patch,
    five_crop,
    five_crop_regions,
    flip,
    letterbox,
    random_crop,
    reverse_letterbox,
    ten_crop,
)
from pyimgtensor.layout import cast_dtype, convert_layout


def _indexed(h: int = 4, w: int = 4, c: int = 3) -> PixelBuffer:
    """Pixel (y, x) carries value 10*y + x in every channel."""

    ys, xs = np.mgrid[0:h, 0:w]
    plane = (10 * ys + xs).astype(np.uint8)
    return PixelBuffer.from_array(np.repeat(plane[..., None], c, axis=2))


def test_five_crop_on_4x4_yields_corners_then_center() -> None:
    buf = _indexed()
    crops = five_crop(buf, 2, 2)
    assert len(crops) == 5
    for crop in crops:
        assert (crop.width, crop.height, crop.channels) == (2, 2, 3)

    top_left_values = [int(c.to_array()[0, 0, 0]) for c in crops]
    # top-left, top-right, bottom-left, bottom-right, center at (x=1, y=1)
    assert top_left_values == [0, 2, 20, 22, 11]


def test_five_crop_regions_center_for_odd_remainder() -> None:
    regions = five_crop_regions(5, 7, 2, 2)
    assert regions[-1] == CropRegion(x=1, y=2, width=2, height=2)
    assert len(FIVE_CROP_NAMES) == len(regions)


def test_five_crop_rejects_oversized_crop() -> None:
    with pytest.raises(BoundsError):
        five_crop(_indexed(), 5, 2)
    with pytest.raises(ShapeError):
        five_crop(_indexed(), 0, 2)


def test_ten_crop_is_five_crop_of_source_then_of_mirror() -> None:
    buf = _indexed(4, 5)
    crops = ten_crop(buf, 2, 3)
    assert len(crops) == 10
    assert crops[:5] == five_crop(buf, 2, 3)
    assert crops[5:] == five_crop(flip(buf, "horizontal"), 2, 3)
    # Sixth crop is the top-left corner of the mirrored image.
    assert int(crops[5].to_array()[0, 0, 0]) == 4


def test_ten_crop_without_flips() -> None:
    assert len(ten_crop(_indexed(), 2, 2, include_flips=False)) == 5


def test_five_crop_chw_matches_hwc() -> None:
    buf = _indexed()
    hwc_crops = five_crop(buf, 2, 2)
    chw_crops = five_crop(convert_layout(buf, "CHW"), 2, 2)
    for a, b in zip(hwc_crops, chw_crops):
        assert b.layout is Layout.CHW
        assert convert_layout(b, "HWC") == a


def test_extract_patch_copies_region() -> None:
    patch = extract_patch(_indexed(), {"x": 1, "y": 2, "width": 3, "height": 2})
    assert (patch.width, patch.height) == (3, 2)
    np.testing.assert_array_equal(patch.to_array()[..., 0], [[21, 22, 23], [31, 32, 33]])


@pytest.mark.parametrize(
    "region",
    [
        CropRegion(x=3, y=0, width=2, height=2),
        CropRegion(x=0, y=3, width=1, height=2),
        CropRegion(x=-1, y=0, width=2, height=2),
        CropRegion(x=0, y=0, width=5, height=4),
    ],
)
def test_extract_patch_partially_outside_raises_bounds_error(region) -> None:
    with pytest.raises(BoundsError):
        extract_patch(_indexed(), region)


def test_extract_patch_rejects_malformed_region() -> None:
    with pytest.raises(ValidationError):
        extract_patch(_indexed(), {"x": 0, "y": 0, "width": 2})


def test_extract_channel() -> None:
    arr = np.zeros((2, 2, 3), dtype=np.uint8)
    arr[..., 2] = 7
    out = extract_channel(PixelBuffer.from_array(arr), 2)
    assert out.channels == 1
    assert np.all(out.values() == 7)

    chw = extract_channel(convert_layout(PixelBuffer.from_array(arr), "CHW"), 2)
    assert chw.layout is Layout.CHW
    assert np.all(chw.values() == 7)


@pytest.mark.parametrize("index", [3, -1])
def test_extract_channel_out_of_range(index) -> None:
    with pytest.raises(ChannelIndexError):
        extract_channel(_indexed(), index)
    with pytest.raises(IndexError):
        extract_channel(_indexed(), index)


@pytest.mark.parametrize("layout", ["HWC", "CHW"])
def test_flip_directions(layout) -> None:
    buf = convert_layout(_indexed(3, 4, 1), layout)
    plane = _indexed(3, 4, 1).to_array()[..., 0]

    h = convert_layout(flip(buf, "horizontal"), "HWC").to_array()[..., 0]
    v = convert_layout(flip(buf, "vertical"), "HWC").to_array()[..., 0]
    both = convert_layout(flip(buf, "both"), "HWC").to_array()[..., 0]
    np.testing.assert_array_equal(h, plane[:, ::-1])
    np.testing.assert_array_equal(v, plane[::-1, :])
    np.testing.assert_array_equal(both, plane[::-1, ::-1])


def test_flip_rejects_unknown_direction() -> None:
    with pytest.raises(ValueError):
        flip(_indexed(), "diagonal")


def test_random_crop_is_reproducible_and_in_bounds() -> None:
    buf = _indexed(8, 8)
    a = random_crop(buf, 3, 2, seed=7, count=4)
    b = random_crop(buf, 3, 2, seed=7, count=4)
    assert [c.region for c in a] == [c.region for c in b]
    for crop in a:
        assert 0 <= crop.region.x <= 5
        assert 0 <= crop.region.y <= 6
        assert (crop.buffer.width, crop.buffer.height) == (3, 2)
        assert crop.buffer == extract_patch(buf, crop.region)


def test_extract_grid_without_overlap() -> None:
    patches = extract_grid(_indexed(4, 4), 2, 2)
    assert [(p.row, p.column) for p in patches] == [(0, 0), (0, 1), (1, 0), (1, 1)]
    assert [p.region for p in patches][-1] == CropRegion(x=2, y=2, width=2, height=2)
    assert int(patches[-1].buffer.to_array()[0, 0, 0]) == 22


def test_extract_grid_with_overlap() -> None:
    patches = extract_grid(_indexed(4, 5), 1, 2, overlap=1)
    # patch width (5 + 1) // 2 = 3, stride 2
    assert [p.region for p in patches] == [
        CropRegion(x=0, y=0, width=3, height=4),
        CropRegion(x=2, y=0, width=3, height=4),
    ]


def test_extract_grid_patches_tile_without_remainder_overrun() -> None:
    # 5 // 2 = 2 px patches leave a remainder, but no patch runs past the edge.
    assert len(extract_grid(_indexed(5, 5), 2, 2)) == 4


def test_extract_grid_partial_patches_are_skipped_or_padded() -> None:
    buf = _indexed(4, 4)
    # patch width (4 + 4 * 2) // 3 = 4, stride max(1, 0) = 1: columns 1 and 2 overrun
    assert len(extract_grid(buf, 1, 3, overlap=4)) == 1

    padded = extract_grid(buf, 1, 3, overlap=4, include_partial=True)
    assert [p.region.width for p in padded] == [4, 3, 2]
    assert all((p.buffer.width, p.buffer.height) == (4, 4) for p in padded)
    last = padded[-1].buffer.to_array()[..., 0]
    np.testing.assert_array_equal(last[:, :2], buf.to_array()[:, 2:, 0])
    assert np.all(last[:, 2:] == 0)


def _solid(h: int, w: int, c: int = 3, value: int = 200) -> PixelBuffer:
    return PixelBuffer.from_array(np.full((h, w, c), value, dtype=np.uint8))


def test_letterbox_fits_wide_image_and_pads_evenly() -> None:
    boxed = letterbox(_solid(100, 200), 100, 100)
    info = boxed.info
    assert info.scale == pytest.approx(0.5)
    assert info.letterboxed_size == (100, 50)
    assert info.padding == (0, 25, 0, 25)
    assert info.offset == (0, 25)
    assert info.original_size == (200, 100)
    assert info.target_size == (100, 100)

    arr = boxed.buffer.to_array()
    assert arr.shape == (100, 100, 3)
    assert arr.dtype == np.uint8
    assert np.all(arr[:25] == 114)
    assert np.all(arr[75:] == 114)
    assert np.all(arr[25:75] == 200)


def test_letterbox_without_scale_up_keeps_small_images() -> None:
    info = letterbox(_solid(10, 20), 100, 100, scale_up=False).info
    assert info.scale == 1.0
    assert info.letterboxed_size == (20, 10)
    assert info.padding == (40, 45, 40, 45)

    assert letterbox(_solid(10, 20), 100, 100).info.scale == pytest.approx(5.0)


def test_letterbox_uncentered_pads_right_and_bottom() -> None:
    boxed = letterbox(_solid(100, 200), 100, 100, center=False, pad_color=0)
    assert boxed.info.padding == (0, 0, 0, 50)
    arr = boxed.buffer.to_array()
    assert np.all(arr[:50] == 200)
    assert np.all(arr[50:] == 0)


def test_letterbox_stride_rounds_resized_size_up() -> None:
    info = letterbox(_solid(60, 100), 128, 128, stride=32).info
    assert info.scale == pytest.approx(1.28)
    assert info.letterboxed_size == (128, 96)
    assert info.padding == (0, 16, 0, 16)
    assert info.scale_y == pytest.approx(96 / 60)
    with pytest.raises(ValueError):
        letterbox(_solid(60, 100), 128, 128, stride=0)


def test_letterbox_pad_values_follow_buffer_scale_and_channels() -> None:
    floats = cast_dtype(_solid(10, 20), "float32", normalized=True)
    arr = letterbox(floats, 20, 20).buffer.to_array()
    assert arr[0, 0, 0] == pytest.approx(114 / 255)

    rgba = letterbox(_solid(10, 20, c=4), 20, 20, pad_color=(1, 2, 3)).buffer.to_array()
    assert rgba[0, 0].tolist() == [1, 2, 3, 255]

    gray = letterbox(_solid(10, 20, c=1), 20, 20).buffer
    assert gray.shape == (20, 20, 1)
    assert int(gray.to_array()[0, 0, 0]) == 114


def test_letterbox_keeps_chw_layout() -> None:
    buf = convert_layout(_solid(100, 200), "CHW")
    boxed = letterbox(buf, 100, 100).buffer
    assert boxed.layout is Layout.CHW
    assert boxed.shape == (3, 100, 100)
    assert convert_layout(boxed, "HWC") == letterbox(_solid(100, 200), 100, 100).buffer


def test_letterbox_rejects_bad_targets() -> None:
    with pytest.raises(ShapeError):
        letterbox(_solid(10, 10), 0, 10)
    with pytest.raises(ShapeError):
        letterbox(_solid(10, 10, c=2), 10, 10)


@pytest.mark.parametrize(
    "box_format,letterboxed,original",
    [
        ("xyxy", [5, 35, 55, 65], [10, 20, 110, 80]),
        ("xywh", [5, 35, 50, 30], [10, 20, 100, 60]),
        ("cxcywh", [30, 50, 50, 30], [60, 50, 100, 60]),
    ],
)
def test_reverse_letterbox_maps_boxes_to_source(box_format, letterboxed, original) -> None:
    info = letterbox(_solid(100, 200), 100, 100).info
    out = reverse_letterbox(letterboxed, info, box_format=box_format)
    np.testing.assert_allclose(out, original)


def test_reverse_letterbox_clips_and_keeps_extra_columns() -> None:
    info = letterbox(_solid(100, 200), 100, 100).info
    boxes = np.array([[-10.0, 0.0, 120.0, 100.0, 0.9, 3.0]])
    out = reverse_letterbox(boxes, info)
    np.testing.assert_allclose(out, [[0.0, 0.0, 200.0, 100.0, 0.9, 3.0]])

    unclipped = reverse_letterbox(boxes, info, clip=False)
    np.testing.assert_allclose(unclipped[0, :4], [-20.0, -50.0, 240.0, 150.0])

    with pytest.raises(ValueError):
        reverse_letterbox(boxes, info, box_format="yolo")
    with pytest.raises(ShapeError):
        reverse_letterbox([[1.0, 2.0]], info)
