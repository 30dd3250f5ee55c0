import numpy as np
import pytest

from pyimgtensor.buffer import DType, Layout
from pyimgtensor.errors import DtypeError, ShapeError
from pyimgtensor.inputs.image_format import ImageFormat, buffer_from_numpy, parse_image_format


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("bgr_u8_hwc", ImageFormat.BGR_U8_HWC),
        ("RGB_U8_HWC", ImageFormat.RGB_U8_HWC),
        ("rgb_f32_chw", ImageFormat.RGB_F32_CHW),
        (ImageFormat.GRAY_U8_HW, ImageFormat.GRAY_U8_HW),
    ],
)
def test_parse_image_format(raw, expected):
    assert parse_image_format(raw) is expected


def test_parse_image_format_rejects_unknown():
    with pytest.raises(ValueError):
        parse_image_format("auto")


def test_bgr_u8_hwc_is_reordered_to_rgb():
    bgr = np.zeros((2, 3, 3), dtype=np.uint8)
    bgr[..., 0] = 10  # B
    bgr[..., 1] = 20  # G
    bgr[..., 2] = 30  # R
    buf = buffer_from_numpy(bgr, input_format=ImageFormat.BGR_U8_HWC)
    assert (buf.width, buf.height, buf.channels) == (3, 2, 3)
    rgb = buf.to_array()
    assert np.all(rgb[..., 0] == 30)
    assert np.all(rgb[..., 1] == 20)
    assert np.all(rgb[..., 2] == 10)


def test_gray_u8_hw_becomes_single_channel():
    buf = buffer_from_numpy(np.full((4, 5), 7, dtype=np.uint8), input_format="gray_u8_hw")
    assert (buf.width, buf.height, buf.channels) == (5, 4, 1)


def test_rgb_f32_chw_keeps_layout_and_is_normalized():
    chw = np.ones((3, 4, 5), dtype=np.float32) * 0.5
    buf = buffer_from_numpy(chw, input_format=ImageFormat.RGB_F32_CHW)
    assert buf.layout is Layout.CHW
    assert buf.dtype is DType.FLOAT32
    assert buf.normalized is True
    assert buf.shape == (3, 4, 5)


def test_rgb_f32_chw_rejects_out_of_range():
    with pytest.raises(DtypeError):
        buffer_from_numpy(np.full((3, 2, 2), 2.0, dtype=np.float32), input_format="rgb_f32_chw")


def test_u8_formats_reject_float_arrays():
    with pytest.raises(DtypeError):
        buffer_from_numpy(np.zeros((2, 2, 3), dtype=np.float32), input_format="rgb_u8_hwc")


@pytest.mark.parametrize("shape", [(3, 3), (3, 3, 1), (3, 3, 4)])
def test_rejects_bad_shapes(shape):
    arr = np.zeros(shape, dtype=np.uint8)
    with pytest.raises(ShapeError):
        buffer_from_numpy(arr, input_format=ImageFormat.RGB_U8_HWC)


def test_rejects_non_arrays():
    with pytest.raises(TypeError):
        buffer_from_numpy([[1, 2]], input_format="gray_u8_hw")
