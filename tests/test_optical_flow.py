import numpy as np
import pytest

from slamkit.optical_flow import (
    build_pyramid,
    get_pixel_value,
    optical_flow_multi_level,
    optical_flow_single_level,
)


def _texture(width, height, shift=(0.0, 0.0)):
    y, x = np.mgrid[0:height, 0:width].astype(float)
    x = x - shift[0]
    y = y - shift[1]
    return 128 + 50 * np.sin(x / 12) + 40 * np.cos(y / 15) + 20 * np.sin((x + y) / 20)


def _ramp():
    y, x = np.mgrid[0:10, 0:12].astype(float)
    return 2 * x + 3 * y


def test_bilinear_reproduces_linear_image():
    img = _ramp()
    assert get_pixel_value(img, 3.5, 2.25) == pytest.approx(2 * 3.5 + 3 * 2.25)


def test_integer_position_returns_pixel():
    img = _ramp()
    assert get_pixel_value(img, 4, 6) == pytest.approx(img[6, 4])


def test_negative_coordinates_clamp_to_zero():
    img = _ramp()
    assert get_pixel_value(img, -5, 2) == pytest.approx(get_pixel_value(img, 0, 2))


def test_right_border_clamps_inside():
    img = _ramp()
    assert get_pixel_value(img, 100, 2) == pytest.approx(img[2, img.shape[1] - 2])


def test_rejects_non_2d_image():
    with pytest.raises(ValueError):
        get_pixel_value(np.zeros((4, 4, 3)), 1, 1)


def test_pyramid_shapes_halve():
    pyramid = build_pyramid(np.zeros((48, 64)), 4, 0.5)
    assert [level.shape for level in pyramid] == [(48, 64), (24, 32), (12, 16), (6, 8)]


def test_pyramid_keeps_constant_image_and_dtype():
    img = np.full((40, 40), 100, dtype=np.uint8)
    pyramid = build_pyramid(img, 3, 0.5)
    assert all(level.dtype == np.uint8 for level in pyramid)
    assert all(np.all(level == 100) for level in pyramid)


def test_pyramid_too_small_raises():
    with pytest.raises(ValueError):
        build_pyramid(np.zeros((4, 4)), 5, 0.5)


@pytest.mark.parametrize("inverse", [False, True])
def test_single_level_tracks_small_shift(inverse):
    shift = (1.0, 0.6)
    img1 = _texture(128, 128)
    img2 = _texture(128, 128, shift)
    kp1 = np.array([[64.0, 64.0], [50.0, 70.0], [70.0, 55.0]])
    kp2, success = optical_flow_single_level(img1, img2, kp1, None, inverse, False)
    assert success.all()
    np.testing.assert_allclose(kp2 - kp1, np.tile(shift, (3, 1)), atol=0.1)


def test_single_level_uses_initial_guess():
    img = _texture(128, 128)
    kp1 = np.array([[64.0, 64.0]])
    guess = kp1 + np.array([[0.5, -0.5]])
    kp2, success = optical_flow_single_level(img, img, kp1, guess, False, True)
    assert success[0]
    np.testing.assert_allclose(kp2, kp1, atol=0.1)


def test_multi_level_tracks_larger_shift():
    shift = (3.0, -2.0)
    img1 = _texture(128, 128)
    img2 = _texture(128, 128, shift)
    kp1 = np.array([[64.0, 64.0], [60.0, 70.0], [70.0, 58.0]])
    kp2, success = optical_flow_multi_level(img1, img2, kp1, True)
    assert success.all()
    np.testing.assert_allclose(kp2 - kp1, np.tile(shift, (3, 1)), atol=0.3)


def test_flat_image_fails():
    flat = np.full((40, 40), 90.0)
    kp1 = np.array([[20.0, 20.0]])
    kp2, success = optical_flow_single_level(flat, flat, kp1)
    assert not success[0]
    np.testing.assert_allclose(kp2, kp1)


def test_initial_guess_length_mismatch_raises():
    img = _texture(40, 40)
    with pytest.raises(ValueError):
        optical_flow_single_level(img, img, np.zeros((2, 2)) + 20, np.zeros((3, 2)), False, True)