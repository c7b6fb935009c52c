"""
Unit Tests for the Edge Detector

Tests grayscale conversion, blur, Sobel magnitude and resolution capping.
"""

import numpy as np
import pytest

from image_processing.edge_detection import EdgeDetector, box_blur, sobel_magnitude
from image_processing.types import GrayscaleBuffer, RasterImage
from image_processing.utils import to_grayscale


class TestGrayscale:

    def test_to_grayscale_when_pure_colors_then_uses_luminance_weights(self):
        pixels = np.zeros((1, 3, 3), dtype=np.uint8)
        pixels[0, 0] = (255, 0, 0)
        pixels[0, 1] = (0, 255, 0)
        pixels[0, 2] = (0, 0, 255)
        gray = to_grayscale(RasterImage(pixels))
        assert gray.luminance[0].tolist() == pytest.approx([0.299 * 255, 0.587 * 255, 0.114 * 255], rel=1e-5)

    def test_to_grayscale_when_buffer_given_then_returned_unchanged(self):
        buffer = GrayscaleBuffer(2, 2, np.zeros((2, 2), dtype=np.float32))
        assert to_grayscale(buffer) is buffer


class TestFilters:

    def test_box_blur_when_radius_zero_then_copy(self):
        gray = np.arange(16, dtype=np.float32).reshape(4, 4)
        blurred = box_blur(gray, 0)
        assert np.array_equal(blurred, gray)
        assert blurred is not gray

    def test_box_blur_when_uniform_then_unchanged(self):
        gray = np.full((10, 10), 128.0, dtype=np.float32)
        assert np.allclose(box_blur(gray, 2), 128.0)

    def test_sobel_when_uniform_then_zero(self):
        assert not sobel_magnitude(np.full((20, 20), 200.0, dtype=np.float32)).any()

    def test_sobel_when_vertical_step_then_border_zero_and_edge_strong(self):
        gray = np.zeros((10, 10), dtype=np.float32)
        gray[:, 5:] = 255.0
        magnitude = sobel_magnitude(gray)
        assert not magnitude[0, :].any()
        assert not magnitude[:, -1].any()
        assert magnitude[5, 4] == pytest.approx(4 * 255.0)
        assert magnitude[5, 2] == 0

    def test_sobel_when_too_small_then_zeros(self):
        assert sobel_magnitude(np.ones((2, 5), dtype=np.float32)).shape == (2, 5)


class TestEdgeDetector:

    def test_init_when_negative_blur_then_raises(self):
        with pytest.raises(ValueError):
            EdgeDetector(blur_radius=-1)

    def test_detect_edges_when_white_image_then_zero_field(self, white_image):
        field = EdgeDetector().detect_edges(white_image)
        assert field.max_magnitude == 0
        assert field.is_empty

    def test_detect_edges_when_square_then_peaks_on_square_edges(self, square_image):
        field = EdgeDetector().detect_edges(square_image)
        assert field.scale == 1.0
        assert (field.width, field.height) == (100, 100)
        row = field.magnitude[50]
        assert row[29] > 0 and row[30] > 0 and row[69] > 0 and row[70] > 0
        assert row[50] == 0
        assert row[10] == 0

    def test_detect_edges_when_large_image_then_capped(self):
        image = RasterImage(np.full((300, 1280, 3), 255, dtype=np.uint8))
        field = EdgeDetector(max_side=640).detect_edges(image)
        assert (field.width, field.height) == (640, 150)
        assert field.scale == pytest.approx(0.5)

    def test_detect_edges_when_zero_area_then_empty(self):
        image = RasterImage(np.zeros((0, 0, 4), dtype=np.uint8))
        field = EdgeDetector().detect_edges(image)
        assert field.is_empty
        assert field.max_magnitude == 0
