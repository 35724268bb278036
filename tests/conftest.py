"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image


RED = (255, 0, 0)


def solid_image(width: int, height: int, rgb=RED) -> np.ndarray:
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[...] = rgb
    return img


def gradient_image(width: int, height: int) -> np.ndarray:
    xs = np.linspace(0, 255, width, dtype=np.float64)
    ys = np.linspace(0, 255, height, dtype=np.float64)
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[..., 0] = xs[None, :].astype(np.uint8)
    img[..., 1] = ys[:, None].astype(np.uint8)
    img[..., 2] = 128
    return img


@pytest.fixture
def red_png(tmp_path) -> Path:
    path = tmp_path / "red.png"
    Image.fromarray(solid_image(4, 2)).save(path)
    return path


@pytest.fixture
def pixel_png(tmp_path) -> Path:
    path = tmp_path / "pixel.png"
    Image.fromarray(solid_image(1, 1, (10, 200, 30))).save(path)
    return path


@pytest.fixture
def halves_png(tmp_path) -> Path:
    """Left half black, right half white, 40x20."""
    img = solid_image(40, 20, (0, 0, 0))
    img[:, 20:] = 255
    path = tmp_path / "halves.png"
    Image.fromarray(img).save(path)
    return path


def red_blue_image(width: int = 20, height: int = 10) -> np.ndarray:
    """Left half red, right half blue."""
    img = solid_image(width, height, RED)
    img[:, width // 2 :] = (0, 0, 255)
    return img


@pytest.fixture
def red_blue_png(tmp_path) -> Path:
    path = tmp_path / "red_blue.png"
    Image.fromarray(red_blue_image()).save(path)
    return path
