import numpy as np
import pytest
from scipy.fft import fft2, ifft2
from scipy.ndimage import gaussian_filter

from widefield_imaging_scripts.preprocessing.widefield import motion


@pytest.fixture
def image(rng):
    return gaussian_filter(rng.normal(size=(64, 64)), sigma=2) * 100 + 100


def test_compute_reference_is_spectrum_of_median(rng):
    stack = rng.normal(size=(8, 8, 5)).astype(np.float32)

    reference = motion.compute_reference(stack)

    np.testing.assert_allclose(reference, fft2(np.median(stack, axis=-1)), rtol=1e-5, atol=1e-5)


def test_compute_reference_rejects_empty_stack():
    with pytest.raises(ValueError):
        motion.compute_reference(np.zeros((4, 4, 0)))


def test_dft_registration_recovers_known_shift(image):
    moved = np.roll(image, shift=(3, -5), axis=(0, 1))

    shift, registered = motion.dft_registration(fft2(image), fft2(moved), max_shift=10)

    assert shift.tolist() == [-3.0, 5.0]
    np.testing.assert_allclose(np.abs(ifft2(registered)), image, rtol=1e-6)


def test_dft_registration_search_is_bounded(image):
    moved = np.roll(image, shift=(15, 0), axis=(0, 1))

    shift, _ = motion.dft_registration(fft2(image), fft2(moved), max_shift=10)

    assert np.all(np.abs(shift) <= 10)


def test_dft_registration_without_motion_returns_frame_unchanged(image):
    spectrum = fft2(image)

    shift, registered = motion.dft_registration(spectrum, spectrum)

    assert not shift.any()
    assert registered is spectrum


def test_register_stack_corrects_in_place(image):
    offsets = [(0, 0), (2, 1), (-1, -3)]
    stack = np.stack([np.roll(image, o, axis=(0, 1)) for o in offsets], axis=-1).astype(np.float32)
    reference = motion.compute_reference(stack[..., :1])

    shifts = motion.register_stack(stack, reference, max_shift=5)

    assert shifts.shape == (3, 2)
    assert shifts.tolist() == [[0, 0], [-2, -1], [1, 3]]
    for idx in range(3):
        np.testing.assert_allclose(stack[..., idx], image, rtol=1e-4)


def test_register_trial_needs_violet_reference(image):
    stack = image[..., None].astype(np.float32)
    references = motion.build_references(stack, None)

    with pytest.raises(ValueError):
        motion.register_trial(stack.copy(), stack.copy(), references)
