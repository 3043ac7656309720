import pytest

from openet_pipeline.api_fetcher.units import MM_PER_INCH, inches_to_mm, mm_to_inches


@pytest.mark.unit
@pytest.mark.parametrize("mm", [0.0, 0.1, 25.4, 123.456, 1e6])
def test_round_trip(mm):
    assert abs(inches_to_mm(mm_to_inches(mm)) - mm) < 1e-9 * max(1.0, mm)


@pytest.mark.unit
def test_conversion_factor():
    assert MM_PER_INCH == 25.4
    assert mm_to_inches(25.4) == pytest.approx(1.0)
    assert inches_to_mm(2) == pytest.approx(50.8)


@pytest.mark.unit
def test_none_passes_through():
    assert mm_to_inches(None) is None
    assert inches_to_mm(None) is None
