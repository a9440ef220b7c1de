"""Test that the project setup is working correctly."""

import polymarket_copy_trader


def test_version() -> None:
    """Test that version is defined."""
    assert polymarket_copy_trader.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from polymarket_copy_trader import detector
    from polymarket_copy_trader import executor
    from polymarket_copy_trader import ingestor
    from polymarket_copy_trader import pipeline
    from polymarket_copy_trader import storage

    # Just verify imports work
    assert ingestor is not None
    assert detector is not None
    assert executor is not None
    assert storage is not None
    assert pipeline is not None
