"""Test that the project setup is working correctly."""

import market_signals


def test_version() -> None:
    """Test that version is defined."""
    assert market_signals.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from market_signals import alerter
    from market_signals import comparables
    from market_signals import detector
    from market_signals import ingestion
    from market_signals import mapper
    from market_signals import snapshots
    from market_signals import storage

    # Just verify imports work
    assert alerter is not None
    assert comparables is not None
    assert detector is not None
    assert ingestion is not None
    assert mapper is not None
    assert snapshots is not None
    assert storage is not None
