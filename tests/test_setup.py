"""Test that the project setup is working correctly."""

import safe_ledger


def test_version() -> None:
    """Test that version is defined."""
    assert safe_ledger.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from safe_ledger import chains, config, identity, ingestor, storage, sync, views

    assert chains is not None
    assert config is not None
    assert identity is not None
    assert ingestor is not None
    assert storage is not None
    assert sync is not None
    assert views is not None
