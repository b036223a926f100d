import pytest

from to_reads.config.cache import Cache
from to_reads.config.core import Core
from to_reads.config.view import View


def test_bad_env_number_names_the_setting(monkeypatch):
    monkeypatch.setenv("TO_READS_OVERSCAN", "abc")

    with pytest.raises(ValueError, match="OVERSCAN"):
        View()


def test_bad_toml_numbers_name_the_setting():
    with pytest.raises(ValueError, match="GC_SECONDS"):
        Cache({"to_reads": {"cache": {"gc_seconds": "soon"}}})
    with pytest.raises(ValueError, match="PAGE_SIZE"):
        Core({"to_reads": {"api": {"page_size": "twenty"}}})


def test_toml_values_override_env(monkeypatch):
    monkeypatch.setenv("TO_READS_OVERSCAN", "9")

    view = View({"to_reads": {"view": {"overscan": 3, "row_height": "80"}}})

    assert view.OVERSCAN == 3
    assert view.ROW_HEIGHT == 80.0
