"""
Unit tests for package metadata and module docs
"""

import re
from pathlib import Path

from tile_proxy import fetcher, synth


PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def test_python_floor_supports_slotted_dataclasses():
    """Test requires-python is at least 3.10, needed by dataclass(slots=True)"""
    m = re.search(r'^requires-python\s*=\s*">=\s*(\d+)\.(\d+)"', PYPROJECT.read_text(), re.M)
    assert m is not None
    assert (int(m.group(1)), int(m.group(2))) >= (3, 10)


def test_module_docstrings_are_set():
    """Test module docs sit above the __future__ import so __doc__ is populated"""
    assert fetcher.__doc__ and "fetcher" in fetcher.__doc__
    assert synth.__doc__ and "synthesis" in synth.__doc__
