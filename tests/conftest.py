import json

import pytest

import accuracy_heatmap


@pytest.fixture
def write_export(tmp_path):
    """Writes a document to a temporary export file and returns its path."""
    def _write(document, name="Records.json"):
        path = tmp_path / name
        if isinstance(document, (dict, list)):
            path.write_text(json.dumps(document), encoding="utf-8")
        else:
            path.write_text(document, encoding="utf-8")
        return path
    return _write


@pytest.fixture
def run_config(tmp_path):
    config = dict(accuracy_heatmap.CONFIG)
    config.update({
        "JSON_INPUT_FILE": str(tmp_path / "Records.json"),
        "HTML_OUTPUT_FILE": str(tmp_path / "heatmap.html"),
        "AUTO_OPEN_IN_BROWSER": False,
    })
    return config
