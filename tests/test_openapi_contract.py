import json
from pathlib import Path

from stockledger.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_write_endpoints_document_conflicts():
    paths = app.openapi()["paths"]
    for path, method in (
        ("/inventory/movements", "post"),
        ("/reservations", "post"),
        ("/reservations/{reservation_id}/consume", "post"),
        ("/transfers/{transfer_id}/complete", "post"),
    ):
        assert "409" in paths[path][method]["responses"], path
