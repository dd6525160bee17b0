"""Tests for API endpoints."""

import pytest
import yaml
from fastapi.testclient import TestClient

from conftest import PDF_BASE64, PDF_DATA, FakeCupsConnection, FakeIppPrinter
from print_dispatch.api.server import create_app
from print_dispatch.backends import BackendRegistry
from print_dispatch.backends import ipp
from print_dispatch.backends.network import NetworkPrinterAdapter
from print_dispatch.backends.spooler import SpoolerAdapter
from print_dispatch.mapping import MappingResolver, NetworkTray, SpoolerPrinter

MAPPINGS = [
    {"name": "invoice", "tray": "tray-1"},
    {"name": "envelope", "tray": "auto"},
    {"name": "receipt", "printer": "Brother_MFC"},
]


def build_client(printer=None, cups=None, config_path=None, tmp_path=None) -> TestClient:
    """Create an app wired to a simulated IPP printer and, optionally, a fake CUPS."""
    registry = BackendRegistry()
    if printer is not None:
        registry.register(
            NetworkTray,
            NetworkPrinterAdapter({"printer_ip": "10.0.0.43"}, transport=printer.transport),
        )
    if cups is not None:
        registry.register(
            SpoolerPrinter,
            SpoolerAdapter(
                {"temp_dir": str(tmp_path), "cleanup_delay_sec": 0.01},
                connection_factory=lambda: cups,
            ),
        )

    resolver = MappingResolver()
    resolver.load(MAPPINGS)
    app = create_app(registry, resolver, config_path=config_path, debug=True)
    return TestClient(app)


@pytest.fixture
def printer():
    return FakeIppPrinter()


@pytest.fixture
def client(printer, tmp_path):
    with build_client(printer=printer, cups=FakeCupsConnection(), tmp_path=tmp_path) as client:
        yield client


class TestPrintEndpoint:
    def test_print_by_doc_type(self, client, printer):
        response = client.post("/print", json={"docType": "invoice", "base64": PDF_BASE64})

        assert response.status_code == 200
        assert response.json() == {"success": True, "jobId": "42"}
        request = printer.last_request
        assert request.data == PDF_DATA
        assert request.find(ipp.TAG_JOB_ATTRIBUTES, "media").values == ["tray-1"]

    def test_auto_tray_sends_no_media(self, client, printer):
        response = client.post("/print", json={"docType": "envelope", "base64": PDF_BASE64})

        assert response.status_code == 200
        assert printer.last_request.group(ipp.TAG_JOB_ATTRIBUTES) is None

    def test_data_url_prefix_accepted(self, client, printer):
        response = client.post(
            "/print",
            json={"docType": "invoice", "base64": f"data:application/pdf;base64,{PDF_BASE64}"},
        )

        assert response.status_code == 200
        assert printer.last_request.data == PDF_DATA

    def test_print_by_printer_name(self, client):
        response = client.post("/print", json={"printerName": "Office_Laser", "base64": PDF_BASE64})

        assert response.status_code == 200
        assert response.json() == {"success": True, "jobId": "17"}

    def test_mapping_to_spooler_printer(self, client):
        response = client.post("/print", json={"docType": "receipt", "base64": PDF_BASE64})

        assert response.status_code == 200
        assert response.json()["jobId"] == "17"

    def test_printer_rejection_is_500(self, tmp_path):
        printer = FakeIppPrinter(status="client-error-not-possible")
        with build_client(printer=printer) as client:
            response = client.post("/print", json={"docType": "invoice", "base64": PDF_BASE64})

        assert response.status_code == 500
        assert response.json() == {"error": "client-error-not-possible"}

    def test_unknown_spooler_printer_is_500(self, client):
        response = client.post("/print", json={"printerName": "No_Such_Printer", "base64": PDF_BASE64})

        assert response.status_code == 500
        assert "client-error-not-found" in response.json()["error"]

    def test_printer_name_without_spooler_is_500(self, printer):
        with build_client(printer=printer) as client:
            response = client.post("/print", json={"printerName": "Office_Laser", "base64": PDF_BASE64})

        assert response.status_code == 500
        assert "error" in response.json()

    def test_unknown_doc_type_is_404(self, client, printer):
        response = client.post("/print", json={"docType": "unknown-id", "base64": PDF_BASE64})

        assert response.status_code == 404
        assert response.json() == {"error": "No mapping for unknown-id"}
        assert printer.requests == []

    def test_missing_doc_type(self, client):
        response = client.post("/print", json={"base64": PDF_BASE64})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing Data"}

    def test_missing_base64(self, client):
        response = client.post("/print", json={"docType": "invoice"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing Data"}

    def test_empty_base64(self, client):
        response = client.post("/print", json={"docType": "invoice", "base64": ""})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing Data"}

    def test_non_json_body(self, client):
        response = client.post(
            "/print", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Missing Data"}

    def test_invalid_base64(self, client, printer):
        response = client.post("/print", json={"docType": "invoice", "base64": "%%%not-base64%%%"})

        assert response.status_code == 400
        assert "base64" in response.json()["error"]
        assert printer.requests == []


class TestStatusEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_status(self, client):
        response = client.get("/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "online"
        assert data["printer"] == "10.0.0.43"
        assert data["mappings"] == 3
        assert set(data["backends"]) == {"network", "spooler"}


class TestAdminEndpoints:
    def test_trays(self, client):
        response = client.get("/trays")

        assert response.json() == {"success": True, "trays": ["tray-1", "tray-2", "manual"]}

    def test_trays_printer_down(self):
        printer = FakeIppPrinter(status="server-error-busy")
        with build_client(printer=printer) as client:
            response = client.get("/trays")

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_printers(self, client):
        response = client.get("/printers")

        assert response.json() == {"success": True, "printers": ["Office_Laser", "Brother_MFC"]}

    def test_printers_without_spooler(self, printer):
        with build_client(printer=printer) as client:
            response = client.get("/printers")

        assert response.json()["success"] is False

    def test_list_mappings(self, client):
        response = client.get("/mappings")

        data = response.json()
        assert data["mappings"] == MAPPINGS
        assert data["printerIp"] == "10.0.0.43"
        assert data["apiUrl"].endswith("/print")

    def test_replace_mappings_applies_to_next_request(self, client, printer):
        response = client.put(
            "/mappings",
            json={"mappings": [{"name": "label", "tray": "manual"}]},
        )
        assert response.status_code == 200
        assert response.json() == {"success": True, "mappings": 1, "printerIp": "10.0.0.43"}

        assert client.post("/print", json={"docType": "label", "base64": PDF_BASE64}).status_code == 200
        assert printer.last_request.find(ipp.TAG_JOB_ATTRIBUTES, "media").values == ["manual"]
        assert client.post("/print", json={"docType": "invoice", "base64": PDF_BASE64}).status_code == 404

    def test_invalid_mapping_rejected(self, client):
        response = client.put(
            "/mappings",
            json={"mappings": [{"name": "bad", "tray": "tray-1", "printer": "Office_Laser"}]},
        )

        assert response.status_code == 400
        # Existing set untouched
        assert len(client.get("/mappings").json()["mappings"]) == 3

    def test_replace_mappings_saved_to_config(self, printer, tmp_path):
        config_file = tmp_path / "local.yaml"
        config_file.write_text(yaml.safe_dump({
            "server": {"port": 4000},
            "network": {"printer_ip": "10.0.0.43"},
            "mappings": MAPPINGS,
        }))

        with build_client(printer=printer, config_path=str(config_file)) as client:
            response = client.put(
                "/mappings",
                json={
                    "mappings": [{"name": "receipt", "printer": "Office_Laser"}],
                    "printerIp": "10.0.0.99",
                },
            )
            assert response.status_code == 200
            assert client.get("/mappings").json()["printerIp"] == "10.0.0.99"

        saved = yaml.safe_load(config_file.read_text())
        assert saved["mappings"] == [{"name": "receipt", "printer": "Office_Laser"}]
        assert saved["network"]["printer_ip"] == "10.0.0.99"
        assert saved["server"] == {"port": 4000}

    def test_printer_ip_without_network_backend_rejected(self, tmp_path):
        """A printer IP that cannot be applied is neither applied nor saved."""
        config_file = tmp_path / "local.yaml"
        config_file.write_text(yaml.safe_dump({"mappings": MAPPINGS}))

        with build_client(cups=FakeCupsConnection(), config_path=str(config_file), tmp_path=tmp_path) as client:
            response = client.put(
                "/mappings",
                json={
                    "mappings": [{"name": "receipt", "printer": "Office_Laser"}],
                    "printerIp": "10.0.0.99",
                },
            )

            assert response.status_code == 400
            assert response.json() == {"error": "No network printer configured"}
            assert client.get("/mappings").json()["mappings"] == MAPPINGS

        saved = yaml.safe_load(config_file.read_text())
        assert saved == {"mappings": MAPPINGS}

    def test_shipped_default_config_not_modified(self, printer, tmp_path):
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        default_file = config_dir / "default.yaml"
        default_file.write_text(yaml.safe_dump({
            "network": {"printer_ip": "10.0.0.43"},
            "mappings": MAPPINGS,
        }))
        original = default_file.read_text()

        with build_client(printer=printer, config_path=str(default_file)) as client:
            response = client.put("/mappings", json={"mappings": [{"name": "label", "tray": "manual"}]})
            assert response.status_code == 200

        assert default_file.read_text() == original
        local = yaml.safe_load((config_dir / "local.yaml").read_text())
        assert local["mappings"] == [{"name": "label", "tray": "manual"}]
        assert local["network"]["printer_ip"] == "10.0.0.43"
