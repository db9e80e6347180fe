"""
API tests for the upload boundary using FastAPI's TestClient.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from conftest import all_markers, build_vcf
from main import app, parse_drug_list
from risk_engine import SUPPORTED_DRUGS


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def upload(client, content, drugs="CODEINE", filename="patient.vcf"):
    if isinstance(content, str):
        content = content.encode("utf-8")
    return client.post(
        "/api/analyze",
        files={"vcf": (filename, content, "text/plain")},
        data={"drugs": drugs},
    )


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_supported_drugs(self, client):
        body = client.get("/api/supported-drugs").json()

        assert "CODEINE" in body["drugs"]
        assert body["gene_drug_map"]["SIMVASTATIN"] == "SLCO1B1"


class TestAnalyze:

    def test_codeine_wild_type(self, client, wild_type_vcf):
        response = upload(client, wild_type_vcf)

        assert response.status_code == 200
        (report,) = response.json()["results"]
        assert report["drug"] == "CODEINE"
        assert report["risk_assessment"]["risk_label"] == "Safe"
        assert report["pharmacogenomic_profile"]["primary_gene"] == "CYP2D6"
        assert report["pharmacogenomic_profile"]["diplotype"] == "*1/*1"
        assert report["pharmacogenomic_profile"]["phenotype"] == "Normal Metabolizer"
        assert len(report["pharmacogenomic_profile"]["detected_variants"]) == 4
        assert report["clinical_recommendation"]["mechanism"] == "Prodrug Activation"
        assert report["clinical_recommendation"]["evidence_strength"] == "CPIC Level A"
        assert report["quality_metrics"]["gci_score"] == 100
        assert report["quality_metrics"]["confidence_tier"] == "High Confidence"
        assert report["quality_metrics"]["variants_analyzed"] == 15

    def test_multiple_drugs_in_request_order(self, client):
        genotypes = all_markers("0/0")
        genotypes["rs1142345"] = "1/1"

        response = upload(client, build_vcf(genotypes), drugs="azathioprine, aspirin,WARFARIN")

        results = response.json()["results"]
        assert [r["drug"] for r in results] == ["AZATHIOPRINE", "ASPIRIN", "WARFARIN"]
        assert results[0]["risk_assessment"]["risk_label"] == "Toxic"
        assert results[1]["pharmacogenomic_profile"]["primary_gene"] == "N/A"
        assert results[1]["pharmacogenomic_profile"]["detected_variants"] == []
        assert len({r["patient_id"] for r in results}) == 1

    def test_one_timestamp_per_request(self, client, wild_type_vcf):
        response = upload(client, wild_type_vcf, drugs=",".join(SUPPORTED_DRUGS))

        results = response.json()["results"]
        assert len(results) == len(SUPPORTED_DRUGS)
        assert len({r["timestamp"] for r in results}) == 1
        assert datetime.fromisoformat(results[0]["timestamp"]).tzinfo is not None

    def test_file_without_records(self, client):
        response = upload(client, "##fileformat=VCFv4.2\n")

        report = response.json()["results"][0]
        assert report["quality_metrics"]["gci_score"] == 0
        assert report["quality_metrics"]["vcf_parsing_success"] is False
        assert report["pharmacogenomic_profile"]["phenotype"] == "Indeterminate"


class TestUploadValidation:

    def test_wrong_extension(self, client, wild_type_vcf):
        response = upload(client, wild_type_vcf, filename="patient.txt")

        assert response.status_code == 400

    def test_extension_is_case_insensitive(self, client, wild_type_vcf):
        assert upload(client, wild_type_vcf, filename="PATIENT.VCF").status_code == 200

    def test_empty_file(self, client):
        assert upload(client, b"").status_code == 400

    def test_not_utf8(self, client):
        assert upload(client, b"\xff\xfe\x00bad").status_code == 400

    def test_too_large(self, client, wild_type_vcf):
        app.dependency_overrides[get_settings] = lambda: Settings(
            max_upload_bytes=64, log_level="INFO", cors_origins=("*",)
        )

        response = upload(client, wild_type_vcf)

        assert response.status_code == 413

    def test_blank_drug_list(self, client, wild_type_vcf):
        assert upload(client, wild_type_vcf, drugs=" , ").status_code == 400


class TestParseDrugList:

    def test_split_and_uppercase(self):
        assert parse_drug_list("codeine, Warfarin ,,") == ["CODEINE", "WARFARIN"]
