"""
PharmaGuard Backend: FastAPI application
Accepts a VCF upload plus a drug list and returns one risk report per drug.
Uploads are processed in memory and never written to disk.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, get_settings
from risk_engine import (
    GENE_DRUG_MAP,
    SUPPORTED_DRUGS,
    TRACKED_MARKERS,
    DrugRiskAssessment,
    PatientProfile,
    build_profile,
    evaluate_drugs,
    index_variants,
)
from vcf_parser import VariantRecord, parse_vcf

SERVICE_NAME = "PharmaGuard API"
VERSION = "1.0.0"

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("PharmaGuard.API")

app = FastAPI(
    title=SERVICE_NAME,
    description="Deterministic pharmacogenomic risk assessment from VCF uploads",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": SERVICE_NAME, "version": VERSION}


@app.get("/api/supported-drugs")
async def get_supported_drugs():
    """Return the drugs covered by the rules engine and their genes."""
    return {"drugs": SUPPORTED_DRUGS, "gene_drug_map": GENE_DRUG_MAP}


def parse_drug_list(drugs: str) -> List[str]:
    """Split the comma-separated form value, dropping blanks."""
    return [d.strip().upper() for d in drugs.split(",") if d.strip()]


def _validate_upload(filename: str, content: bytes, settings: Settings) -> str:
    if not filename.lower().endswith(settings.allowed_extensions):
        raise HTTPException(status_code=400,
                            detail="Invalid file type. Please upload a .vcf file.")
    if not content:
        raise HTTPException(status_code=400,
                            detail="Uploaded file is empty")
    if len(content) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise HTTPException(status_code=413,
                            detail=f"File too large (max {limit_mb}MB)")
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400,
                            detail="File must be UTF-8 encoded")


@app.post("/api/analyze")
async def analyze(
    vcf: UploadFile = File(...),
    drugs: str = Form(...),
    settings: Settings = Depends(get_settings),
):
    """
    Master analysis endpoint.
    VCF file + comma-separated drug names → list of per-drug risk reports.
    """
    drug_list = parse_drug_list(drugs)
    if not drug_list:
        raise HTTPException(status_code=400,
                            detail="At least one drug must be requested")

    content = await vcf.read()
    text = _validate_upload(vcf.filename or "", content, settings)

    variants = parse_vcf(text)
    profile = build_profile(variants)
    assessments = evaluate_drugs(drug_list, profile)

    logger.info(f"Analysed {len(variants)} variants for {len(drug_list)} drugs (GCI {profile.confidence_score})")

    patient_id = f"PATIENT_{uuid.uuid4().hex[:6].upper()}"
    timestamp = datetime.now(timezone.utc).isoformat()
    variant_index = index_variants(variants)
    return {
        "results": [
            _build_response(patient_id, timestamp, a, profile, variant_index, len(variants))
            for a in assessments
        ]
    }


def _detected_markers(gene: str, variant_index: Dict[str, VariantRecord]) -> List[Dict[str, str]]:
    return [
        {"rsid": rsid, "genotype": variant_index[rsid].genotype}
        for rsid in TRACKED_MARKERS.get(gene, [])
        if rsid in variant_index
    ]


def _build_response(
    patient_id: str,
    timestamp: str,
    assessment: DrugRiskAssessment,
    profile: PatientProfile,
    variant_index: Dict[str, VariantRecord],
    variants_analyzed: int,
) -> dict:
    """Build the per-drug JSON report."""
    return {
        "patient_id": patient_id,
        "drug": assessment.drug,
        "timestamp": timestamp,
        "risk_assessment": {
            "risk_label": assessment.risk,
            "confidence_score": profile.confidence_score,
        },
        "pharmacogenomic_profile": {
            "primary_gene": assessment.gene,
            "diplotype": assessment.diplotype,
            "phenotype": assessment.phenotype,
            "activity_score": assessment.activity_score,
            "detected_variants": _detected_markers(assessment.gene, variant_index),
        },
        "clinical_recommendation": {
            "action": assessment.recommendation,
            "mechanism": assessment.mechanism,
            "evidence_strength": assessment.evidence_strength,
        },
        "quality_metrics": {
            "gci_score": profile.confidence_score,
            "confidence_tier": profile.confidence_tier,
            "variants_analyzed": variants_analyzed,
            "vcf_parsing_success": variants_analyzed > 0,
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000)
