"""
PharmaGuard Risk Engine
=======================
Deterministic pharmacogenomic rules engine.

Pipeline:
  VariantRecord list → rsID index → per-gene allele burden
  → diplotype / phenotype call → confidence score (GCI)
  → drug-phenotype rule lookup → structured assessment

Supported Genes : CYP2D6, CYP2C9, CYP2C19, SLCO1B1, TPMT, DPYD
Supported Drugs : Codeine, Warfarin, Clopidogrel, Simvastatin, Azathioprine,
                  Fluorouracil, Phenytoin, Amiodarone, Citalopram, Omeprazole

Gene calls use an allele-burden approximation, not star-allele resolution:
every tracked marker contributes 0/1/2 altered alleles and the sum picks the
diplotype bucket. A single missing or uncallable marker makes the whole gene
Indeterminate.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from vcf_parser import HET, HOM_ALT, HOM_REF, KNOWN_GENOTYPES, VariantRecord

logger = logging.getLogger("PharmaGuard.RiskEngine")

# ---------------------------------------------------------------------------
# Constants: phenotype codes
# ---------------------------------------------------------------------------
PM  = "Poor Metabolizer"
IM  = "Intermediate Metabolizer"
NM  = "Normal Metabolizer"
URM = "Ultrarapid Metabolizer"
INDETERMINATE = "Indeterminate"

POOR_FUNCTION      = "Poor Function"
DECREASED_FUNCTION = "Decreased Function"
NORMAL_FUNCTION    = "Normal Function"

# Diplotype buckets
WILD_TYPE        = "*1/*1"
SINGLE_VARIANT   = "Variant/*1"
DOUBLE_VARIANT   = "Variant/Variant"
UNKNOWN_DIPLOTYPE = "Unknown"

# Risk categories
SAFE          = "Safe"
ADJUST_DOSAGE = "Adjust Dosage"
TOXIC         = "Toxic"

# Clearance mechanisms
PRODRUG_ACTIVATION = "Prodrug Activation"
ACTIVE_CLEARANCE   = "Active Clearance"
TRANSPORTER        = "Transporter"
UNKNOWN_MECHANISM  = "Unknown"

# Evidence labels
CPIC_LEVEL_A     = "CPIC Level A"
STANDARD_OF_CARE = "Standard of Care"
NO_CPIC_GUIDELINE = (
    "No CPIC Level A guideline currently available; "
    "interpretation based on pharmacokinetic evidence."
)
NO_EVIDENCE = "None"

INDETERMINATE_SCORE = -1.0

# ---------------------------------------------------------------------------
# Tracked markers per gene
# ---------------------------------------------------------------------------
TRACKED_MARKERS: Dict[str, List[str]] = {
    "CYP2D6":  ["rs3892097", "rs1065852", "rs16947", "rs1135840"],
    "CYP2C9":  ["rs1799853", "rs1057910"],
    "CYP2C19": ["rs4244285", "rs4986893"],
    "SLCO1B1": ["rs4149056", "rs2306283"],
    "TPMT":    ["rs1142345", "rs1800460", "rs1800462"],
    "DPYD":    ["rs3918290", "rs67376798"],
}

# Transporters are described in Function language rather than Metabolizer
TRANSPORTER_GENES = {"SLCO1B1"}

# Altered-allele count contributed by each callable genotype
ALLELE_BURDEN = {HOM_REF: 0, HET: 1, HOM_ALT: 2}

# Burden bucket → (diplotype, enzyme phenotype, transporter phenotype, activity)
BURDEN_CALLS = {
    0: (WILD_TYPE,      NM, NORMAL_FUNCTION,    2.0),
    1: (SINGLE_VARIANT, IM, DECREASED_FUNCTION, 1.0),
    2: (DOUBLE_VARIANT, PM, POOR_FUNCTION,      0.0),
}

# GCI badge thresholds: (lower bound inclusive, tier)
CONFIDENCE_TIERS = [
    (80, "High Confidence"),
    (50, "Medium Confidence"),
    (0,  "Low Confidence"),
]

# ---------------------------------------------------------------------------
# Drug-Phenotype Rules
# Each drug: gene, mechanism, default evidence label and a phenotype → outcome
# table. DEFAULT is the catch-all row (normal function). An outcome may carry
# its own "evidence" to override the drug default.
# ---------------------------------------------------------------------------
DEFAULT = "*"

DRUG_RULES: Dict[str, Dict[str, Any]] = {
    # ── CYP2D6 ──────────────────────────────────────────────────────────────
    "CODEINE": {
        "gene": "CYP2D6",
        "mechanism": PRODRUG_ACTIVATION,
        "evidence": CPIC_LEVEL_A,
        "phenotypes": {
            PM: {"risk": TOXIC, "recommendation": "Avoid codeine explicitly due to lack of efficacy (failure to activate to morphine). Prescribe alternative non-CYP2D6 dependent analgesics."},
            IM: {"risk": ADJUST_DOSAGE, "recommendation": "Reduced prodrug activation results in lower morphine formation and potential reduced analgesic response. Consider alternative opioid not dependent on CYP2D6. Avoid dose escalation without specialist review."},
            URM: {"risk": TOXIC, "recommendation": "Avoid codeine due to potential for life-threatening respiratory depression from rapid morphine accumulation."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Genomic profile indeterminate. Use clinical caution.", "evidence": STANDARD_OF_CARE},
            DEFAULT: {"risk": SAFE, "recommendation": "Safe to use standard dosing."},
        },
    },

    # ── CYP2C9 ──────────────────────────────────────────────────────────────
    "WARFARIN": {
        "gene": "CYP2C9",
        "mechanism": ACTIVE_CLEARANCE,
        "evidence": CPIC_LEVEL_A,
        "phenotypes": {
            PM: {"risk": TOXIC, "recommendation": "Reduce dose 50-75%. High risk of severe bleeding."},
            IM: {"risk": ADJUST_DOSAGE, "recommendation": "Moderate reduction. Monitor INR closely."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Genomic profile indeterminate. Use standard clinical INR protocols.", "evidence": STANDARD_OF_CARE},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing protocol."},
        },
    },
    "PHENYTOIN": {
        "gene": "CYP2C9",
        "mechanism": ACTIVE_CLEARANCE,
        "evidence": CPIC_LEVEL_A,
        "phenotypes": {
            PM: {"risk": TOXIC, "recommendation": "Reduce 50-75% of maintenance dose. TDM required."},
            IM: {"risk": ADJUST_DOSAGE, "recommendation": "Reduce 25-50% of maintenance dose. TDM recommended."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Profile indeterminate. TDM required.", "evidence": STANDARD_OF_CARE},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing."},
        },
    },
    "AMIODARONE": {
        "gene": "CYP2C9",
        "mechanism": ACTIVE_CLEARANCE,
        "evidence": NO_CPIC_GUIDELINE,
        "phenotypes": {
            PM: {"risk": TOXIC, "recommendation": "High risk of amiodarone toxicity. Heavily reduce dosing."},
            IM: {"risk": ADJUST_DOSAGE, "recommendation": "Consider lower maintenance dose."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Profile indeterminate."},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing."},
        },
    },

    # ── CYP2C19 ─────────────────────────────────────────────────────────────
    "CLOPIDOGREL": {
        "gene": "CYP2C19",
        "mechanism": PRODRUG_ACTIVATION,
        "evidence": CPIC_LEVEL_A,
        "phenotypes": {
            PM: {"risk": TOXIC, "recommendation": "Avoid clopidogrel (cannot activate prodrug to active thiol metabolite). Prescribe alternative antiplatelet."},
            IM: {"risk": ADJUST_DOSAGE, "recommendation": "Consider alternative antiplatelet therapy. CYP2C19 activation to active thiol metabolite is significantly reduced."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Profile indeterminate. Proceed with clinical standard of care.", "evidence": STANDARD_OF_CARE},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing."},
        },
    },
    "CITALOPRAM": {
        "gene": "CYP2C19",
        "mechanism": ACTIVE_CLEARANCE,
        "evidence": NO_CPIC_GUIDELINE,
        "phenotypes": {
            PM: {"risk": TOXIC, "recommendation": "Maximum dose 20mg/day to prevent QTc prolongation."},
            URM: {"risk": ADJUST_DOSAGE, "recommendation": "Consider alternative SSRI due to rapid clearance."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Profile indeterminate."},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing."},
        },
    },
    "OMEPRAZOLE": {
        "gene": "CYP2C19",
        "mechanism": ACTIVE_CLEARANCE,
        "evidence": NO_CPIC_GUIDELINE,
        "phenotypes": {
            PM: {"risk": ADJUST_DOSAGE, "recommendation": "Consider lowering dose if treating long-term."},
            URM: {"risk": ADJUST_DOSAGE, "recommendation": "Increase dose by 100-200% or split dose."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Profile indeterminate."},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing."},
        },
    },

    # ── SLCO1B1 ─────────────────────────────────────────────────────────────
    "SIMVASTATIN": {
        "gene": "SLCO1B1",
        "mechanism": TRANSPORTER,
        "evidence": CPIC_LEVEL_A,
        "phenotypes": {
            POOR_FUNCTION: {"risk": ADJUST_DOSAGE, "recommendation": "Dose cap at 20mg daily or prescribe alternative statin (e.g., rosuvastatin) due to myopathy risk."},
            DECREASED_FUNCTION: {"risk": ADJUST_DOSAGE, "recommendation": "Dose cap at 20mg daily or prescribe alternative statin (e.g., rosuvastatin) due to myopathy risk."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Profile indeterminate. Monitor standard statin limits.", "evidence": STANDARD_OF_CARE},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing."},
        },
    },

    # ── TPMT ────────────────────────────────────────────────────────────────
    "AZATHIOPRINE": {
        "gene": "TPMT",
        "mechanism": ACTIVE_CLEARANCE,
        "evidence": CPIC_LEVEL_A,
        "phenotypes": {
            PM: {"risk": TOXIC, "recommendation": "Start at 10% standard dose 3x weekly. High risk of myelosuppression."},
            IM: {"risk": ADJUST_DOSAGE, "recommendation": "30-80% dose reduction based on clinical judgment."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Test enzymatically if proceeding. Profile indeterminate.", "evidence": STANDARD_OF_CARE},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing."},
        },
    },

    # ── DPYD ────────────────────────────────────────────────────────────────
    "FLUOROURACIL": {
        "gene": "DPYD",
        "mechanism": ACTIVE_CLEARANCE,
        "evidence": CPIC_LEVEL_A,
        "phenotypes": {
            PM: {"risk": TOXIC, "recommendation": "Avoid completely due to severe, fatal toxicity risk."},
            IM: {"risk": ADJUST_DOSAGE, "recommendation": "50% dose reduction. Monitor carefully."},
            INDETERMINATE: {"risk": ADJUST_DOSAGE, "recommendation": "Profile indeterminate.", "evidence": STANDARD_OF_CARE},
            DEFAULT: {"risk": SAFE, "recommendation": "Standard dosing."},
        },
    },
}

SUPPORTED_DRUGS = list(DRUG_RULES)
GENE_DRUG_MAP = {drug: rule["gene"] for drug, rule in DRUG_RULES.items()}

# ---------------------------------------------------------------------------
# Data classes for structured output
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class GenePhenotype:
    diplotype: str
    phenotype: str
    activity_score: float


INDETERMINATE_CALL = GenePhenotype(UNKNOWN_DIPLOTYPE, INDETERMINATE, INDETERMINATE_SCORE)


@dataclass(frozen=True)
class PatientProfile:
    genes: Dict[str, GenePhenotype] = field(default_factory=dict)
    confidence_score: int = 0
    resolved_markers: int = 0
    total_markers: int = 0

    @property
    def confidence_tier(self) -> str:
        return confidence_tier(self.confidence_score)


@dataclass(frozen=True)
class DrugRiskAssessment:
    drug: str
    risk: str
    gene: str
    diplotype: str
    phenotype: str
    activity_score: Optional[float]
    recommendation: str
    evidence_strength: str
    mechanism: str

    def to_dict(self) -> Dict[str, Any]:
        """Serialise using the external field names consumed by the dashboards."""
        out: Dict[str, Any] = {
            "drug": self.drug,
            "risk": self.risk,
            "gene": self.gene,
            "diplotype": self.diplotype,
            "phenotype": self.phenotype,
        }
        if self.activity_score is not None:
            out["activityScore"] = self.activity_score
        out["recommendation"] = self.recommendation
        out["evidenceStrength"] = self.evidence_strength
        out["mechanism"] = self.mechanism
        return out


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------

def gci_score(resolved: int, total: int) -> int:
    """Resolved/total as a 0-100 integer, rounding halves up."""
    if total <= 0:
        return 0
    return int(math.floor(100 * resolved / total + 0.5))


def confidence_tier(score: int) -> str:
    """Map a 0-100 GCI score to its display tier."""
    for lower, tier in CONFIDENCE_TIERS:
        if score >= lower:
            return tier
    return CONFIDENCE_TIERS[-1][1]


def index_variants(variants: Iterable[VariantRecord]) -> Dict[str, VariantRecord]:
    """Index records by identifier. Later duplicates replace earlier ones."""
    index: Dict[str, VariantRecord] = {}
    for v in variants:
        if v.id:
            index[v.id] = v
    return index


def _phenotype_for_burden(gene: str, burden: int) -> GenePhenotype:
    diplotype, enzyme_label, transporter_label, activity = BURDEN_CALLS[min(burden, 2)]
    phenotype = transporter_label if gene in TRANSPORTER_GENES else enzyme_label
    return GenePhenotype(diplotype=diplotype, phenotype=phenotype, activity_score=activity)


# ---------------------------------------------------------------------------
# Core functions
# ---------------------------------------------------------------------------

def call_gene(gene: str, markers: List[str],
              variant_index: Dict[str, VariantRecord]) -> Tuple[GenePhenotype, int]:
    """
    Call one gene from its tracked markers.

    Returns the GenePhenotype and the number of markers that resolved to a
    known genotype. Any missing or "Unknown" marker yields the Indeterminate
    call; resolved markers still count towards the global confidence score.
    """
    burden = 0
    resolved = 0
    missing_or_invalid = False

    for rsid in markers:
        v = variant_index.get(rsid)
        gt = v.genotype if v is not None else None
        if gt not in KNOWN_GENOTYPES:
            missing_or_invalid = True
            logger.debug(f"  {gene}: marker {rsid} missing or uncallable")
            continue
        resolved += 1
        burden += ALLELE_BURDEN[gt]

    if missing_or_invalid:
        logger.info(f"  {gene}: {resolved}/{len(markers)} markers resolved, call is {INDETERMINATE}")
        return INDETERMINATE_CALL, resolved

    result = _phenotype_for_burden(gene, burden)
    logger.info(f"  {gene}: burden={burden}, diplotype={result.diplotype}, phenotype={result.phenotype}")
    return result, resolved


def build_profile(variants: Iterable[VariantRecord]) -> PatientProfile:
    """
    Build the per-gene phenotype profile and the Genomic Confidence Index.

    The GCI is global: resolved markers over all tracked markers across every
    gene, scaled to 0-100.
    """
    variant_index = index_variants(variants)
    logger.info(f"Building profile from {len(variant_index)} indexed variants")

    genes: Dict[str, GenePhenotype] = {}
    total = 0
    resolved = 0
    for gene, markers in TRACKED_MARKERS.items():
        genes[gene], gene_resolved = call_gene(gene, markers, variant_index)
        resolved += gene_resolved
        total += len(markers)

    score = gci_score(resolved, total)
    logger.info(f"GCI score = {score} ({resolved}/{total} markers resolved)")

    return PatientProfile(
        genes=genes,
        confidence_score=score,
        resolved_markers=resolved,
        total_markers=total,
    )


def evaluate_drug(drug_name: str, profile: PatientProfile) -> DrugRiskAssessment:
    """
    Assess one drug against the profile.

    Unknown drugs are not an error: they get an "Adjust Dosage" fallback with
    gene "N/A" so the caller always receives a complete record.
    """
    drug = drug_name.strip().upper()
    rule = DRUG_RULES.get(drug)

    if rule is None:
        logger.warning(f"Drug '{drug}' not in rule database, returning fallback assessment")
        return DrugRiskAssessment(
            drug=drug,
            risk=ADJUST_DOSAGE,
            gene="N/A",
            diplotype=UNKNOWN_DIPLOTYPE,
            phenotype=INDETERMINATE,
            activity_score=None,
            recommendation="Drug not analyzed by deterministic engine.",
            evidence_strength=NO_EVIDENCE,
            mechanism=UNKNOWN_MECHANISM,
        )

    gene = rule["gene"]
    call = profile.genes.get(gene, INDETERMINATE_CALL)
    outcomes = rule["phenotypes"]
    outcome = outcomes.get(call.phenotype, outcomes[DEFAULT])

    logger.info(f"  {drug}: gene={gene}, phenotype={call.phenotype}, risk={outcome['risk']}")

    return DrugRiskAssessment(
        drug=drug,
        risk=outcome["risk"],
        gene=gene,
        diplotype=call.diplotype,
        phenotype=call.phenotype,
        activity_score=call.activity_score,
        recommendation=outcome["recommendation"],
        evidence_strength=outcome.get("evidence", rule["evidence"]),
        mechanism=rule["mechanism"],
    )


def evaluate_drugs(drug_names: Iterable[str], profile: PatientProfile) -> List[DrugRiskAssessment]:
    """Evaluate every requested drug, preserving request order."""
    return [evaluate_drug(name, profile) for name in drug_names]
