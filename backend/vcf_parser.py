"""
PharmaGuard VCF Parser
======================
Turns raw VCF text into normalised variant records.

The parser is deliberately forgiving: header/comment lines, blank lines and
truncated rows are skipped rather than reported, because real exports are
full of them. Only the first sample column is read, and its genotype is
collapsed to one of "0/0", "0/1", "1/1" or "Unknown".
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import vcfpy

logger = logging.getLogger("PharmaGuard.VCFParser")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MIN_FIELDS = 8  # CHROM POS ID REF ALT QUAL FILTER INFO

HOM_REF = "0/0"
HET = "0/1"
HOM_ALT = "1/1"
UNKNOWN_GT = "Unknown"

KNOWN_GENOTYPES = (HOM_REF, HET, HOM_ALT)

# Sorted allele indices -> canonical unphased genotype
_GENOTYPE_CALLS = {
    (0, 0): HOM_REF,
    (0, 1): HET,
    (1, 1): HOM_ALT,
}


@dataclass(frozen=True)
class VariantRecord:
    chrom: str
    pos: int
    id: str
    ref: str
    alt: str
    qual: str
    filter: str
    info: Dict[str, str] = field(default_factory=dict)
    format: str = ""
    genotype: str = UNKNOWN_GT


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------

def parse_info_field(info: str) -> Dict[str, str]:
    """Parse a VCF INFO column into key/value pairs.

    Example: GENE=CYP2D6;DB;AF=0.5 -> {"GENE": "CYP2D6", "DB": "true", "AF": "0.5"}
    Every piece without '=' is a flag mapped to the string "true", so a bare
    "." column comes back as {".": "true"}.
    """
    result: Dict[str, str] = {}
    for piece in info.split(";"):
        if "=" in piece:
            key, value = piece.split("=", 1)
            result[key] = value
        else:
            result[piece] = "true"
    return result


def normalise_genotype(sample: Optional[str]) -> str:
    """
    Reduce the first sample column to a canonical genotype.

    Only the GT subfield (before the first ':') is considered. Phased and
    unphased calls are treated alike and "1/0" is folded into "0/1".
    Missing, haploid, multi-allelic or malformed calls become "Unknown".
    """
    if sample is None:
        return UNKNOWN_GT

    gt = sample.split(":", 1)[0]
    try:
        call = vcfpy.Call(sample="", data={"GT": gt})
        alleles, called = call.gt_alleles, call.called
    except ValueError:
        return UNKNOWN_GT

    if not alleles or not called:
        return UNKNOWN_GT

    # "00/1", "+0/1" and friends decode fine but are not real calls
    if "/".join(str(a) for a in alleles) != gt.replace("|", "/"):
        return UNKNOWN_GT

    return _GENOTYPE_CALLS.get(tuple(sorted(alleles)), UNKNOWN_GT)


def _parse_position(pos_str: str) -> Optional[int]:
    if not (pos_str.isascii() and pos_str.isdigit()):
        return None
    return int(pos_str)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_vcf(content: str) -> List[VariantRecord]:
    """
    Parse VCF text into an ordered list of VariantRecord.

    Never raises on malformed input: lines with fewer than eight tab-separated
    fields, or with a non-numeric POS, are dropped. Records keep input order
    and duplicates are not merged.
    """
    variants: List[VariantRecord] = []
    skipped = 0

    for line_num, raw_line in enumerate(content.split("\n"), 1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        fields = line.split("\t")
        if len(fields) < MIN_FIELDS:
            logger.debug(f"Line {line_num}: {len(fields)} fields, expected at least {MIN_FIELDS}, skipped")
            skipped += 1
            continue

        chrom, pos_str, rsid, ref, alt, qual, filt, info = fields[:MIN_FIELDS]
        fmt = fields[8] if len(fields) > 8 else ""
        first_sample = fields[9] if len(fields) > 9 else None

        pos = _parse_position(pos_str)
        if pos is None:
            logger.debug(f"Line {line_num}: invalid position {pos_str!r}, skipped")
            skipped += 1
            continue

        variants.append(VariantRecord(
            chrom=chrom,
            pos=pos,
            id=f"chr{chrom}:{pos}" if rsid == "." else rsid,
            ref=ref,
            alt=alt,
            qual=qual,
            filter=filt,
            info=parse_info_field(info),
            format=fmt,
            genotype=normalise_genotype(first_sample),
        ))

    logger.info(f"Parsed {len(variants)} variant records ({skipped} malformed lines skipped)")
    return variants


def extract_variants(vcf_path) -> List[VariantRecord]:
    """Read a VCF file from disk and parse it."""
    with open(vcf_path, "r", encoding="utf-8") as handle:
        return parse_vcf(handle.read())
