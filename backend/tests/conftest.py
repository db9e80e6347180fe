"""
Shared fixtures for the PharmaGuard test suite.
"""

import pytest

from risk_engine import TRACKED_MARKERS

VCF_HEADER = (
    "##fileformat=VCFv4.2\n"
    "##source=PharmaGuardTest\n"
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tSAMPLE1\n"
)


def vcf_line(rsid, genotype, chrom="1", pos=1000, info="GENE=TEST"):
    return f"{chrom}\t{pos}\t{rsid}\tA\tG\t99\tPASS\t{info}\tGT:DP\t{genotype}:30\n"


def build_vcf(genotypes):
    """Build VCF text from an {rsid: genotype} mapping, one line per marker."""
    body = "".join(
        vcf_line(rsid, gt, pos=1000 + i) for i, (rsid, gt) in enumerate(genotypes.items())
    )
    return VCF_HEADER + body


def all_markers(genotype="0/0"):
    return {rsid: genotype for markers in TRACKED_MARKERS.values() for rsid in markers}


@pytest.fixture
def wild_type_vcf():
    """Every tracked marker homozygous reference."""
    return build_vcf(all_markers("0/0"))
