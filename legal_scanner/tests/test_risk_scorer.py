"""Tests for the compliance risk scoring engine."""

import pytest

from legal_scanner.analyzers.base import ControlFlagFinding, FileFindings, LicenseFinding
from legal_scanner.scan.merge import merge_results
from legal_scanner.scoring.risk_scorer import (
    RiskLevel,
    RiskScorer,
    RiskWeightRule,
    match_license_pattern,
)


def _license(path: str, name: str, spdx: str = "X", confidence=1.0) -> FileFindings:
    return FileFindings(path, licenses=[LicenseFinding(name, spdx, confidence)])


def _flags(path: str, *severities) -> FileFindings:
    return FileFindings(path, control_flags=[
        ControlFlagFinding(content="crypto", severity=severity, source="semgrep")
        for severity in severities
    ])


def _factor(assessment, category):
    matches = [f for f in assessment.factors if f.category == category]
    assert len(matches) == 1, f"expected one {category} factor, got {assessment.factors}"
    return matches[0]


class TestPatternMatching:

    @pytest.mark.parametrize("pattern,name,expected", [
        ("MIT", "MIT", True),
        ("MIT", "MIT-0", False),
        ("GPL%", "GPL-2.0-only", True),
        ("GPL%", "LGPL-2.1", False),
        ("%possibility", "GPL-possibility", True),
        ("%possibility", "possibility-of-GPL", False),
        ("%Proprietary%", "Some-Proprietary-Terms", True),
        ("%Proprietary%", "Proprietary", True),
        ("CC%4.0", "CC-BY-SA-4.0", True),
        ("CC%4.0", "CC-BY-SA-3.0", False),
        ("ab%ba", "aba", False),
    ])
    def test_match_license_pattern(self, pattern, name, expected):
        assert match_license_pattern(pattern, name) is expected

    def test_first_matching_rule_wins(self):
        scorer = RiskScorer([
            RiskWeightRule("GPL-3.0%", 20),
            RiskWeightRule("GPL%", 5),
        ])
        assert scorer.license_weight("GPL-3.0-only") == 20
        assert scorer.license_weight("GPL-2.0-only") == 5
        assert scorer.license_weight("MIT") == 0


class TestScenarios:

    def test_copyleft_plus_critical_flag(self, scorer):
        merged = merge_results(
            [_license("a.rs", "GPL-3.0-only", "GPL-3.0-only", 0.9)],
            [_flags("a.rs", "critical")],
        )

        assessment = scorer.score(merged)

        assert assessment.score == 30
        assert assessment.level == RiskLevel.MEDIUM
        assert _factor(assessment, "copyleft_license").severity == "high"
        assert _factor(assessment, "ecc_critical_high").severity == "critical"

    def test_heavier_copyleft_weight_raises_score(self):
        scorer = RiskScorer([RiskWeightRule("GPL-3.0%", 20)])
        merged = merge_results(
            [_license("a.rs", "GPL-3.0-only", "GPL-3.0-only", 0.9)],
            [_flags("a.rs", "critical")],
        )

        assessment = scorer.score(merged)

        assert assessment.score == 40
        assert assessment.level == RiskLevel.MEDIUM

    def test_single_very_low_confidence_scores_15(self, scorer):
        assessment = scorer.score([_license("a.py", "MIT", "MIT", 0.3)])

        assert assessment.score == 15
        assert assessment.level == RiskLevel.LOW
        factor = _factor(assessment, "low_confidence")
        assert factor.severity == "high"
        assert factor.details == ["MIT (30% confidence)"]

    def test_sixteen_distinct_licenses_score_10(self, scorer):
        findings = [_license(f"f{i}.c", f"Permissive-{i}", f"Permissive-{i}") for i in range(16)]

        assessment = scorer.score(findings)

        assert assessment.score == 10
        assert assessment.level == RiskLevel.LOW
        factor = _factor(assessment, "license_diversity")
        assert factor.affected_count == 16
        assert len(factor.details) == 10

    def test_no_findings_scores_zero(self, scorer):
        assessment = scorer.score([])

        assert assessment.score == 0
        assert assessment.level == RiskLevel.LOW
        assert assessment.factors == []


class TestLicenseCategories:

    def test_copyleft_counted_once_per_distinct_name(self, scorer):
        findings = [_license(f"src/{i}.c", "GPL-2.0-only") for i in range(3)]

        assessment = scorer.score(findings)

        factor = _factor(assessment, "copyleft_license")
        assert assessment.score == 10
        assert factor.affected_count == 3
        assert factor.details == ["GPL-2.0-only (3 files)"]

    def test_unknown_license(self, scorer):
        findings = [_license("a", "No_license_found"), _license("b", "UnknownLicense")]

        assessment = scorer.score(findings)

        factor = _factor(assessment, "unknown_license")
        assert assessment.score == 16
        assert factor.severity == "medium"
        assert factor.affected_count == 2

    def test_copyleft_takes_precedence_over_unknown(self):
        scorer = RiskScorer([RiskWeightRule("%", 7)])

        assessment = scorer.score([_license("a", "GPL-Unknown")])

        assert [f.category for f in assessment.factors] == ["copyleft_license"]
        assert assessment.score == 7

    def test_zero_weight_license_contributes_nothing(self):
        scorer = RiskScorer([RiskWeightRule("LGPL%", 0)])

        assessment = scorer.score([_license("a", "LGPL-2.1-only")])

        assert assessment.score == 0
        assert assessment.factors == []


class TestMissingSpdx:

    def test_two_points_per_affected_file(self, scorer):
        findings = [
            FileFindings("a", licenses=[LicenseFinding("Custom", None, 1.0), LicenseFinding("Other", None, 1.0)]),
            FileFindings("b", licenses=[LicenseFinding("Custom", None, 1.0)]),
            FileFindings("c", licenses=[LicenseFinding("MIT", "MIT", 1.0)]),
        ]

        assessment = scorer.score(findings)

        factor = _factor(assessment, "missing_spdx_id")
        assert assessment.score == 4
        assert factor.affected_count == 2
        assert factor.details == ["Custom (2 findings)", "Other (1 findings)"]


class TestConfidence:

    def test_mixed_buckets(self, scorer):
        findings = [_license("a", "MIT", "MIT", 0.3), _license("b", "ISC", "ISC", 0.6)]

        assessment = scorer.score(findings)

        factor = _factor(assessment, "low_confidence")
        assert assessment.score == 23
        assert factor.severity == "high"
        assert factor.affected_count == 2

    def test_only_moderate_confidence_is_medium(self, scorer):
        assessment = scorer.score([_license("a", "MIT", "MIT", 0.65)])

        assert assessment.score == 8
        assert _factor(assessment, "low_confidence").severity == "medium"

    def test_boundaries(self, scorer):
        assert scorer.score([_license("a", "MIT", "MIT", 0.5)]).score == 8
        assert scorer.score([_license("a", "MIT", "MIT", 0.7)]).score == 0

    @pytest.mark.parametrize("confidence", [None, "abc", float("nan"), 1.5, -0.2, True])
    def test_malformed_confidence_ignored(self, scorer, confidence):
        assessment = scorer.score([_license("a", "MIT", "MIT", confidence)])

        assert assessment.score == 0
        assert assessment.factors == []

    def test_details_are_bounded(self, scorer):
        findings = [_license(f"f{i}", "MIT", "MIT", 0.1) for i in range(12)]

        factor = _factor(scorer.score(findings), "low_confidence")

        assert factor.affected_count == 12
        assert len(factor.details) == 10


class TestControlFlags:

    def test_points_per_severity(self, scorer):
        findings = [_flags("a.py", "critical", "high", "medium", "low", None, "weird")]

        assessment = scorer.score(findings)

        assert assessment.score == 20 + 12 + 6 + 2 + 6 + 2
        critical_high = _factor(assessment, "ecc_critical_high")
        assert critical_high.severity == "critical"
        assert critical_high.affected_count == 2
        assert critical_high.details == ["Critical: 1 findings", "a.py", "High: 1 findings", "a.py"]
        medium_low = _factor(assessment, "ecc_medium_low")
        assert medium_low.severity == "medium"
        assert medium_low.details == ["Medium: 2 findings", "Low: 2 findings"]

    def test_high_only_factor_severity(self, scorer):
        factor = _factor(scorer.score([_flags("a", "high")]), "ecc_critical_high")
        assert factor.severity == "high"

    def test_only_three_paths_sampled(self, scorer):
        findings = [_flags(f"f{i}.py", "critical") for i in range(5)]

        factor = _factor(scorer.score(findings), "ecc_critical_high")

        assert factor.details == ["Critical: 5 findings", "f0.py", "f1.py", "f2.py"]

    def test_score_capped_at_100(self, scorer):
        assessment = scorer.score([_flags("a", *["critical"] * 10)])

        assert assessment.score == 100
        assert assessment.level == RiskLevel.CRITICAL


class TestDiversity:

    @pytest.mark.parametrize("count,points", [(4, 0), (5, 3), (9, 3), (10, 6), (14, 6), (15, 10)])
    def test_thresholds(self, scorer, count, points):
        findings = [_license(f"f{i}", f"Permissive-{i}") for i in range(count)]
        assert scorer.score(findings).score == points


@pytest.mark.parametrize("score,level", [
    (0, RiskLevel.LOW), (25, RiskLevel.LOW), (26, RiskLevel.MEDIUM), (50, RiskLevel.MEDIUM),
    (51, RiskLevel.HIGH), (75, RiskLevel.HIGH), (76, RiskLevel.CRITICAL), (100, RiskLevel.CRITICAL),
])
def test_level_bands(score, level):
    assert RiskLevel.from_score(score) == level


def test_scoring_is_deterministic(scorer):
    findings = [
        _license("a", "GPL-2.0-only"),
        _license("b", "Custom", None, 0.4),
        _flags("c", "high", "low"),
    ]
    assert scorer.score(findings).to_dict() == scorer.score(findings).to_dict()


def test_keyword_classification_is_case_sensitive():
    scorer = RiskScorer([RiskWeightRule("%", 5)])

    assessment = scorer.score([_license("a", "Simple-Permissive"), _license("b", "sample-unknown")])

    assert assessment.score == 0
    assert assessment.factors == []


def test_score_never_decreases_as_findings_accumulate(scorer):
    additions = [
        _license("copyleft.c", "GPL-2.0-only", "GPL-2.0-only"),
        _license("fuzzy.py", "MIT", "MIT", 0.3),
        _license("custom.txt", "Custom", None),
        _flags("crypto.rs", "critical"),
        _flags("hash.rs", "low", None),
    ] + [_license(f"lib{i}.js", f"Permissive-{i}", f"Permissive-{i}") for i in range(16)] + [
        _flags("more.rs", *["critical"] * 6),
    ]

    findings = []
    previous = 0
    for record in additions:
        findings.append(record)
        score = scorer.score(findings).score
        assert previous <= score <= 100
        previous = score

    assert previous == 100
