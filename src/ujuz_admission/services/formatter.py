"""Response rendering for API and chat callers."""

from __future__ import annotations

from ujuz_admission.models.admission import AdmissionScoreResult, EvidenceItem
from ujuz_admission.regions import region_label

_NO_EVIDENCE_LINE = "근거 데이터가 아직 충분하지 않아 지역 평균을 기준으로 추정했어요."


def _round_item(item: EvidenceItem) -> EvidenceItem:
    return item.model_copy(
        update={
            "confidence": round(item.confidence, 2),
            "data_points": {k: round(v, 4) for k, v in item.data_points.items()},
        }
    )


def format_structured(result: AdmissionScoreResult) -> AdmissionScoreResult:
    """Normalise a result for JSON output.

    Rounds confidences to 2 decimals and data points to 4, and orders
    evidence by descending confidence.  Applying it twice is a no-op.
    """
    evidence = sorted(
        (_round_item(e) for e in result.evidence),
        key=lambda e: e.confidence,
        reverse=True,
    )
    return result.model_copy(
        update={
            "probability": round(result.probability, 2),
            "confidence": round(result.confidence, 2),
            "evidence": evidence,
        }
    )


def wait_range(median: int) -> tuple[int, int]:
    """Display range around the median wait, lower bound at least 1 month."""
    return max(1, median - 1), median + 1


def _waitlist_line(result: AdmissionScoreResult) -> str | None:
    for item in result.evidence:
        points = item.data_points
        if "waiting_position" in points and "w_eff" in points:
            label = region_label(result.region_key)
            position = round(points["waiting_position"])
            ahead = round(points["w_eff"])
            return f"대기 순번 {position}번 ({label} 경쟁률·우선순위 반영 시 실질 {ahead}번째)"
    return None


def format_bot_text(result: AdmissionScoreResult) -> str:
    """Korean chat reply summarising *result*.

    Shows the probability, grade and score, the strongest evidence item,
    the effective waitlist position when the result carries one, and the
    median wait.  The 80th percentile is not shown.
    """
    pct = round(result.probability * 100)
    median = result.estimated_months_median
    low, high = wait_range(median)

    if result.evidence:
        top = max(result.evidence, key=lambda e: e.confidence)
        evidence_line = f"주요 근거: {top.summary}"
    else:
        evidence_line = _NO_EVIDENCE_LINE

    lines = [
        f"{result.facility_name}의 6개월 내 입소 가능성은 약 {pct}%예요.",
        f"등급 {result.grade} · 점수 {result.admission_score} (신뢰도 {result.confidence:.2f})",
        evidence_line,
    ]
    waitlist = _waitlist_line(result)
    if waitlist:
        lines.append(waitlist)
    lines += [
        f"예상 대기기간: {low}-{high}개월 (중앙값 {median}개월)",
        "※ 커뮤니티·공공 데이터 기반 추정치이며 입소를 보장하지 않아요.",
    ]
    return "\n".join(lines)
