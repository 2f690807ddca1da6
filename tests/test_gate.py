import pytest
from conftest import make_hit

from grounded_rag.retrieve.gate import gate


def test_no_results_means_no_evidence():
    g = gate([], 0.5, 0.1)
    assert g.has_evidence is False
    assert g.is_ambiguous is False
    assert g.top1 == 0.0


def test_single_hit_gap_is_own_score():
    # documented quirk: with no runner-up the gap equals the top score itself
    g = gate([make_hit(0.9)], min_score=0.5, min_gap=0.1)
    assert g.has_evidence is True
    assert g.gap_top1_top2 == pytest.approx(0.9)
    assert g.is_ambiguous is False


def test_single_low_hit_is_ambiguous_when_score_below_gap():
    g = gate([make_hit(0.05)], min_score=0.0, min_gap=0.1)
    assert g.gap_top1_top2 == pytest.approx(0.05)
    assert g.is_ambiguous is True


def test_close_scores_are_ambiguous():
    g = gate([make_hit(0.7), make_hit(0.69, index=1)], min_score=0.5, min_gap=0.05)
    assert g.has_evidence is True
    assert g.top1 == pytest.approx(0.7)
    assert g.gap_top1_top2 == pytest.approx(0.01)
    assert g.is_ambiguous is True


def test_top1_below_threshold_has_no_evidence():
    g = gate([make_hit(0.55), make_hit(0.2, index=1)], min_score=0.6, min_gap=0.02)
    assert g.has_evidence is False
    assert g.gap_top1_top2 == pytest.approx(0.35)
    assert g.is_ambiguous is False


def test_threshold_is_inclusive():
    assert gate([make_hit(0.6)], min_score=0.6, min_gap=0.02).has_evidence is True
