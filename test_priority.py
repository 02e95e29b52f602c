"""
Priority Selection Tests
HIGH/MED suppression, cycle caps, topic redundancy and determinism
"""

from conftest import make_article
from marketwire.config import CycleLimits
from marketwire.selection.priority import select_final_articles, topic_key

WORDS = ["Alpha", "Bravo", "Charlie", "Delta", "Echo", "Foxtrot", "Golf"]


def _article(title, score, tier, category, **kwargs):
    return make_article(title=title, impact_score=score, source_tier=tier, impact_category=category,
                        fingerprint=title.lower().replace(" ", "-"), **kwargs)


def _reasons(result):
    return [(r.article.title, r.reason) for r in result.suppressed]


def test_example_scenario():
    a = _article("A IHSG anjlok", 82, "CORE", "HIGH")
    b = _article("B rupiah melemah", 60, "SUPPORT", "MED")
    c = _article("C emiten rilis laba", 40, "NOISE", "LOW")

    result = select_final_articles([a, b, c], CycleLimits(max_high=5, max_med=3))

    assert result.selected == [a]
    assert a.send_order == 1
    assert _reasons(result) == [
        ("B rupiah melemah", "suppressed_by_high_core"),
        ("C emiten rilis laba", "low_impact"),
    ]
    assert result.metrics == {
        "total_processed": 3, "selected": 1, "suppressed": 2,
        "high_count": 1, "med_count": 1, "low_count": 1,
    }


def test_high_core_suppresses_every_med():
    high = _article("Fed pangkas suku bunga", 80, "CORE", "HIGH")
    meds = [_article(f"Saham sektor {i} bergerak", 55 + i, "SUPPORT", "MED") for i in range(4)]

    result = select_final_articles(meds + [high])

    assert result.selected == [high]
    assert {r.reason for r in result.suppressed} == {"suppressed_by_high_core"}
    assert len(result.suppressed) == 4


def test_cycle_cap_keeps_top_scores():
    highs = [_article(f"{w} berita penting", 75 + i, "SUPPORT", "HIGH") for i, w in enumerate(WORDS[:7])]

    result = select_final_articles(highs, CycleLimits(max_high=5, max_med=3))

    assert [a.impact_score for a in result.selected] == [81, 80, 79, 78, 77]
    assert [a.send_order for a in result.selected] == [1, 2, 3, 4, 5]
    overflow = [r for r in result.suppressed if r.reason == "cycle_limit_exceeded"]
    assert sorted(r.article.impact_score for r in overflow) == [75, 76]


def test_med_fallback_when_no_high():
    meds = [_article(f"{w} kabar pasar", 50 + i, "SUPPORT", "MED") for i, w in enumerate(WORDS[:5])]

    result = select_final_articles(meds, CycleLimits(max_high=5, max_med=3))

    assert [a.impact_score for a in result.selected] == [54, 53, 52]
    assert [r.reason for r in result.suppressed] == ["cycle_limit_exceeded", "cycle_limit_exceeded"]


def test_high_from_non_core_supersedes_med():
    high = _article("IHSG melonjak tajam", 78, "SUPPORT", "HIGH")
    med = _article("Rupiah stabil", 55, "NOISE", "MED")

    result = select_final_articles([med, high])

    assert result.selected == [high]
    assert _reasons(result) == [("Rupiah stabil", "superseded_by_high")]


def test_topic_redundancy_keeps_first_in_score_order():
    first = _article("IHSG ditutup melemah tajam", 82, "SUPPORT", "HIGH")
    second = _article("IHSG ditutup melemah hari ini", 79, "NOISE", "HIGH")
    other = _article("Rupiah ditutup menguat", 77, "NOISE", "HIGH")

    result = select_final_articles([second, other, first])

    assert result.selected == [first, other]
    redundant = [r for r in result.suppressed if r.reason == "topic_redundancy"]
    assert len(redundant) == 1
    assert redundant[0].article is second
    assert redundant[0].kept is first


def test_empty_title_topic_key_uses_fingerprint():
    a = _article("", 80, "SUPPORT", "HIGH", link="https://a.example")
    a.fingerprint = "aaaa"
    b = _article("", 79, "SUPPORT", "HIGH", link="https://b.example")
    b.fingerprint = "bbbb"

    assert topic_key(a) != topic_key(b)
    assert len(select_final_articles([a, b]).selected) == 2


def test_stable_sort_on_equal_scores():
    x = _article("Alpha saham naik", 80, "SUPPORT", "HIGH")
    y = _article("Beta saham turun", 80, "SUPPORT", "HIGH")
    assert select_final_articles([x, y]).selected == [x, y]
    assert select_final_articles([y, x]).selected == [y, x]


def test_selection_is_deterministic():
    def build():
        return [
            _article("IHSG anjlok dalam", 85, "NOISE", "HIGH"),
            _article("IHSG anjlok lagi sore", 83, "SUPPORT", "HIGH"),
            _article("Obligasi negara diburu", 76, "SUPPORT", "HIGH"),
            _article("Rupiah tertekan", 60, "SUPPORT", "MED"),
            _article("Laba emiten turun", 30, "NOISE", "LOW"),
        ]

    runs = [select_final_articles(build(), CycleLimits(max_high=2, max_med=3)) for _ in range(3)]

    assert len({tuple(a.title for a in r.selected) for r in runs}) == 1
    assert len({tuple(_reasons(r)) for r in runs}) == 1


def test_scores_and_fingerprints_untouched():
    article = _article("Fed tahan suku bunga", 80, "CORE", "HIGH")
    select_final_articles([article])
    assert article.impact_score == 80
    assert article.fingerprint == "fed-tahan-suku-bunga"
