"""Tests for cross-catalog title matching."""

import logging

import pytest

from matching import base_title, best_match, normalize_title, rank_candidates, score_candidate, season_number

JJK_S3 = {"title": "Jujutsu Kaisen Season 3", "year": 2025, "type": "TV"}

CULLING_GAME = {"title": "Jujutsu Kaisen: Culling Game", "year": 2025, "type": "TV", "session": "cg"}
JJK_S2 = {"title": "Jujutsu Kaisen Season 2", "year": 2023, "type": "TV", "session": "s2"}
JJK = {"title": "Jujutsu Kaisen", "year": 2020, "type": "TV", "session": "s1"}


class TestNormalization:
    def test_normalize_title(self):
        assert normalize_title("Jujutsu Kaisen: Culling Game!") == "jujutsukaisencullinggame"
        assert normalize_title("") == ""

    @pytest.mark.parametrize(
        "title, season",
        [
            ("Jujutsu Kaisen Season 2", 2),
            ("Jujutsu Kaisen 2nd Season", 2),
            ("Mushoku Tensei season3", 3),
            ("Kaiju No. 8", 1),
            ("", 1),
        ],
    )
    def test_season_number(self, title, season):
        assert season_number(title) == season

    def test_base_title_drops_subtitle_and_season(self):
        assert base_title("Jujutsu Kaisen: Culling Game") == "jujutsukaisen"
        assert base_title("Jujutsu Kaisen Season 3") == "jujutsukaisen"
        assert base_title("Jujutsu Kaisen 2nd Season") == "jujutsukaisen"


class TestScoring:
    def test_scores(self):
        assert score_candidate(CULLING_GAME, JJK_S3) == 18
        assert score_candidate(JJK_S2, JJK_S3) == 13
        assert score_candidate(JJK, JJK_S3) == -17

    def test_exact_match(self):
        target = {"title": "Frieren", "year": 2023, "type": "TV"}
        assert score_candidate({"title": "Frieren", "year": 2023, "type": "tv"}, target) == 28

    def test_unrelated_title(self):
        assert score_candidate({"title": "Bleach"}, {"title": "Naruto"}) == 10

    def test_missing_years_are_neutral(self):
        assert score_candidate({"title": "Naruto"}, {"title": "Naruto", "year": 2002}) == 20


class TestRanking:
    def test_jjk_ordering(self):
        ranked = rank_candidates(JJK_S3, [JJK, JJK_S2, CULLING_GAME])
        assert [m.candidate["session"] for m in ranked] == ["cg", "s2", "s1"]

    def test_ties_keep_input_order(self):
        a = {"title": "Naruto", "session": "a"}
        b = {"title": "Naruto", "session": "b"}
        assert best_match({"title": "Naruto"}, [a, b]) is a
        assert best_match({"title": "Naruto"}, [b, a]) is b

    def test_best_match_picks_culling_game(self):
        assert best_match(JJK_S3, [JJK, JJK_S2, CULLING_GAME]) is CULLING_GAME

    def test_title_mismatch_is_never_usable(self, caplog):
        with caplog.at_level(logging.WARNING, logger="yorumi.matching"):
            assert best_match({"title": "Naruto"}, [{"title": "Bleach"}]) is None
        assert "Ambiguous match" in caplog.text

    def test_low_score_is_not_usable(self):
        target = {"title": "Jujutsu Kaisen Season 3", "year": 2025}
        assert best_match(target, [{"title": "Jujutsu Kaisen", "year": 2020}]) is None

    def test_no_candidates(self, caplog):
        with caplog.at_level(logging.WARNING, logger="yorumi.matching"):
            assert best_match(JJK_S3, []) is None
        assert "no candidates" in caplog.text
