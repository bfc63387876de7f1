from __future__ import annotations

from conftest import make_team

from hackvote.domain import TeamScore
from hackvote.ranking import (
    apply_ranking_overrides,
    calculate_final_scores,
    calculate_scores,
    detect_final_ties,
    podium,
)


def _score(team_id: str, final_score: float, rank: int) -> TeamScore:
    return TeamScore(
        team_id=team_id,
        team_name=team_id.upper(),
        judge_vote_count=0,
        participant_vote_count=0,
        judge_normalized=0.0,
        participant_normalized=0.0,
        final_score=final_score,
        rank=rank,
    )


def test_calculate_scores_normalizes_against_max_and_weights():
    """最大票数を100として正規化し、重み付き合計で順位を付ける。"""

    teams = [make_team("a", participant=5, judge=10), make_team("b", participant=10, judge=5)]

    scores = calculate_scores(teams, 0.8, 0.2)

    assert [s.team_id for s in scores] == ["a", "b"]
    assert scores[0].judge_normalized == 100
    assert scores[0].participant_normalized == 50
    assert scores[0].final_score == 90
    assert scores[1].final_score == 60
    assert [s.rank for s in scores] == [1, 2]


def test_judge_only_weights_rank_like_raw_judge_votes():
    """重み(1,0)なら審査員票の降順、(0,1)なら参加者票の降順と同じ並びになる。"""

    teams = [
        make_team("a", participant=3, judge=7),
        make_team("b", participant=9, judge=2),
        make_team("c", participant=1, judge=12),
        make_team("d", participant=6, judge=0),
    ]

    by_judge = calculate_scores(teams, 1.0, 0.0)
    by_participant = calculate_scores(teams, 0.0, 1.0)

    assert [s.team_id for s in by_judge] == [
        t.id for t in sorted(teams, key=lambda t: -t.judge_vote_count)
    ]
    assert [s.team_id for s in by_participant] == [
        t.id for t in sorted(teams, key=lambda t: -t.participant_vote_count)
    ]


def test_single_team_always_scores_100():
    """1チームだけなら票が0でも正規化値・最終スコアは100、順位は1。"""

    for team in (make_team("solo"), make_team("solo", participant=4, judge=9)):
        [score] = calculate_scores([team], 0.8, 0.2)
        assert score.judge_normalized == 100
        assert score.participant_normalized == 100
        assert score.final_score == 100
        assert score.rank == 1


def test_calculate_scores_is_repeatable_and_does_not_mutate_input():
    """同じ入力で2回計算しても結果は同じで、入力のチームは変更されない。"""

    teams = [make_team("a", participant=2, judge=4), make_team("b", participant=8, judge=1)]
    before = [t.model_copy() for t in teams]

    assert calculate_scores(teams, 0.8, 0.2) == calculate_scores(teams, 0.8, 0.2)
    assert teams == before


def test_calculate_scores_empty_input():
    """入力が空なら空を返す。"""

    assert calculate_scores([], 0.8, 0.2) == []


def test_calculate_final_scores_only_scores_visible_selected_teams():
    """最終スコアは Phase 1 選出チームのうち非表示でないものだけを対象にする。"""

    teams = [
        make_team("a", participant=10, judge=10),
        make_team("b", participant=5, judge=5),
        make_team("c", participant=8, judge=8),
        make_team("d", participant=9, judge=9, hidden=True),
    ]

    scores = calculate_final_scores(teams, 0.8, 0.2, ["a", "c", "d"])

    assert [s.team_id for s in scores] == ["a", "c"]


def test_detect_final_ties_groups_equal_scores():
    """最終スコアが同じチームを同点グループとして検出する。"""

    scores = [_score("a", 100, 1), _score("b", 100, 2), _score("c", 50, 3)]

    ties = detect_final_ties(scores)

    assert ties.tied_teams is not None
    assert sorted(s.team_id for s in ties.tied_teams) == ["a", "b"]
    assert len(ties.tie_groups) == 1


def test_detect_final_ties_returns_none_without_ties():
    """同点がなければ tied_teams は None。"""

    ties = detect_final_ties([_score("a", 100, 1), _score("b", 50, 2)])

    assert ties.tied_teams is None
    assert ties.tie_groups == []


def test_detect_final_ties_top_n_ignores_ties_below_podium():
    """top_n 指定時は表彰台の外の同点を無視する。"""

    scores = [
        _score("a", 100, 1),
        _score("b", 50, 2),
        _score("c", 30, 3),
        _score("d", 10, 4),
        _score("e", 10, 5),
    ]

    assert detect_final_ties(scores).tied_teams is not None
    assert detect_final_ties(scores, top_n=3).tied_teams is None


def test_detect_final_ties_absorbs_float_drift_only():
    """浮動小数点の誤差程度の差は同点、0.01点差は別順位として扱う。"""

    drift = [_score("a", 100 / 3, 1), _score("b", (1 / 3) * 100 + 1e-12, 2)]
    distinct = [_score("a", 50.01, 1), _score("b", 50.0, 2)]

    assert detect_final_ties(drift).tied_teams is not None
    assert detect_final_ties(distinct).tied_teams is None


def test_apply_ranking_overrides_preserves_untouched_ranks():
    """上書き対象のチームだけが元の順位枠を入れ替え、他は元の順位のまま。"""

    scores = [_score(t, 100 - i * 10, i + 1) for i, t in enumerate("abcde")]

    result = apply_ranking_overrides(scores, ["c", "b"])

    ranks = {s.team_id: s.rank for s in result}
    assert ranks == {"a": 1, "c": 2, "b": 3, "d": 4, "e": 5}
    assert [s.team_id for s in result] == ["a", "c", "b", "d", "e"]


def test_apply_ranking_overrides_empty_list_keeps_order():
    """上書きが空なら元の順位のまま。"""

    scores = [_score("a", 100, 1), _score("b", 100, 2), _score("c", 50, 3)]

    assert apply_ranking_overrides(scores, []) == scores


def test_apply_ranking_overrides_ignores_unknown_and_duplicate_ids():
    """存在しない ID や重複した ID は無視され、全チームが残る。"""

    scores = [_score("a", 100, 1), _score("b", 100, 2), _score("c", 50, 3)]

    result = apply_ranking_overrides(scores, ["missing", "b", "b", "a"])

    assert [(s.team_id, s.rank) for s in result] == [("b", 1), ("a", 2), ("c", 3)]


def test_podium_uses_overrides_only_when_complete():
    """上書きが3チーム揃っている場合だけ表彰台に反映する。"""

    scores = [_score("a", 90, 1), _score("b", 90, 2), _score("c", 90, 3), _score("d", 10, 4)]

    assert [s.team_id for s in podium(scores, ["c", "a", "b"], 3)] == ["c", "a", "b"]
    assert [s.team_id for s in podium(scores, ["c"], 3)] == ["a", "b", "c"]
