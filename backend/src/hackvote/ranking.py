from __future__ import annotations

from collections.abc import Iterable

from .domain import (
    PHASE1_TOP_N,
    FinalTies,
    Phase1Result,
    ScoreTieGroup,
    Team,
    TeamScore,
    TiedGroup,
)

# 正規化スコアの浮動小数点誤差を吸収する許容幅
SCORE_TIE_TOLERANCE = 1e-6


def sequential_rank_desc(pairs: list[tuple[str, float]]) -> dict[str, int]:
    """スコア降順に 1 から連番の順位を返す。

    同点でも別順位になる（例: 1,2,3）。同点の扱いは detect_final_ties で別途判定する。
    sorted は安定なので、同点は入力順を保つ。
    """

    sorted_pairs = sorted(pairs, key=lambda x: -x[1])
    return {team_id: i + 1 for i, (team_id, _score) in enumerate(sorted_pairs)}


def calculate_scores(
    teams: list[Team], judge_weight: float, participant_weight: float
) -> list[TeamScore]:
    """審査員票・参加者票をそれぞれ最大値で 0〜100 に正規化し、重み付き合計で順位を付ける。

    非表示チームの除外は呼び出し側で行う。
    """

    if not teams:
        return []

    max_judge = max(max(t.judge_vote_count for t in teams), 1)
    max_participant = max(max(t.participant_vote_count for t in teams), 1)

    scored: list[TeamScore] = []
    for team in teams:
        if len(teams) == 1:
            # 1チームだけなら票が0でも自身が最大値として扱う
            judge_normalized = participant_normalized = final_score = 100.0
        else:
            judge_normalized = team.judge_vote_count / max_judge * 100
            participant_normalized = team.participant_vote_count / max_participant * 100
            final_score = (
                judge_normalized * judge_weight + participant_normalized * participant_weight
            )
        scored.append(
            TeamScore(
                team_id=team.id,
                team_name=team.name,
                team_nickname=team.nickname,
                judge_vote_count=team.judge_vote_count,
                participant_vote_count=team.participant_vote_count,
                judge_normalized=judge_normalized,
                participant_normalized=participant_normalized,
                final_score=final_score,
                rank=0,
            )
        )

    ranks = sequential_rank_desc([(s.team_id, s.final_score) for s in scored])
    ranked = [s.model_copy(update={"rank": ranks[s.team_id]}) for s in scored]
    return sorted(ranked, key=lambda s: s.rank)


def visible_teams(teams: Iterable[Team]) -> list[Team]:
    return [t for t in teams if not t.is_hidden]


def calculate_final_scores(
    teams: list[Team],
    judge_weight: float,
    participant_weight: float,
    phase1_selected_team_ids: list[str],
) -> list[TeamScore]:
    selected = set(phase1_selected_team_ids)
    pool = [t for t in visible_teams(teams) if t.id in selected]
    return calculate_scores(pool, judge_weight, participant_weight)


def _scores_tied(a: float, b: float) -> bool:
    return abs(a - b) <= SCORE_TIE_TOLERANCE


def detect_final_ties(scores: list[TeamScore], top_n: int | None = None) -> FinalTies:
    """最終スコアの差が SCORE_TIE_TOLERANCE 以内のチームを同点グループにまとめる。

    top_n を指定した場合は、順位 top_n 以内を含むグループだけを返す。
    """

    ordered = sorted(scores, key=lambda s: -s.final_score)
    groups: list[list[TeamScore]] = []
    for score in ordered:
        if groups and _scores_tied(groups[-1][-1].final_score, score.final_score):
            groups[-1].append(score)
        else:
            groups.append([score])

    tie_groups = [
        ScoreTieGroup(final_score=g[0].final_score, teams=g)
        for g in groups
        if len(g) > 1 and (top_n is None or any(s.rank <= top_n for s in g))
    ]
    if not tie_groups:
        return FinalTies(tied_teams=None, tie_groups=[])

    tied_teams = [s for g in tie_groups for s in g.teams]
    return FinalTies(tied_teams=tied_teams, tie_groups=tie_groups)


def _group_by_vote_count(teams: list[Team]) -> list[TiedGroup]:
    groups: dict[int, list[Team]] = {}
    for team in teams:
        groups.setdefault(team.participant_vote_count, []).append(team)
    return [
        TiedGroup(vote_count=count, teams=members)
        for count, members in sorted(groups.items(), key=lambda x: -x[0])
        if len(members) > 1
    ]


def select_phase1_teams(teams: list[Team], top_n: int = PHASE1_TOP_N) -> Phase1Result:
    """参加者投票数だけで上位 top_n チームを選出する。

    境界で同票がある場合は、境界より上のチームだけを自動選出し、
    境界の票数を共有するチームを tied_teams として返す。
    """

    ordered = sorted(visible_teams(teams), key=lambda t: -t.participant_vote_count)

    if len(ordered) <= top_n:
        return Phase1Result(
            selected_team_ids=[t.id for t in ordered],
            tied_teams=None,
            tied_groups=_group_by_vote_count(ordered),
        )

    cutoff_count = ordered[top_n - 1].participant_vote_count
    if ordered[top_n].participant_vote_count != cutoff_count:
        top = ordered[:top_n]
        return Phase1Result(
            selected_team_ids=[t.id for t in top],
            tied_teams=None,
            tied_groups=_group_by_vote_count(top),
        )

    above = [t for t in ordered if t.participant_vote_count > cutoff_count]
    tied = [t for t in ordered if t.participant_vote_count == cutoff_count]
    return Phase1Result(
        selected_team_ids=[t.id for t in above],
        tied_teams=tied,
        tied_groups=_group_by_vote_count(above + tied),
    )


def apply_ranking_overrides(scores: list[TeamScore], ranked_team_ids: list[str]) -> list[TeamScore]:
    """管理者が決めた順序で、対象チームが元々占めていた順位を振り直す。

    対象外のチームは元の順位のまま。存在しない ID や重複は無視する。
    """

    by_id = {s.team_id: s for s in scores}
    ordered_ids: list[str] = []
    for team_id in ranked_team_ids:
        if team_id in by_id and team_id not in ordered_ids:
            ordered_ids.append(team_id)
    if not ordered_ids:
        return sorted(scores, key=lambda s: s.rank)

    slots = sorted(by_id[team_id].rank for team_id in ordered_ids)
    new_rank = dict(zip(ordered_ids, slots))
    overridden = [
        s.model_copy(update={"rank": new_rank[s.team_id]}) if s.team_id in new_rank else s
        for s in scores
    ]
    return sorted(overridden, key=lambda s: s.rank)


def podium(scores: list[TeamScore], overrides: list[str], size: int) -> list[TeamScore]:
    if len(overrides) == size:
        scores = apply_ranking_overrides(scores, overrides)
    return sorted(scores, key=lambda s: s.rank)[:size]
