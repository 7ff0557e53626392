from datetime import datetime, timedelta, timezone

from kairos.application.analytics.patterns import (
    analyze_fatigue,
    analyze_session_fatigue,
    analyze_time_of_day,
    detect_interference,
    detect_prerequisite_gaps,
)
from kairos.domain.analytics.models import PrerequisiteGraph
from kairos.domain.analytics.results import (
    Confidence,
    InterferenceAction,
    TimezoneSource,
)


def minutes(n):
    return timedelta(minutes=n)


# --- Interference -----------------------------------------------------------


def confusable_pair(make_review, sessions=3):
    """A and B missed back-to-back in ``sessions`` sessions, recalled fine on their own."""
    events = []
    for s in range(sessions):
        base = 1000 - 10 * s
        events.append(make_review("A", False, minutes(base), session_id=f"s{s}"))
        events.append(make_review("B", False, minutes(base - 1), session_id=f"s{s}"))
    for i in range(sessions):
        events.append(make_review("A", True, minutes(100 + i), session_id=None))
        events.append(make_review("B", True, minutes(200 + i), session_id=None))
    return events


def test_interference_flags_confused_pair(make_review, policy):
    pairs = detect_interference(confusable_pair(make_review), policy, {"A": 0.7})

    assert len(pairs) == 1
    pair = pairs[0]
    assert (pair.card_a, pair.card_b) == ("A", "B")
    assert pair.co_occurrences == 3
    assert pair.joint_failures == 3
    assert pair.joint_error_rate == 1.0
    assert pair.error_rate_a == 0.5
    assert pair.strength == 2.0
    assert pair.struggle_a == 0.7
    assert pair.struggle_b is None
    assert pair.recommendation is InterferenceAction.SPACE_APART


def paired_sessions(make_review, outcomes, solo_correct=0):
    """A then B back-to-back in one session per outcome; ``solo_correct`` extra passes each."""
    events = []
    for s, ok in enumerate(outcomes):
        base = 1000 - 10 * s
        events.append(make_review("A", ok, minutes(base), session_id=f"s{s}"))
        events.append(make_review("B", ok, minutes(base - 1), session_id=f"s{s}"))
    for i in range(solo_correct):
        events.append(make_review("A", True, minutes(100 + i), session_id=None))
        events.append(make_review("B", True, minutes(200 + i), session_id=None))
    return events


def test_interference_needs_more_than_independent_error_rate(make_review, policy):
    # Missed together exactly as often as each is missed anyway
    events = paired_sessions(make_review, [False, True, False, True])
    assert detect_interference(events, policy) == []


def test_interference_ratio_boundary_is_inclusive(make_review, policy):
    # joint 6/8 = 0.75; each card alone 3/6 = 0.5, so exactly 1.5x
    events = paired_sessions(make_review, [False, False, False, True], solo_correct=2)

    pairs = detect_interference(events, policy)

    assert len(pairs) == 1
    assert pairs[0].joint_error_rate == 0.75
    assert pairs[0].error_rate_a == 0.5
    assert pairs[0].strength == 1.5


def test_interference_just_under_ratio_is_dropped(make_review, policy):
    # each card alone 3/5 = 0.6; 1.5x is 0.9 > 0.75
    events = paired_sessions(make_review, [False, False, False, True], solo_correct=1)
    assert detect_interference(events, policy) == []


def test_interference_requires_minimum_co_occurrences(make_review, policy):
    assert detect_interference(confusable_pair(make_review, sessions=2), policy) == []


def test_interference_never_pairs_card_with_itself(make_review, policy):
    events = [make_review("A", False, minutes(10 - i)) for i in range(6)]
    assert detect_interference(events, policy) == []


def test_interference_ignores_reviews_too_far_apart(make_review, policy):
    events = []
    for s in range(4):
        session = f"s{s}"
        events.append(make_review("A", False, minutes(500 - 20 * s), session_id=session))
        for f in range(policy.interference_window + 1):
            events.append(
                make_review(f"filler{f}", True, minutes(499 - 20 * s - f), session_id=session)
            )
        events.append(make_review("B", False, minutes(480 - 20 * s), session_id=session))

    pairs = detect_interference(events, policy)
    assert all({p.card_a, p.card_b} != {"A", "B"} for p in pairs)
    assert all(p.card_a < p.card_b for p in pairs)
    assert all(p.co_occurrences >= policy.interference_min_co_occurrence for p in pairs)


# --- Prerequisite gaps ------------------------------------------------------


def test_prerequisite_gap_detected(make_review, policy):
    events = [
        make_review("basics", True, minutes(30)),
        make_review("basics", False, minutes(20)),
        make_review("advanced", False, minutes(10), deck_id="d2"),
    ]
    graph = PrerequisiteGraph(edges={"advanced": frozenset({"basics"})})

    report = detect_prerequisite_gaps(events, graph, {"advanced": 0.8, "basics": 0.3}, policy)

    assert report.graph_available is True
    assert len(report.gaps) == 1
    gap = report.gaps[0]
    assert gap.card_id == "advanced"
    assert gap.deck_id == "d2"
    assert gap.weak_prerequisite_ids == ["basics"]
    assert gap.prerequisite_accuracy == {"basics": 0.5}


def test_unreviewed_prerequisite_is_not_a_gap(make_review, policy):
    events = [make_review("advanced", False, minutes(10))]
    graph = PrerequisiteGraph(edges={"advanced": frozenset({"never_seen"})})

    report = detect_prerequisite_gaps(events, graph, {"advanced": 0.9}, policy)
    assert report.gaps == []


def test_strong_prerequisite_or_mild_struggle_is_not_a_gap(make_review, policy):
    events = [make_review("basics", True, minutes(20)), make_review("advanced", False)]
    graph = PrerequisiteGraph(edges={"advanced": frozenset({"basics"})})

    assert detect_prerequisite_gaps(events, graph, {"advanced": 0.9}, policy).gaps == []
    weak = [make_review("basics", False, minutes(20)), make_review("advanced", False)]
    assert detect_prerequisite_gaps(weak, graph, {"advanced": 0.3}, policy).gaps == []


def test_missing_graph_is_reported_not_raised(make_review, policy):
    report = detect_prerequisite_gaps(
        [make_review()], PrerequisiteGraph.unavailable(), {"c1": 1.0}, policy
    )
    assert report.graph_available is False
    assert report.gaps == []


# --- Fatigue ----------------------------------------------------------------


def decaying_session(make_review, session_id="s1", correct_first=4, wrong_after=4):
    outcomes = [True] * correct_first + [False] * wrong_after
    total = len(outcomes)
    return [
        make_review(f"c{i}", ok, minutes(total - i), session_id=session_id)
        for i, ok in enumerate(outcomes)
    ]


def test_session_fatigue_onset(make_review, policy):
    fatigue = analyze_session_fatigue("s1", decaying_session(make_review), policy)

    assert fatigue.baseline_accuracy == 1.0
    assert fatigue.onset_position == 4
    assert fatigue.accuracy_slope < 0


def test_short_session_has_no_fatigue_reading(make_review, policy):
    reviews = decaying_session(make_review, correct_first=2, wrong_after=2)
    assert analyze_session_fatigue("s1", reviews, policy) is None


def test_steady_session_has_no_onset(make_review, policy):
    reviews = decaying_session(make_review, correct_first=8, wrong_after=0)
    assert analyze_session_fatigue("s1", reviews, policy).onset_position is None


def test_fatigue_with_one_session_is_low_confidence(make_review, make_session, policy):
    analysis = analyze_fatigue(decaying_session(make_review), [make_session("s1")], policy)

    assert analysis.sessions_analyzed == 1
    assert analysis.confidence is Confidence.LOW
    assert analysis.typical_onset_position == 4
    assert analysis.recommended_session_length == 3
    assert analysis.fatigued_sessions == 1
    assert len(analysis.curve) == 10
    assert analysis.curve[0].accuracy == 1.0
    assert analysis.curve[8].accuracy == 0.0
    # Eight reviews never reach the tenth decile
    assert analysis.curve[9].sample_count == 0


def test_fatigue_high_confidence_with_enough_sessions(make_review, make_session, policy):
    events, sessions = [], []
    for s in range(policy.fatigue_min_sessions):
        events += decaying_session(make_review, session_id=f"s{s}", correct_first=8, wrong_after=0)
        sessions.append(make_session(f"s{s}"))

    analysis = analyze_fatigue(events, sessions, policy)

    assert analysis.confidence is Confidence.HIGH
    assert analysis.fatigued_sessions == 0
    # No onset anywhere: the typical onset is the full session length
    assert analysis.typical_onset_position == 8
    assert "working well" in analysis.recommendation


def test_live_sessions_are_excluded_from_fatigue(make_review, make_session, policy):
    analysis = analyze_fatigue(
        decaying_session(make_review), [make_session("s1", live=True)], policy
    )
    assert analysis.sessions_analyzed == 0
    assert analysis.confidence is Confidence.INSUFFICIENT
    assert analysis.recommended_session_length is None


# --- Circadian --------------------------------------------------------------


def reviews_at_hour(make_review, utc_hour, count, wrong=0, session_id="s1"):
    base = datetime(2026, 3, 17, utc_hour, 0, tzinfo=timezone.utc)
    return [
        make_review(f"h{utc_hour}c{i}", i >= wrong, at=base + minutes(i), session_id=session_id)
        for i in range(count)
    ]


def test_circadian_uses_session_offset(make_review, make_session, policy):
    events = reviews_at_hour(make_review, 7, 10) + reviews_at_hour(make_review, 18, 10, wrong=5)
    sessions = [make_session("s1", utc_offset_minutes=120)]

    analysis = analyze_time_of_day(events, sessions, policy)

    assert len(analysis.buckets) == 24
    assert analysis.buckets[9].review_count == 10
    assert analysis.buckets[20].accuracy == 0.5
    assert analysis.best_hour == 9
    assert analysis.worst_hour == 20
    assert analysis.timezone_source is TimezoneSource.SESSION
    assert analysis.confidence is Confidence.HIGH
    assert "9:00" in analysis.recommendation


def test_circadian_falls_back_to_utc(make_review, make_session, policy):
    events = reviews_at_hour(make_review, 7, 10) + reviews_at_hour(make_review, 18, 10, wrong=5)

    analysis = analyze_time_of_day(events, [make_session("s1")], policy)

    assert analysis.timezone_source is TimezoneSource.UTC_FALLBACK
    assert analysis.best_hour == 7
    assert analysis.worst_hour == 18


def test_circadian_sparse_buckets_do_not_compete(make_review, make_session, policy):
    events = reviews_at_hour(make_review, 7, 3) + reviews_at_hour(make_review, 18, 3, wrong=3)

    analysis = analyze_time_of_day(events, [make_session("s1")], policy)

    assert analysis.best_hour is None
    assert analysis.worst_hour is None
    assert analysis.confidence is Confidence.LOW
    assert analysis.recommendation is None


def test_circadian_single_bucket_allowed_by_policy(make_review, make_session, policy):
    events = reviews_at_hour(make_review, 7, 10)
    sessions = [make_session("s1")]

    assert analyze_time_of_day(events, sessions, policy).best_hour is None

    lenient = policy.model_copy(update={"circadian_min_buckets": 1})
    analysis = analyze_time_of_day(events, sessions, lenient)
    assert analysis.best_hour == 7
    assert analysis.worst_hour == 7


def test_circadian_no_events(policy):
    analysis = analyze_time_of_day([], [], policy)
    assert analysis.confidence is Confidence.INSUFFICIENT
    assert analysis.overall_accuracy is None
