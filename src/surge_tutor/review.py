"""Topics due for Surge review and weak areas from the practice log."""
from surge_tutor.models import SurgeLogEntry
from surge_tutor.storage import get_reviewed_topics, get_surge_log, load_practice_log, load_subject_data


def collect_log_topics(log: list[SurgeLogEntry], course_name: str = "", exclude_session_id: str = "") -> list[str]:
    """Every topic a Surge session touched, in first-seen order, minus the course name.

    Entries for ``exclude_session_id`` (the session still running) are skipped.
    """
    topics: list[str] = []
    seen: set[str] = set()

    def add(topic: str) -> None:
        if topic and topic != course_name and topic not in seen:
            seen.add(topic)
            topics.append(topic)

    for entry in log:
        if exclude_session_id and entry.session_id == exclude_session_id:
            continue
        for rt in entry.repeated_topics:
            add(rt.topic)
        add(entry.new_topic)
        for result in entry.quiz_results:
            add(result.topic)
    return topics


def previous_questions(log: list[SurgeLogEntry]) -> list[str]:
    return [r.question for entry in log for r in entry.quiz_results if r.question]


def get_topics_to_review(db_path: str, slug: str) -> list[str]:
    data = load_subject_data(db_path, slug) or {}
    reviewed = get_reviewed_topics(db_path, slug)
    topics = collect_log_topics(get_surge_log(db_path, slug), data.get("subject") or "")
    return [t for t in topics if not reviewed.get(t)]


def all_topics_reviewed(db_path: str, slug: str) -> bool:
    data = load_subject_data(db_path, slug) or {}
    topics = collect_log_topics(get_surge_log(db_path, slug), data.get("subject") or "")
    reviewed = get_reviewed_topics(db_path, slug)
    return bool(topics) and all(reviewed.get(t) for t in topics)


def get_weak_topics(db_path: str, slug: str, threshold: float = 7.0) -> list[dict]:
    """Practice-log topics whose average grade is below threshold (worst first)."""
    totals: dict[str, list[int]] = {}
    for entry in load_practice_log(db_path, slug):
        totals.setdefault(entry.topic, []).append(entry.grade)
    weak = [
        {
            "topic": topic,
            "answers": len(grades),
            "average_grade": round(sum(grades) / len(grades), 1),
        }
        for topic, grades in totals.items()
        if sum(grades) / len(grades) < threshold
    ]
    return sorted(weak, key=lambda w: w["average_grade"])
