"""Per-course subject documents: lessons, review schedules and the Surge log."""
import copy
import json
import logging
import sqlite3
import threading
import time
from typing import Optional

from surge_tutor.config import DEFAULT_MAX_DOCUMENT_BYTES, Settings
from surge_tutor.db import get_json, list_keys, set_item, set_json
from surge_tutor.errors import StorageQuotaError
from surge_tutor.models import PracticeLogEntry, ReviewSchedule, SurgeLogEntry
from surge_tutor.parsing import stable_text_hash
from surge_tutor.sm2 import DAY_MS, next_review_at, sm2_update
from surge_tutor.sync import sync_subject_data_to_server

logger = logging.getLogger(__name__)

PREFIX = "atomicSubjectData:"
PRACTICE_LOG_PREFIX = "atomicPracticeLog:"
STARRED_PREFIX = "starredFlashcards:"
SURGE_LOG_LIMIT = 50
SLIM_COMBINED_TEXT_CHARS = 200_000
MIN_SURGE_LESSON_CHARS = 200
IN_PROGRESS_MARKER = "(In Progress)"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_subject_data(slug: str, subject: Optional[str] = None, course_context: str = "",
                     combined_text: str = "") -> dict:
    return {
        "subject": subject or slug,
        "files": [],
        "combinedText": combined_text,
        "tree": None,
        "topics": [],
        "nodes": {},
        "course_context": course_context,
        "course_notes": "",
        "topic_notes": {},
    }


def load_subject_data(db_path: str, slug: str) -> Optional[dict]:
    data = get_json(db_path, PREFIX + slug)
    return data if isinstance(data, dict) else None


def list_subject_slugs(db_path: str) -> list[str]:
    return [k[len(PREFIX):] for k in list_keys(db_path, PREFIX)]


def _slim(data: dict) -> dict:
    slim = copy.deepcopy(data)
    if isinstance(slim.get("files"), list):
        slim["files"] = [{"name": f.get("name"), "type": f.get("type")} for f in slim["files"] if isinstance(f, dict)]
    text = slim.get("combinedText")
    if isinstance(text, str) and len(text) > SLIM_COMBINED_TEXT_CHARS:
        slim["combinedText"] = text[:SLIM_COMBINED_TEXT_CHARS]
    for node in (slim.get("nodes") or {}).values():
        if isinstance(node, dict) and node.get("rawLessonJson"):
            node["rawLessonJson"] = []
    return slim


def _store(db_path: str, key: str, data: dict, limit: int) -> None:
    encoded = json.dumps(data, ensure_ascii=False)
    size = len(encoded.encode("utf-8"))
    if size > limit:
        raise StorageQuotaError(key, size, limit)
    set_item(db_path, key, encoded)


def _write(db_path: str, slug: str, data: dict, settings: Optional[Settings]) -> dict:
    """Store the document locally, falling back to a slimmed copy over quota.

    Returns the document that was meant to be stored. When even the slim
    copy cannot be written, the previously stored document stays in place.
    """
    limit = settings.max_document_bytes if settings else DEFAULT_MAX_DOCUMENT_BYTES
    key = PREFIX + slug
    try:
        _store(db_path, key, data, limit)
        return data
    except StorageQuotaError as e:
        logger.warning("%s; saving slimmed copy", e)
    slim = _slim(data)
    try:
        _store(db_path, key, slim, limit)
    except (StorageQuotaError, sqlite3.Error) as e:
        logger.error("Failed to save slimmed copy of %s: %s", key, e)
    return slim


def save_subject_data(db_path: str, slug: str, data: dict,
                      settings: Optional[Settings] = None) -> threading.Thread:
    """Save locally and push to the server in the background.

    Returns the sync thread so callers (and tests) may join it.
    """
    stored = _write(db_path, slug, data, settings)
    snapshot = copy.deepcopy(stored)
    thread = threading.Thread(
        target=sync_subject_data_to_server,
        args=(settings, slug, snapshot),
        name=f"sync-{slug}",
        daemon=True,
    )
    thread.start()
    return thread


def save_subject_data_synced(db_path: str, slug: str, data: dict,
                             settings: Optional[Settings] = None) -> bool:
    """Save locally, then wait for the server push. Returns True if the server took it."""
    stored = _write(db_path, slug, data, settings)
    return sync_subject_data_to_server(settings, slug, stored)


def _load_or_new(db_path: str, slug: str) -> dict:
    return load_subject_data(db_path, slug) or new_subject_data(slug)


def upsert_node_content(db_path: str, slug: str, node_name: str, content,
                        settings: Optional[Settings] = None) -> None:
    data = _load_or_new(db_path, slug)
    data.setdefault("nodes", {})[node_name] = content
    save_subject_data(db_path, slug, data, settings)


def upsert_node_content_synced(db_path: str, slug: str, node_name: str, content,
                               settings: Optional[Settings] = None) -> None:
    data = _load_or_new(db_path, slug)
    data.setdefault("nodes", {})[node_name] = content
    save_subject_data_synced(db_path, slug, data, settings)


# Spaced repetition for lessons

def mark_lesson_reviewed(db_path: str, slug: str, topic: str, lesson_index: int, quality: int,
                         now: Optional[int] = None, settings: Optional[Settings] = None) -> Optional[ReviewSchedule]:
    data = load_subject_data(db_path, slug)
    if data is None:
        return None
    now = now if now is not None else now_ms()
    schedules = data.setdefault("reviewSchedules", {})
    key = f"{topic}-{lesson_index}"
    existing = ReviewSchedule.from_dict(schedules[key]) if isinstance(schedules.get(key), dict) else None

    updated = sm2_update(
        quality=quality,
        reviews=existing.review_count if existing else 0,
        ease_factor=existing.ease_factor if existing else 2.5,
        interval=existing.interval if existing else 0,
    )
    schedule = ReviewSchedule(
        topic=topic,
        lesson_index=lesson_index,
        last_reviewed=now,
        next_review=next_review_at(now, updated["interval"]),
        interval=updated["interval"],
        ease_factor=updated["ease_factor"],
        review_count=updated["reviews"],
    )
    schedules[key] = {**(schedules.get(key) or {}), **schedule.to_dict()}
    save_subject_data(db_path, slug, data, settings)
    return schedule


def _schedules(db_path: str, slug: str) -> list[ReviewSchedule]:
    data = load_subject_data(db_path, slug)
    if not data or not isinstance(data.get("reviewSchedules"), dict):
        return []
    return [ReviewSchedule.from_dict(s) for s in data["reviewSchedules"].values() if isinstance(s, dict)]


def get_lessons_due_for_review(db_path: str, slug: str, now: Optional[int] = None) -> list[ReviewSchedule]:
    now = now if now is not None else now_ms()
    due = [s for s in _schedules(db_path, slug) if s.next_review <= now]
    return sorted(due, key=lambda s: s.next_review)


def get_upcoming_reviews(db_path: str, slug: str, days: int = 7, now: Optional[int] = None) -> list[ReviewSchedule]:
    now = now if now is not None else now_ms()
    horizon = now + days * DAY_MS
    upcoming = [s for s in _schedules(db_path, slug) if now < s.next_review <= horizon]
    return sorted(upcoming, key=lambda s: s.next_review)


# Surge log

def _raw_surge_log(data: Optional[dict]) -> list[dict]:
    if not data or not isinstance(data.get("surgeLog"), list):
        return []
    return [e for e in data["surgeLog"] if isinstance(e, dict)]


def get_surge_log(db_path: str, slug: str) -> list[SurgeLogEntry]:
    return [SurgeLogEntry.from_dict(e) for e in _raw_surge_log(load_subject_data(db_path, slug))]


def get_last_surge_session(db_path: str, slug: str) -> Optional[SurgeLogEntry]:
    """Entry with the latest timestamp; dates are user-editable, so not list order."""
    log = get_surge_log(db_path, slug)
    if not log:
        return None
    return max(log, key=lambda e: e.timestamp)


def find_in_progress_session(db_path: str, slug: str) -> Optional[SurgeLogEntry]:
    unfinished = [e for e in get_surge_log(db_path, slug) if IN_PROGRESS_MARKER in e.summary]
    if not unfinished:
        return None
    return max(unfinished, key=lambda e: e.timestamp)


def upsert_surge_log_entry(db_path: str, slug: str, entry: SurgeLogEntry,
                           settings: Optional[Settings] = None) -> SurgeLogEntry:
    """Insert or update a log entry by session id and save.

    An existing entry keeps its stored timestamp. Other entries are written
    back exactly as loaded, and only the newest entries are retained.
    """
    data = _load_or_new(db_path, slug)
    log = _raw_surge_log(data)
    incoming = entry.to_dict()
    idx = next((i for i, e in enumerate(log) if e.get("sessionId") == entry.session_id), -1)
    if idx >= 0:
        merged = {**log[idx], **incoming, "timestamp": log[idx].get("timestamp", entry.timestamp)}
        log[idx] = merged
        logger.debug("Updated surge log entry %s in place", entry.session_id)
    else:
        merged = incoming
        log.append(merged)
        logger.debug("Added surge log entry %s (%d total)", entry.session_id, len(log))
    if len(log) > SURGE_LOG_LIMIT:
        log = log[-SURGE_LOG_LIMIT:]
    data["surgeLog"] = log
    save_subject_data_synced(db_path, slug, data, settings)
    return SurgeLogEntry.from_dict(merged)


def update_surge_entry_timestamp(db_path: str, slug: str, session_id: str, timestamp: int,
                                 settings: Optional[Settings] = None) -> bool:
    data = load_subject_data(db_path, slug)
    log = _raw_surge_log(data)
    for e in log:
        if e.get("sessionId") == session_id:
            e["timestamp"] = int(timestamp)
            data["surgeLog"] = log
            save_subject_data_synced(db_path, slug, data, settings)
            return True
    return False


def get_reviewed_topics(db_path: str, slug: str) -> dict[str, int]:
    data = load_subject_data(db_path, slug)
    reviewed = (data or {}).get("reviewedTopics")
    return dict(reviewed) if isinstance(reviewed, dict) else {}


def mark_topics_reviewed(db_path: str, slug: str, topics, now: Optional[int] = None,
                         settings: Optional[Settings] = None) -> None:
    topics = [t for t in topics if t]
    data = load_subject_data(db_path, slug)
    if not topics or data is None:
        return
    now = now if now is not None else now_ms()
    reviewed = data.get("reviewedTopics") if isinstance(data.get("reviewedTopics"), dict) else {}
    for topic in topics:
        reviewed[topic] = now
    data["reviewedTopics"] = reviewed
    save_subject_data_synced(db_path, slug, data, settings)


def persist_surge_lesson(db_path: str, slug: str, session_id: str, topic: str, lesson: str,
                         settings: Optional[Settings] = None, last_signature: Optional[str] = None) -> Optional[str]:
    """File a Surge lesson under its topic in the course.

    The lesson is stored once per session and updated on later calls.
    Returns the lesson signature, or None when nothing was written.
    """
    body = (lesson or "").strip()
    if not body or not topic or len(body) < MIN_SURGE_LESSON_CHARS:
        return None
    signature = f"{session_id}:{topic}:{len(body)}:{stable_text_hash(body)}"
    if signature == last_signature:
        return None

    data = load_subject_data(db_path, slug)
    if data is None:
        data = new_subject_data(slug)
        data["tree"] = {"subject": slug, "topics": []}
    nodes = data.setdefault("nodes", {})
    node = nodes.get(topic)
    if not isinstance(node, dict):
        node = {"overview": "", "symbols": [], "lessons": [], "lessonsMeta": []}
    lessons = list(node.get("lessons") or [])
    meta = list(node.get("lessonsMeta") or [])

    idx = next((i for i, l in enumerate(lessons) if isinstance(l, dict) and l.get("surgeSessionId") == session_id), -1)
    ts = now_ms()
    previous = lessons[idx] if idx >= 0 else {}
    title = previous.get("title") or f"{topic} (Surge Lesson)"
    record = {
        **previous,
        "title": title,
        "body": body,
        "quiz": previous.get("quiz") if isinstance(previous.get("quiz"), list) else [],
        "origin": "surge",
        "surgeSessionId": session_id,
        "createdAt": previous.get("createdAt") or ts,
        "updatedAt": ts,
    }
    if idx >= 0:
        lessons[idx] = record
        while len(meta) <= idx:
            meta.append(None)
        meta[idx] = {"type": "Surge Lesson", "title": title}
    else:
        lessons.append(record)
        meta.append({"type": "Surge Lesson", "title": title})
    node["lessons"] = lessons
    node["lessonsMeta"] = meta
    nodes[topic] = node

    topics = list(data.get("topics") or [])
    if not any(isinstance(t, dict) and t.get("name") == topic for t in topics):
        topics.append({"name": topic, "summary": ""})
    data["topics"] = topics

    tree = data.get("tree") if isinstance(data.get("tree"), dict) else {}
    tree_topics = list(tree.get("topics") or [])
    if not any(isinstance(t, dict) and t.get("name") == topic for t in tree_topics):
        tree_topics.append({"name": topic, "subtopics": []})
    data["tree"] = {"subject": tree.get("subject") or data.get("subject") or slug, "topics": tree_topics}

    progress = dict(data.get("progress") or {})
    current = progress.get(topic) or {"totalLessons": 0, "completedLessons": 0}
    progress[topic] = {
        **current,
        "totalLessons": len(lessons),
        "completedLessons": min(current.get("completedLessons") or 0, len(lessons)),
    }
    data["progress"] = progress

    save_subject_data_synced(db_path, slug, data, settings)
    return signature


# Practice log and starred flashcards

def load_practice_log(db_path: str, slug: str) -> list[PracticeLogEntry]:
    raw = get_json(db_path, PRACTICE_LOG_PREFIX + slug, default=[])
    if not isinstance(raw, list):
        return []
    return [PracticeLogEntry.from_dict(e) for e in raw if isinstance(e, dict)]


def append_practice_log_entry(db_path: str, slug: str, entry: PracticeLogEntry) -> list[PracticeLogEntry]:
    log = load_practice_log(db_path, slug)
    log.append(entry)
    set_json(db_path, PRACTICE_LOG_PREFIX + slug, [e.to_dict() for e in log])
    return log


def load_starred_flashcards(db_path: str, slug: str) -> set[str]:
    raw = get_json(db_path, STARRED_PREFIX + slug, default=[])
    return {str(x) for x in raw} if isinstance(raw, list) else set()


def toggle_starred_flashcard(db_path: str, slug: str, flashcard_id: str) -> bool:
    """Flip the star on a flashcard. Returns True if it is now starred."""
    starred = load_starred_flashcards(db_path, slug)
    if flashcard_id in starred:
        starred.remove(flashcard_id)
        now_starred = False
    else:
        starred.add(flashcard_id)
        now_starred = True
    set_json(db_path, STARRED_PREFIX + slug, sorted(starred))
    return now_starred
