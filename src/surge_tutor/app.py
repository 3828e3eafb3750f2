"""Interactive CLI application."""
import logging
import re
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from surge_tutor import api
from surge_tutor.config import Settings, load_settings
from surge_tutor.db import init_db
from surge_tutor.errors import QuizGenerationError, TutorError
from surge_tutor.explain import explain_word, find_word_at, lesson_words, paragraph_at
from surge_tutor.flashcards import (
    collect_flashcards, flashcard_id, generate_lesson_flashcards, get_lesson, get_starred_cards, toggle_star,
)
from surge_tutor.models import PHASES, SurgeQuizQuestion, SurgeQuizResponse
from surge_tutor.prompts import course_language
from surge_tutor.quiz import option_letter
from surge_tutor.review import get_weak_topics
from surge_tutor.storage import (
    get_lessons_due_for_review, get_surge_log, get_upcoming_reviews, list_subject_slugs,
    load_starred_flashcards, load_subject_data, mark_lesson_reviewed, new_subject_data,
    save_subject_data_synced, update_surge_entry_timestamp, upsert_node_content_synced,
)
from surge_tutor.surge import SurgeSession

console = Console()
logger = logging.getLogger(__name__)

EXIT_WORDS = ("q", "menu")


class SessionExitRequested(Exception):
    """The user typed q or menu inside a session."""


def session_prompt(prompt: str, **kwargs) -> str:
    answer = Prompt.ask(prompt, **kwargs)
    if (answer or "").strip().lower() in EXIT_WORDS:
        raise SessionExitRequested()
    return answer


def session_int_prompt(prompt: str, choices: list[str]) -> int:
    while True:
        answer = session_prompt(f"{prompt} [{'/'.join(choices)}]").strip()
        if answer in choices:
            return int(answer)
        console.print("[red]Please pick one of the listed options.[/red]")


def setup_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "course"


def format_ts(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000).strftime("%Y-%m-%d %H:%M")


def show_welcome():
    console.print(Panel(
        "[bold]Surge Tutor[/bold]\n[dim]Learn a topic a day, review what you learned[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("surge", "Daily Surge: review, learn, quiz"),
        ("lesson", "Read a lesson, explain words, flashcards"),
        ("courses", "List or create courses"),
        ("reviews", "Lessons due for review"),
        ("log", "Past Surge sessions"),
        ("flashcards", "Lesson flashcards, all or starred"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")
    console.print("[dim]Type q or menu inside a session to return here.[/dim]")


def pick_course(db_path: str) -> Optional[str]:
    slugs = list_subject_slugs(db_path)
    if not slugs:
        console.print("[yellow]No courses yet. Use 'courses' to create one.[/yellow]")
        return None
    if len(slugs) == 1:
        return slugs[0]
    for i, slug in enumerate(slugs, 1):
        data = load_subject_data(db_path, slug) or {}
        console.print(f"  [cyan]{i}[/cyan]) {data.get('subject') or slug}")
    idx = session_int_prompt("Select course", [str(i) for i in range(1, len(slugs) + 1)])
    return slugs[idx - 1]


# Courses

def cmd_courses(db_path: str, settings: Settings):
    table = Table(title="Courses")
    table.add_column("Slug", style="cyan")
    table.add_column("Course")
    table.add_column("Topics", justify="right")
    table.add_column("Lessons", justify="right")
    table.add_column("Surge sessions", justify="right")
    for slug in list_subject_slugs(db_path):
        data = load_subject_data(db_path, slug) or {}
        nodes = data.get("nodes") or {}
        lessons = sum(len(n.get("lessons") or []) for n in nodes.values() if isinstance(n, dict))
        table.add_row(slug, data.get("subject") or slug, str(len(data.get("topics") or [])),
                      str(lessons), str(len(data.get("surgeLog") or [])))
    console.print(table)

    if Prompt.ask("Create a new course?", choices=["y", "n"], default="n") != "y":
        return
    name = Prompt.ask("Course name").strip()
    if not name:
        return
    slug = slugify(name)
    if load_subject_data(db_path, slug):
        console.print(f"[yellow]A course with slug '{slug}' already exists.[/yellow]")
        return
    summary = Prompt.ask("Short course summary", default="")
    topics = [t.strip() for t in Prompt.ask("Topics (comma separated)", default="").split(",") if t.strip()]
    data = new_subject_data(slug, subject=name, course_context=summary)
    data["topics"] = [{"name": t, "summary": "", "coverage": 0} for t in topics]
    data["tree"] = {"subject": name, "topics": [{"name": t, "subtopics": []} for t in topics]}
    save_subject_data_synced(db_path, slug, data, settings)
    console.print(f"[green]Created course {name} ({slug}).[/green]")


# Quiz screens

def show_question(q: SurgeQuizQuestion, number: int, total: int) -> None:
    label = {"mc": "Multiple choice", "harder": "Harder question", "review": "Review"}.get(q.stage, q.stage)
    title = f"{label} {number}/{total}" + (f" - {q.topic}" if q.topic else "")
    body = q.question
    if q.type == "mc":
        body += "\n\n" + "\n".join(f"[cyan]{option_letter(i)})[/cyan] {opt}" for i, opt in enumerate(q.options))
    console.print(Panel(body, title=title, border_style="cyan"))


def show_response(q: SurgeQuizQuestion, r: SurgeQuizResponse) -> None:
    if q.type == "mc":
        if r.is_correct:
            console.print("[green]Correct![/green]")
        else:
            console.print(f"[red]Incorrect.[/red] Answer: [green]{q.correct_option}[/green]")
        if q.explanation:
            console.print(f"[dim]{q.explanation}[/dim]")
        return
    color = "green" if r.is_correct else ("yellow" if r.is_correct is None else "red")
    console.print(f"[{color}]Score: {r.score}/10[/{color}]")
    if r.assessment:
        console.print(r.assessment)
    if r.whats_good:
        console.print(f"[green]Good:[/green] {r.whats_good}")
    if r.whats_bad:
        console.print(f"[red]Missing:[/red] {r.whats_bad}")
    explanation = r.enhanced_explanation or q.model_answer
    if explanation:
        console.print(Panel(Markdown(explanation), title="Model answer", border_style="green"))


def run_surge_quiz(session: SurgeSession) -> str:
    """Ask questions until the run ends; returns the final quiz outcome."""
    while True:
        q = session.run.current
        if q is None:
            return "finished"
        stage_questions = session.run.stage_questions(q.stage)
        show_question(q, stage_questions.index(q) + 1, len(stage_questions))
        if q.type == "mc":
            letters = [option_letter(i) for i in range(len(q.options))]
            answer = session_prompt("Your answer", choices=letters + [l.lower() for l in letters] + list(EXIT_WORDS),
                                    show_choices=False)
            response = session.answer_mc(answer)
        else:
            answer = session_prompt("Your answer")
            with console.status("Grading..."):
                response = session.answer_short(answer)
        show_response(q, response)
        console.print()

        while True:
            try:
                with console.status("Loading next questions..."):
                    outcome = session.next_question()
                break
            except QuizGenerationError as e:
                console.print(f"[red]{e.user_message}[/red] [dim]({e.detail})[/dim]")
                if Prompt.ask("Retry?", choices=["y", "n"], default="y") != "y":
                    raise SessionExitRequested()
        if outcome == "harder_started":
            console.print(Panel("Multiple choice done. Now some harder questions.", border_style="magenta"))
        elif outcome in ("finished", "review_finished"):
            return outcome


# Surge

def surge_repeat(session: SurgeSession) -> None:
    if session.welcome_needed():
        console.print(Panel(
            "This is your first Surge session for this course.\n"
            "Each Surge reviews what you learned last time, teaches one new topic, then quizzes you on it.\n"
            "Let's pick your first topic.",
            title="Welcome to Surge", border_style="magenta",
        ))
        session.finish_review()
        return

    topics = session.topics_to_review()
    if not topics:
        console.print("[green]All past topics are reviewed.[/green]")
        if Prompt.ask("Answer a practice question first?", choices=["y", "n"], default="n") == "y":
            with console.status("Chad is thinking..."):
                question = session.practice_question()
            console.print(Panel(Markdown(question), title="Practice", border_style="cyan"))
            answer = session_prompt("Your answer")
            with console.status("Grading..."):
                entry = session.log_practice_answer(question, answer)
            if entry:
                console.print(f"[bold]{entry.grade}/10[/bold] on {entry.topic}. {entry.assessment}")
            else:
                console.print("[dim]Not logged: that did not look like an answer.[/dim]")
        session.finish_review()
        return

    console.print(Panel("\n".join(f"- {t}" for t in topics), title="Topics to review", border_style="magenta"))
    while True:
        try:
            with console.status("Preparing review questions..."):
                session.request_review_questions()
            break
        except QuizGenerationError as e:
            console.print(f"[red]{e.user_message}[/red] [dim]({e.detail})[/dim]")
            if Prompt.ask("Retry?", choices=["y", "n"], default="y") != "y":
                console.print("[dim]Skipping review for now.[/dim]")
                return
    run_surge_quiz(session)
    console.print("[green]Review done.[/green]")


def surge_learn(session: SurgeSession) -> None:
    if not session.topic:
        with console.status("Chad is thinking..."):
            topics = session.suggest_topics()
        for i, topic in enumerate(topics, 1):
            console.print(f"  [cyan]{i}[/cyan]) {topic}")
        raw = session_prompt("Pick a topic number or type your own").strip()
        if raw.isdigit() and 1 <= int(raw) <= len(topics):
            session.choose_topic(topics[int(raw) - 1])
        elif raw:
            session.choose_topic(raw)
        else:
            return

    if not session.new_topic_lesson:
        with console.status(f"Writing the lesson on {session.topic}..."):
            for _ in session.stream_lesson():
                pass
    console.print(Panel(Markdown(session.new_topic_lesson), title=session.topic, border_style="blue"))
    session_prompt("[dim]Press Enter to start the quiz[/dim]", default="")


def surge_quiz(session: SurgeSession) -> None:
    while True:
        try:
            with console.status("Chad is writing your quiz..."):
                session.start_quiz()
            break
        except QuizGenerationError as e:
            console.print(f"[red]{e.user_message}[/red] [dim]({e.detail})[/dim]")
            if Prompt.ask("Retry?", choices=["y", "n"], default="y") != "y":
                return
    if not session.run.questions:
        console.print("[yellow]Finish the lesson before taking the quiz.[/yellow]")
        return
    run_surge_quiz(session)


def show_surge_summary(session: SurgeSession) -> None:
    results = session.quiz_results
    table = Table(title=f"Surge complete: {session.topic}")
    table.add_column("Stage")
    table.add_column("Question")
    table.add_column("Grade", justify="right")
    for r in results:
        table.add_row(r.stage, r.question[:70], f"{r.grade:g}/10")
    console.print(table)
    console.print(f"[dim]{session.summary(True)}[/dim]")


def cmd_surge(db_path: str, settings: Settings):
    slug = pick_course(db_path)
    if not slug:
        return
    session = SurgeSession(db_path, slug, settings)
    tabs = "  ".join(f"[bold reverse] {p} [/bold reverse]" if p == session.phase else f"[dim]{p}[/dim]"
                     for p in PHASES)
    console.print(Panel(tabs, title=f"Surge: {session.course_name}", border_style="magenta"))
    choice = Prompt.ask("Jump to phase (Enter to continue)", choices=["", "repeat", "learn", "quiz"],
                        default="", show_choices=True)
    if choice and choice != session.phase:
        session.select_phase(choice)

    try:
        while True:
            if session.phase == "repeat":
                surge_repeat(session)
                if session.phase == "repeat":
                    session.select_phase("learn")
            elif session.phase == "learn":
                surge_learn(session)
                if not session.topic:
                    return
                surge_quiz(session)
                if session.phase != "complete":
                    return
            elif session.phase == "quiz":
                if not session.topic:
                    console.print("[yellow]Pick a topic in the learn phase first.[/yellow]")
                    session.select_phase("learn")
                    continue
                surge_quiz(session)
                if session.phase != "complete":
                    return
            else:
                show_surge_summary(session)
                return
    except SessionExitRequested:
        console.print("[dim]Progress saved. Run 'surge' again to pick up where you left off.[/dim]")


# Lessons

def pick_topic(data: dict) -> Optional[str]:
    names = [t.get("name") for t in data.get("topics") or [] if isinstance(t, dict) and t.get("name")]
    for name in (data.get("nodes") or {}):
        if name not in names:
            names.append(name)
    if not names:
        console.print("[yellow]This course has no topics yet.[/yellow]")
        return None
    for i, name in enumerate(names, 1):
        node = (data.get("nodes") or {}).get(name)
        count = len(node.get("lessons") or []) if isinstance(node, dict) else 0
        console.print(f"  [cyan]{i}[/cyan]) {name} [dim]({count} lessons)[/dim]")
    idx = session_int_prompt("Select topic", [str(i) for i in range(1, len(names) + 1)])
    return names[idx - 1]


def generate_first_lesson(db_path: str, settings: Settings, slug: str, data: dict, topic: str) -> None:
    node = (data.get("nodes") or {}).get(topic)
    node = node if isinstance(node, dict) else {"overview": "", "symbols": [], "lessons": [], "lessonsMeta": []}
    meta = node.get("lessonsMeta") or [{"type": "Full Lesson", "title": topic}]
    summary = next((t.get("summary", "") for t in data.get("topics") or []
                    if isinstance(t, dict) and t.get("name") == topic), "")
    with console.status(f"Writing a lesson on {topic}..."):
        result = api.node_lesson(
            settings, subject=data.get("subject") or slug, topic=topic, lessons_meta=meta,
            course_context=data.get("course_context") or "",
            combined_text=(data.get("combinedText") or "")[:20_000], topic_summary=summary,
            course_topics=[t.get("name") for t in data.get("topics") or [] if isinstance(t, dict)],
            language_name=course_language(data) or "",
        )
    lesson = result["data"]
    if not lesson.get("body"):
        console.print("[red]The lesson came back empty. Try again.[/red]")
        return
    node = {**node, "lessons": [{"title": lesson.get("title") or topic, "body": lesson["body"],
                                 "quiz": lesson.get("quiz") or []}], "lessonsMeta": meta}
    upsert_node_content_synced(db_path, slug, topic, node, settings)


def run_flashcard_session(db_path: str, slug: str, cards: list[dict]) -> None:
    if not cards:
        console.print("[yellow]No flashcards here yet.[/yellow]")
        return
    starred = load_starred_flashcards(db_path, slug)
    console.print(f"\n[bold]Flashcards[/bold] ({len(cards)} cards)\n")
    for i, card in enumerate(cards, 1):
        star = " *" if card["id"] in starred else ""
        console.print(Panel(Markdown(card["prompt"]), title=f"Card {i}/{len(cards)}{star}", border_style="cyan"))
        session_prompt("[dim]Press Enter to reveal answer[/dim]", default="")
        console.print(Panel(Markdown(card["answer"]), border_style="green"))
        if session_prompt("[dim]s to star or unstar, Enter for next[/dim]", default="").strip().lower() == "s":
            now_starred = toggle_star(db_path, slug, card)
            console.print("[yellow]Starred.[/yellow]" if now_starred else "[dim]Unstarred.[/dim]")


def run_mc_quiz(questions: list[dict]) -> tuple[int, int]:
    correct = 0
    for i, q in enumerate(questions, 1):
        console.print(f"[bold]Q{i}.[/bold] {q['question']}\n")
        for j, opt in enumerate(q["options"]):
            console.print(f"  [cyan]{option_letter(j).lower()})[/cyan] {opt}")
        answer = session_prompt("\nYour answer", choices=["a", "b", "c", "d", *EXIT_WORDS], show_choices=False)
        if "abcd".index(answer) == q["correctAnswer"]:
            console.print("[green]Correct![/green]")
            correct += 1
        else:
            console.print(f"[red]Incorrect.[/red] Answer: [green]{option_letter(q['correctAnswer']).lower()}[/green]")
        console.print()
    console.print(f"[bold]Score: {correct}/{len(questions)} ({correct/len(questions)*100:.0f}%)[/bold]\n")
    return correct, len(questions)


def explain_in_lesson(settings: Settings, data: dict, slug: str, topic: str, body: str) -> None:
    word = session_prompt("Word to explain (or #n for the n-th word)").strip()
    words = lesson_words(body)
    if word.startswith("#") and word[1:].isdigit():
        n = int(word[1:])
        if not 1 <= n <= len(words):
            console.print("[red]No such word.[/red]")
            return
        offset = words[n - 1][0]
    else:
        offset = body.find(word)
        if offset < 0:
            console.print("[red]That word is not in the lesson.[/red]")
            return
    found = find_word_at(body, offset)
    if not found:
        console.print("[red]No word at that position.[/red]")
        return
    picked, start, _ = found
    with console.status(f"Explaining {picked}..."):
        text = explain_word(settings, data, slug, topic, picked, paragraph_at(body, start))
    console.print(Panel(Markdown(text), title=picked, border_style="yellow"))


def cmd_lesson(db_path: str, settings: Settings):
    slug = pick_course(db_path)
    if not slug:
        return
    data = load_subject_data(db_path, slug) or {}
    topic = pick_topic(data)
    if not topic:
        return
    if not get_lesson(data, topic, 0):
        generate_first_lesson(db_path, settings, slug, data, topic)
        data = load_subject_data(db_path, slug) or {}

    lessons = ((data.get("nodes") or {}).get(topic) or {}).get("lessons") or []
    if not lessons:
        return
    index = 0
    if len(lessons) > 1:
        for i, lesson in enumerate(lessons, 1):
            console.print(f"  [cyan]{i}[/cyan]) {lesson.get('title')}")
        index = session_int_prompt("Select lesson", [str(i) for i in range(1, len(lessons) + 1)]) - 1
    lesson = lessons[index]
    console.print(Panel(Markdown(lesson.get("body") or ""), title=lesson.get("title") or topic, border_style="blue"))

    while True:
        action = Prompt.ask(
            "Action", choices=["explain", "flashcards", "quiz", "reviewed", "back"], default="back",
        )
        if action == "back":
            return
        if action == "explain":
            explain_in_lesson(settings, data, slug, topic, lesson.get("body") or "")
        elif action == "flashcards":
            cards = lesson.get("flashcards") or []
            if not cards:
                count = session_int_prompt("How many cards", ["3", "5", "7", "9"])
                with console.status("Writing flashcards..."):
                    cards = generate_lesson_flashcards(db_path, settings, slug, topic, index, count)
                lesson = {**lesson, "flashcards": cards}
            title = lesson.get("title") or ""
            run_flashcard_session(db_path, slug, [
                {**c, "id": flashcard_id(slug, topic, title, i, c["prompt"])} for i, c in enumerate(cards)
            ])
        elif action == "quiz":
            with console.status("Writing quiz..."):
                result = api.generate_mc_quiz(
                    settings, lesson.get("body") or "", subject=data.get("subject") or slug, topic=topic,
                    course_context=data.get("course_context") or "", language_name=course_language(data) or "",
                )
            run_mc_quiz(result["questions"])
        elif action == "reviewed":
            quality = session_int_prompt("How well did you know it (0=forgot, 3=okay, 5=perfect)",
                                         ["0", "1", "2", "3", "4", "5"])
            schedule = mark_lesson_reviewed(db_path, slug, topic, index, quality, settings=settings)
            if schedule:
                console.print(f"[green]Next review {format_ts(schedule.next_review)}[/green]")


# Reviews, log, starred cards

def cmd_reviews(db_path: str):
    slug = pick_course(db_path)
    if not slug:
        return
    due = get_lessons_due_for_review(db_path, slug)
    upcoming = get_upcoming_reviews(db_path, slug, 7)
    if not due and not upcoming:
        console.print("[green]Nothing scheduled. Mark lessons reviewed from 'lesson'.[/green]")
    for title, rows in (("Due now", due), ("Next 7 days", upcoming)):
        if not rows:
            continue
        table = Table(title=title)
        table.add_column("Topic", style="cyan")
        table.add_column("Lesson", justify="right")
        table.add_column("Due")
        table.add_column("Interval", justify="right")
        table.add_column("Reviews", justify="right")
        for s in rows:
            table.add_row(s.topic, str(s.lesson_index + 1), format_ts(s.next_review),
                          f"{s.interval:g}d", str(s.review_count))
        console.print(table)

    weak = get_weak_topics(db_path, slug)
    if weak:
        console.print("\n[bold]Weakest practice topics:[/bold]")
        for w in weak[:5]:
            console.print(f"  [red]{w['average_grade']}/10[/red] {w['topic']} ({w['answers']} answers)")


def cmd_log(db_path: str, settings: Settings):
    slug = pick_course(db_path)
    if not slug:
        return
    log = sorted(get_surge_log(db_path, slug), key=lambda e: e.timestamp, reverse=True)
    if not log:
        console.print("[yellow]No Surge sessions yet.[/yellow]")
        return
    table = Table(title="Surge log")
    table.add_column("#", justify="right")
    table.add_column("Date")
    table.add_column("New topic", style="cyan")
    table.add_column("Questions", justify="right")
    table.add_column("Status")
    for i, entry in enumerate(log, 1):
        status = "[green]Done[/green]" if entry.is_complete else "[yellow]In progress[/yellow]"
        table.add_row(str(i), format_ts(entry.timestamp), entry.new_topic or "-",
                      str(len(entry.quiz_results)), status)
    console.print(table)

    if Prompt.ask("Edit a session date?", choices=["y", "n"], default="n") != "y":
        return
    idx = session_int_prompt("Session", [str(i) for i in range(1, len(log) + 1)])
    raw = Prompt.ask("New date (YYYY-MM-DD)")
    try:
        when = datetime.strptime(raw.strip(), "%Y-%m-%d")
    except ValueError:
        console.print("[red]Use the YYYY-MM-DD format.[/red]")
        return
    entry = log[idx - 1]
    keep_time = datetime.fromtimestamp(entry.timestamp / 1000)
    when = when.replace(hour=keep_time.hour, minute=keep_time.minute, second=keep_time.second)
    update_surge_entry_timestamp(db_path, slug, entry.session_id, int(when.timestamp() * 1000), settings)
    console.print(f"[green]Moved session to {when:%Y-%m-%d}.[/green]")


def cmd_flashcards(db_path: str):
    slug = pick_course(db_path)
    if not slug:
        return
    which = session_prompt("Cards", choices=["all", "starred", *EXIT_WORDS], default="starred", show_choices=False)
    if which == "all":
        cards = collect_flashcards(db_path, slug)
    else:
        cards = get_starred_cards(db_path, slug)
    run_flashcard_session(db_path, slug, cards)


def main():
    settings = load_settings()
    setup_logging(settings.log_level)
    db_path = settings.db_path
    init_db(db_path)

    show_welcome()

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="surge").strip().lower()
        try:
            if choice == "surge":
                cmd_surge(db_path, settings)
            elif choice == "lesson":
                cmd_lesson(db_path, settings)
            elif choice == "courses":
                cmd_courses(db_path, settings)
            elif choice == "reviews":
                cmd_reviews(db_path)
            elif choice == "log":
                cmd_log(db_path, settings)
            elif choice == "flashcards":
                cmd_flashcards(db_path)
            elif choice in ("quit", "exit", "q"):
                console.print("[dim]See you next Surge![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except SessionExitRequested:
            console.print("[dim]Back to menu.[/dim]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except TutorError as e:
            logger.debug("Command %s failed", choice, exc_info=True)
            console.print(Panel(str(e), title="Error", border_style="red"))


if __name__ == "__main__":
    main()
