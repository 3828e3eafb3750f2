"""Prompt text for lessons, quizzes, grading and Surge sessions."""
import json
from typing import Optional

from surge_tutor.models import PracticeLogEntry, SurgeLogEntry

COURSE_FILES_CHARS = 20_000
PRACTICE_LOG_CONTEXT_ENTRIES = 20

TOPIC_SUGGESTION_SYSTEM_MESSAGE = (
    "You must output exactly 4 topic suggestions. If you can only find 3, split the most valuable "
    "concept into two actionable subtopics so there are still 4 lines.\n"
    "Format:\n"
    "TOPIC_SUGGESTION: Topic Name 1\n"
    "TOPIC_SUGGESTION: Topic Name 2\n"
    "TOPIC_SUGGESTION: Topic Name 3\n"
    "TOPIC_SUGGESTION: Topic Name 4\n\n"
    "Do not write anything else. No explanations, no introductions, no dashes, no bullets. "
    "Just those 4 lines starting with TOPIC_SUGGESTION."
)

NOVA_SYSTEM = "\n".join([
    "You are Nova, an AI tutor.",
    "Answer any question. Be concise, direct, and clear. Short sentences. No fluff.",
    "Use the provided CONTEXT if it helps. Treat it as useful background, not a hard constraint.",
    "Prefer bullet points where helpful. Use Markdown. Equations in KaTeX ($...$). Code in fenced blocks.",
    "If something depends on assumptions or missing data, state it explicitly.",
])


def lesson_rules(language_name: Optional[str]) -> list[str]:
    """Rules for one long Markdown lesson, shared by lesson streaming and Surge."""
    return [
        "You produce ONE comprehensive GitHub Flavored Markdown lesson that teaches the assigned topic "
        "from zero knowledge to problem-solving ability.",
        "",
        "LENGTH:",
        "- Minimum 3000 words of prose (explanations only). Target 4000-6000 if needed for full understanding.",
        "- Do not count code blocks, LaTeX delimiters, JSON, or formatting.",
        "- No filler. Use real explanatory depth.",
        "",
        "OUTPUT:",
        "- Output a single Markdown document only.",
        "- Do NOT include any JSON metadata block.",
        "- Just write the lesson content directly in Markdown.",
        "",
        "MARKDOWN RULES:",
        "- Use headings: #, ##, ### only.",
        "- Use blank lines around headings, lists, tables, code fences, and display math.",
        "- Tables must use pipe-syntax.",
        "- Code fences must specify language and be runnable.",
        "- Math uses inline $...$ and display \\[ ... \\]. No environments (align etc.).",
        "- No links, images, Mermaid, or HTML.",
        "",
        "PEDAGOGY:",
        "- Assume zero prior knowledge. Define all symbols and notation when first used.",
        "- Structure adaptively depending on the topic. No rigid template.",
        "- Build from intuition to formal definitions to deeper understanding to applications.",
        "- Include multiple worked examples if they genuinely help the topic. Each example must be complete "
        "and step-by-step.",
        "",
        "SYMBOL TABLE:",
        "- At the very bottom, create a small Markdown table listing symbols, notations, or short concepts ONLY "
        "if the lesson introduced non-obvious symbols that students must keep track of.",
        "",
        "SUMMARY (MANDATORY):",
        "- End the lesson with a clear summary section under a heading such as '# Summary' or '## Summary'.",
        "- Concisely restate the core concepts, formulas, and procedures so they are easy to grasp at a glance.",
        "- Do NOT introduce any new concepts in the summary.",
        "",
        "SCOPE:",
        "- CRITICAL: Focus EXCLUSIVELY on the assigned topic. Do NOT teach other topics, even if they are related.",
        "- Do NOT introduce concepts from other topics in the course unless they are absolutely prerequisite "
        "and already covered.",
        "- If course_context mentions a specific practice question, emphasize the method relevant to that "
        "question while still covering the full topic.",
        "- Every example, explanation, and concept must directly relate to the assigned topic.",
        "",
        "LANGUAGE:",
        f"- Write all metadata and prose in {language_name or 'English'}.",
        "",
        "FINAL RULE:",
        "- If the prose is under 3000 words when finished, extend explanations or add more depth until "
        "requirements are satisfied.",
    ]


def course_language(data: Optional[dict]) -> Optional[str]:
    if not data:
        return None
    if data.get("course_language_name"):
        return data["course_language_name"]
    code = data.get("course_language_code")
    return code.upper() if code else None


def _topics_to_repeat(last_surge: SurgeLogEntry) -> list[str]:
    return [rt.topic for rt in last_surge.repeated_topics] + [last_surge.new_topic]


def build_surge_context(slug: str, data: Optional[dict], practice_log: list[PracticeLogEntry],
                        last_surge: Optional[SurgeLogEntry], exam_snipe_data: Optional[str],
                        phase: str, current_topic: str) -> str:
    """Assemble the Surge prompt for a phase, followed by the course material."""
    language = course_language(data)
    course_name = (data or {}).get("subject") or slug
    lines = [f'SURGE MODE ACTIVE FOR COURSE "{course_name}" (slug: {slug})', ""]

    if phase == "repeat":
        lines += ["CURRENT PHASE: REPEAT - Testing understanding of previously learned topics", ""]
        if last_surge:
            lines.append("TOPICS FROM LAST SURGE SESSION:")
            lines += [f"• {t}" for t in _topics_to_repeat(last_surge)]
            lines += [
                "",
                "INSTRUCTIONS:",
                "- Generate focused quiz questions (at least 3 per topic) that test the most fundamental "
                "and important parts",
                "- Questions must be DIFFERENT from previous questions asked about these topics",
                "- Focus on understanding and implementation of core concepts",
                "- Test the most important aspects that the user needs to remember",
            ]
        else:
            lines += [
                "FIRST SURGE SESSION - No previous topics to repeat",
                "Skip to LEARN phase or ask general course overview questions",
            ]
    elif phase == "learn" and not current_topic:
        lines += [
            "CURRENT PHASE: LEARN - Suggesting and teaching a new topic",
            "",
            "INITIAL STEP - TOPIC SELECTION:",
            "- CRITICAL: You MUST use the COURSE CONTEXT section below (course files, course summary, "
            "available topics)",
            "- Analyze what topics have been covered in previous Surge sessions",
            "- Check exam snipe analysis for high-priority concepts FROM THIS COURSE",
            "- Review course material topics from the COURSE CONTEXT section",
            "- Suggest exactly 4 topics that would provide maximum study value FOR THIS SPECIFIC COURSE",
            "- Prioritize: (1) Exam snipe concepts not yet covered, (2) Course topics not yet learned",
            "- CRITICAL: Use the exact concept names from EXAM SNIPE ANALYSIS or the course topics list. "
            "Do NOT output broad categories. Pick actionable, exam-ready topics.",
            "- ALL topic suggestions MUST be relevant to this course and based on the course context provided",
        ]
        if language:
            lines.append(
                f"- LANGUAGE REQUIREMENT: Output all topic names exactly as they appear in {language} "
                "(the course language). Do NOT translate them into any other language."
            )
        lines += [
            "",
            "CRITICAL OUTPUT REQUIREMENTS:",
            "- You MUST return four distinct topics. Invent closely-related subtopics if needed.",
            "- Your ENTIRE response must be EXACTLY these 4 lines (copy this format exactly):",
            "TOPIC_SUGGESTION: Topic Name 1",
            "TOPIC_SUGGESTION: Topic Name 2",
            "TOPIC_SUGGESTION: Topic Name 3",
            "TOPIC_SUGGESTION: Topic Name 4",
            "",
            "ABSOLUTE RULES:",
            "- If you can only find 3 concepts, split the most important one into two high-value subtopics.",
            "- DO NOT use dashes, bullets, or any other formatting",
            "- DO NOT write ANY text before the first TOPIC_SUGGESTION line or after the last one",
            "- START your response immediately with 'TOPIC_SUGGESTION:' (no spaces before it)",
            "- Each line must start with 'TOPIC_SUGGESTION: ' followed by the topic name",
        ]
    elif phase == "learn":
        lines += ["CURRENT PHASE: LEARN - Suggesting and teaching a new topic", ""]
        lines += lesson_rules(language)
        lines += [
            "",
            f'SURGE MODE ACTIVE FOR COURSE "{course_name}"',
            "CURRENT PHASE: LEARN",
            f"TEACHING TOPIC: {current_topic}",
            "",
            "Use:",
            "• COURSE CONTEXT",
            "• COURSE FILES (first 20k chars)",
            "• AVAILABLE TOPICS",
            "• EXAM SNIPE ANALYSIS",
            "• PAST SURGE SESSIONS",
        ]
    elif phase == "quiz":
        lines += [
            "CURRENT PHASE: QUIZ - Testing the new topic",
            "",
            "INSTRUCTIONS FOR QUIZ GENERATION:",
            "- Generate exactly 5 multiple choice questions first (progressing from easy to hard, focusing on "
            "understanding and implementation)",
            "- Format each MC question EXACTLY as: ◊MC: Question text? A) Option 1 B) Option 2 C) Option 3 "
            "D) Option 4 || CORRECT: <letter> || EXPLANATION: <short explanation>◊",
            "- CORRECT must be the letter (A, B, C, D) for the right option, EXPLANATION must describe why "
            "it is correct",
            "- After 5 MC questions are answered, generate 4 harder questions (short answer or explanation)",
            "- Format each harder question EXACTLY as: ◊SA: Question text? || MODEL_ANSWER: <ideal answer> "
            "|| EXPLANATION: <reasoning and steps>◊",
            "- Questions should test understanding of the topic just taught",
            "- Use ◊ delimiters for ALL questions",
        ]

    data = data or {}
    lines += ["", "COURSE CONTEXT:", data.get("course_context") or "No course summary available."]

    lines += ["", "COURSE FILES (first 20k chars):"]
    combined = data.get("combinedText") or ""
    if combined:
        lines.append(combined[:COURSE_FILES_CHARS])
        if len(combined) > COURSE_FILES_CHARS:
            lines += ["", f"[Note: Course files content truncated. Total length: {len(combined)} chars]"]
    else:
        lines.append("No course files available.")

    lines += ["", "AVAILABLE TOPICS:"]
    topics = [t for t in data.get("topics") or [] if isinstance(t, dict) and t.get("name")]
    if topics:
        lines += [f"• {t['name']}" + (f" - {t['summary']}" if t.get("summary") else "") for t in topics]
    else:
        lines.append("No topics available.")

    lines += ["", "EXAM SNIPE ANALYSIS:", exam_snipe_data or "No exam snipe analysis available."]

    lines += ["", "PAST SURGE SESSIONS:"]
    if last_surge:
        lines.append(last_surge.summary)
    if practice_log:
        lines += ["", "Practice log (last 20 entries):"]
        for entry in practice_log[-PRACTICE_LOG_CONTEXT_ENTRIES:]:
            lines.append(f"[{entry.topic}] Q: {entry.question} | A: {entry.answer} | Grade: {entry.grade}/10")
    if not last_surge and not practice_log:
        lines.append("No past Surge sessions available.")
    lines.append("")
    return "\n".join(lines)


def build_quiz_json_instruction(stage: str, course_name: str, topic_name: str,
                                mc_questions: str = "", debug_instruction: Optional[str] = None) -> str:
    course = course_name or "Unknown Course"
    topic = topic_name or course
    lines = [
        "OVERRIDE: Ignore any prior instructions about ◊ delimiters or prose answers.",
        "You are Synapse Surge's QUIZ ENGINE.",
        f"COURSE: {course}",
        f"CURRENT TOPIC: {topic}",
    ]
    if stage == "mc":
        lines += [
            "- You will be given the full lesson content below. Base ALL questions strictly on that lesson.",
            "CRITICAL: Questions MUST focus ONLY on the current topic that was just taught.",
            "GOAL: Generate EXACTLY 5 multiple-choice questions that progress from EASY to HARD, focusing on "
            "understanding and implementation of THE CURRENT TOPIC ONLY.",
            "CRITICAL REQUIREMENTS:",
            "  1. Q1 = easiest (basic recall) through Q5 = hardest (implementation/complex reasoning)",
            "  2. Test comprehension, application, and reasoning, not just 'what is X?'",
            "  3. Later questions should connect multiple aspects of the current topic",
            "FORMAT: OUTPUT ONLY raw JSON (no markdown, no commentary). Structure:",
            "{",
            '  "mc": [',
            '    {"question": "...", "options": ["...", "...", "...", "..."], "correctOption": "A", '
            '"explanation": "..."}',
            "  ],",
            '  "short": []',
            "}",
            "- There must be exactly 5 objects in mc[]. Each options array must have 4 strings that match "
            "letters A-D.",
            "- correctOption must be a single letter A-D. explanation must describe WHY that answer is correct.",
            "- DO NOT output anything besides that JSON object. No prose.",
        ]
    else:
        lines += [
            "- You will be given the full lesson content below. Base ALL questions strictly on that lesson "
            "and escalate difficulty using its deeper sections.",
            "- CRITICAL: You will also be given the previous MC questions that were already asked. "
            "Your harder questions MUST be different from them and go deeper: how and why, not what.",
            "GOAL: Generate EXACTLY 4 harder short-answer questions that require reasoning.",
            "FORMAT: OUTPUT ONLY raw JSON (no markdown). Structure:",
            "{",
            '  "mc": [],',
            '  "short": [',
            '    {"question": "...", "modelAnswer": "...", "explanation": "..."}',
            "  ]",
            "}",
            "- There must be exactly 4 objects in short[]. modelAnswer must be a complete, exam-ready solution.",
            "- explanation must walk through the reasoning or steps.",
            "- DO NOT output anything besides that JSON object. No prose.",
        ]
    if debug_instruction:
        lines.append(f"DEBUG FOCUS: {debug_instruction}")
    return "\n".join(lines)


def review_mc_instruction(topic: str, previous_count: int) -> str:
    return (
        f'Generate EXACTLY 2 multiple-choice questions about "{topic}" for spaced repetition review. '
        "These questions must:\n"
        "- Test active recall of fundamental concepts from this topic\n"
        f"- Be COMPLETELY DIFFERENT from all previous questions (check: {previous_count} previous questions)\n"
        "- Focus on deep understanding, not just memorization\n"
        "- Use plausible distractors with subtle errors, not obviously wrong options"
    )


def review_harder_instruction(topic: str, previous_count: int) -> str:
    return (
        f'Generate EXACTLY 2 short-answer quiz questions about "{topic}" for spaced repetition review. '
        "These questions must:\n"
        "- Test active recall through deeper thinking and application\n"
        f"- Be COMPLETELY DIFFERENT from all previous questions (check: {previous_count} previous questions)\n"
        "- Require the user to explain concepts, not just recognize them"
    )


def quick_explain_prompts(subject: str, topic: str, word: str, local_context: str,
                          course_topics: list[str], language_name: str) -> tuple[str, str]:
    system = "\n".join([
        "You provide a short, friendly explanation of a term or phrase.",
        "Constraints:",
        "- 2-4 sentences max.",
        "- Use simple language (child-level clarity)." + (f" Write in {language_name}." if language_name else ""),
        "- If math is relevant, use KaTeX-compatible LaTeX ($...$, $$...$$).",
        "- No code fences, no lists unless truly necessary.",
    ])
    user = "\n\n".join(part for part in [
        f"Subject: {subject}" if subject else "",
        f"Topic: {topic}" if topic else "",
        f"Course topics: {', '.join(course_topics)}" if course_topics else "",
        f"Explain: {word}",
        f"Nearby context: {local_context[:600]}" if local_context else "",
    ] if part)
    return system, user


def _lesson_recap(lessons: list[dict], chars: int) -> str:
    return " | ".join(f"{l.get('title', '')}: {(l.get('body') or '')[:chars]}" for l in lessons)


def _meta_listing(meta: list[dict]) -> str:
    return "; ".join(f"L{i + 1} {m.get('type', '')} - {m.get('title', '')}" for i, m in enumerate(meta))


def node_lesson_prompts(subject: str, topic: str, course_context: str, combined_text: str,
                        topic_summary: str, target: dict, previous_lessons: list[dict],
                        generated_lessons: list[dict], other_lessons_meta: list[dict],
                        course_topics: list[str], language_name: str, mode: str) -> tuple[str, str]:
    system = "\n".join([
        "You generate ONE lesson for a topic using the provided course context and materials.",
        "Return JSON: { title: string; body: string; quiz: { question: string }[] }",
        "Rules:",
        "- Use the detailed course context to identify and teach SPECIFIC concepts, methods, and skills.",
        "- Body should be clean, well-structured Markdown using KaTeX math syntax ($...$ inline, $$...$$ display)."
        + (f" Write in {language_name}." if language_name else ""),
        "- Use \\text{} for text in math expressions and escape underscores with \\_",
        "- Include practical examples and applications from the course materials",
        "- Use clear headings, short paragraphs, and lists for readability.",
        "- The 'quiz' field must contain 2-5 short recall questions; DO NOT include quiz content inside the body.",
        "- Avoid overlap: do not repeat content already covered by other lessons.",
    ])
    user = "\n\n".join(part for part in [
        f"Subject: {subject}" if subject else "",
        f"Topic: {topic}",
        f"Course summary: {course_context}" if course_context else "",
        f"Topic summary: {topic_summary}" if topic_summary else "",
        f"Course topics: {', '.join(course_topics)}" if course_topics else "",
        "Relevant material (truncated):",
        combined_text,
        f"Previous lessons recap (for continuity): {_lesson_recap(previous_lessons, 300)}" if previous_lessons else "",
        f"Target lesson: {target.get('type', '')} - {target.get('title', '')}",
        f"Planned other lessons (avoid overlapping): {_meta_listing(other_lessons_meta)}" if other_lessons_meta else "",
        f"Already generated lessons (avoid repeating these): {_lesson_recap(generated_lessons, 200)}"
        if generated_lessons else "",
        "Instruction: Rewrite the CURRENT section at an easier level. Keep the SAME scope, do not add new "
        "concepts, add friendlier analogies." if mode == "simplify" else "",
    ] if part)
    return system, user


def node_lesson_stream_prompts(subject: str, topic: str, course_context: str, combined_text: str,
                               topic_summary: str, target: dict, previous_lessons: list[dict],
                               generated_lessons: list[dict], other_lessons_meta: list[dict],
                               course_topics: list[str], language_name: str, mode: str,
                               quick_learn: bool) -> tuple[str, str]:
    rules = lesson_rules(language_name)
    if mode == "simplify":
        rules += ["", "If mode is simplify, keep scope identical but rewrite explanations to be easier."]
    system = "\n".join(rules)
    banner = "=" * 50
    if quick_learn:
        parts = [
            banner,
            f"TOPIC TO TEACH: {topic}",
            banner,
            "This is a standalone Quick Learn lesson. Teach this topic comprehensively without requiring "
            "course context.",
            f"Target lesson: {target.get('type', '')} - {target.get('title', '')}",
            f"Write the entire lesson in {language_name}." if language_name else "",
        ]
    else:
        parts = [
            banner,
            f"TOPIC TO TEACH: {topic}",
            banner,
            f"Subject: {subject}" if subject else "",
            f"Course summary: {course_context}" if course_context else "",
            f'Topic summary for "{topic}": {topic_summary}' if topic_summary else "",
            f'Course topics (for context only; focus on "{topic}"): {", ".join(course_topics)}'
            if course_topics else "",
            f"Target lesson: {target.get('type', '')} - {target.get('title', '')}",
            "Relevant material (truncated):",
            combined_text,
            f"Previous lessons recap (for continuity; avoid repeats): {_lesson_recap(previous_lessons, 300)}"
            if previous_lessons else "",
            f"Planned other lessons (avoid overlap): {_meta_listing(other_lessons_meta)}" if other_lessons_meta else "",
            f"Already generated lessons (avoid repeating): {_lesson_recap(generated_lessons, 200)}"
            if generated_lessons else "",
            "Instruction: Rewrite the CURRENT section at an easier level. Keep the SAME scope, do not add new "
            "concepts." if mode == "simplify" else "",
        ]
    return system, "\n\n".join(p for p in parts if p)


SURGE_CHECK_SYSTEM = """You are an educational assessment AI for Synapse Surge quiz questions. Analyze the student's answer to a short-answer question and return ONLY valid JSON with no additional text.

GRADING PHILOSOPHY:
- Focus on whether the student demonstrates understanding of the concept
- DO NOT grade grammar, structure, or writing quality
- Match the depth of evaluation to the complexity of the question

SCORING RUBRIC:
- 0 = no answer, irrelevant text, or explicit uncertainty
- 1-2 = attempts something but is entirely incorrect
- 3-4 = minimal understanding, misses most key points
- 5-6 = partial understanding with notable gaps
- 7 = good understanding with some minor gaps
- 8 = solid understanding of the concept
- 9 = nearly perfect with only trivial omissions
- 10 = perfect, thorough, clear mastery

Return this exact structure:
{
  "grade": integer from 0 to 10,
  "assessment": "2-3 sentences evaluating what's good and what could be improved",
  "whatsGood": "specific things the answer got right",
  "whatsBad": "specific gaps, missing information, or incorrect aspects",
  "enhancedExplanation": "a thorough explanation of the correct answer"
}"""


def surge_check_user_prompt(question: str, answer: str, model_answer: str,
                            explanation: str, lesson_content: str) -> str:
    lines = [
        f'Question: "{question}"',
        f'Model Answer: "{model_answer}"',
        f'Original Explanation: "{explanation}"' if explanation else "",
        f'Student Answer: "{answer}"',
    ]
    text = "\n".join(lines)
    if lesson_content:
        text += f"\n\n\nLesson Context (for reference):\n{lesson_content[:5000]}"
    return text + ("\n\nAnalyze the student's answer. Provide a grade, assessment, what's good, "
                   "what's bad, and an enhanced explanation of the correct answer.")


def flashcard_prompts(subject: str, topic: str, lesson_title: str, lesson_body: str,
                      course_context: str, language_name: str, count: int) -> tuple[str, str]:
    system = "\n".join(line for line in [
        "You create concise, high-quality flashcards to help a student review a single lesson.",
        "Return valid JSON that matches: { flashcards: { prompt: string; answer: string }[] }.",
        "Each flashcard must teach a distinct, high-impact takeaway from the lesson.",
        "Prompt should be phrased as a question or cue. Answer should be a short, direct explanation (1-3 sentences).",
        "Use Markdown only when it meaningfully improves clarity (e.g., math, code).",
        f"Write in {language_name}." if language_name else "",
        "Do not reference content outside the provided lesson.",
    ] if line)
    user = "\n\n".join(part for part in [
        f"Subject: {subject}" if subject else "",
        f"Topic: {topic}" if topic else "",
        f"Lesson title: {lesson_title}" if lesson_title else "",
        f"Course context: {course_context}" if course_context else "",
        f"Create exactly {count} flashcards from the lesson below.",
        "Lesson content:",
        lesson_body,
    ] if part)
    return system, user


def mc_quiz_prompts(subject: str, topic: str, lesson_content: str, course_context: str,
                    language_name: str) -> tuple[str, str]:
    system = "\n".join(line for line in [
        "You are an expert educator creating multiple choice quiz questions.",
        "Generate 4 multiple choice questions based on the lesson content.",
        "Return STRICT JSON with this exact shape:",
        '{"questions": [{"question": "...", "options": ["A", "B", "C", "D"], "correctAnswer": 0}]}',
        "",
        "CRITICAL RULES:",
        "- Generate exactly 4 questions",
        "- Each question must have exactly 4 options",
        "- correctAnswer is the index (0-3) of the correct option",
        "- Options should be plausible but clearly distinguishable",
        "- For math formulas, use KaTeX syntax: $...$ inline and $$...$$ display",
        f"- Write ALL questions and options in {language_name}" if language_name else "",
    ] if line is not None)
    user = "\n".join(line for line in [
        f"Subject: {subject}",
        f"Topic: {topic}",
        f"Course Context: {course_context}" if course_context else "",
        "",
        "Lesson Content:",
        lesson_content[:15000],
        "",
        "Generate 4 multiple choice questions to test understanding of this lesson.",
    ] if line is not None)
    return system, user


def _existing_logs_context(existing_logs: list[dict]) -> str:
    if existing_logs:
        return ("\n\nEXISTING PRACTICE LOGS (use consistent topic names if similar questions exist):\n"
                + json.dumps(existing_logs[-20:], indent=2, ensure_ascii=False))
    return "\n\nNo previous practice logs. This is the first question."


PRACTICE_TOPIC_SYSTEM = ("You extract a concise topic label for a practice question. "
                         "Return ONLY valid JSON with no additional text.")


def practice_topic_prompt(question: str, course_slug: str, existing_logs: list[dict]) -> str:
    return (
        'Given the practice question, return ONLY valid JSON: {"topic":"string"}.\n\n'
        f'Question: "{question}"\nCourse slug: "{course_slug}"\n{_existing_logs_context(existing_logs)}\n\n'
        "CRITICAL: If similar questions on the same topic already exist in existing logs, "
        "use the EXACT SAME topic name."
    )


ANSWER_CLASSIFIER_SYSTEM = ("You are a classifier that determines if a user message is an answer attempt. "
                            "Return ONLY valid JSON with no additional text.")


def answer_classifier_prompt(question: str, answer: str) -> str:
    return f"""Determine if the user's message is an actual answer attempt to the practice question, or if it's something else (like asking a new question, requesting help, making a comment, etc.).

Question: "{question}"
User message: "{answer}"

Return ONLY valid JSON:
{{
  "isAnswerAttempt": boolean,
  "reason": "brief explanation"
}}

isAnswerAttempt is false when the user asks a new question, requests help, comments, refuses to answer ("I don't know", "skip"), is off-topic, or writes under 10 characters of actual content."""


PRACTICE_GRADER_SYSTEM = """You are an educational assessment AI. Analyze the student's answer to a practice question and return ONLY valid JSON with no additional text.

Grade conceptual understanding only. Ignore grammar, spelling, and structure. Simple questions only need simple answers.

SCORING RUBRIC:
- 0 = no answer, irrelevant text, refusal, or explicit uncertainty
- 1-2 = entirely incorrect
- 3-4 = minimal understanding
- 5-6 = partial understanding with notable gaps
- 7 = good understanding with minor gaps
- 8 = the user understands it pretty well
- 9 = nearly perfect
- 10 = perfect

Return this exact structure:
{
  "topic": "specific topic/concept being practiced",
  "question": "the exact question asked",
  "answer": "the exact answer provided",
  "assessment": "2-3 sentences on what the answer should improve to reach 10/10",
  "grade": integer from 0 to 10
}

CRITICAL: If similar questions on the same topic already exist in the existing logs, use the EXACT SAME topic name."""


def practice_grader_prompt(question: str, answer: str, existing_logs: list[dict]) -> str:
    return (f'Question: "{question}"\nAnswer: "{answer}"\n{_existing_logs_context(existing_logs)}\n\n'
            "Analyze this answer and return the JSON.")
