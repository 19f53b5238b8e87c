"""User-facing copy and question rendering.

Everything the learner reads lives here so the flows only decide *which*
message to send.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from schemas import Question

TOPIC_NAMES: Dict[Optional[str], str] = {
    "calculus": "Calculus",
    "trigonometry": "Trigonometry",
    "algebra": "Algebra",
    "unknown": "Mixed Maths",
    None: "Mixed Maths",
}

DIFFICULTY_EMOJI = {"easy": "🟢", "medium": "🟡", "hard": "🔴"}

SUBJECT_NAMES = {1: "Mathematics", 2: "Physics", 3: "Chemistry", 4: "Life Sciences"}

MENU_HINT = 'Type "menu" for options. ✨'


def topic_name(topic: Optional[str]) -> str:
    return TOPIC_NAMES.get(topic, (topic or "Maths").title())


def join(*parts: Optional[str]) -> str:
    return "\n\n".join(part for part in parts if part)


# ------------------------------------------------------------------
# general
# ------------------------------------------------------------------
MAIN_MENU = (
    "Welcome. I'm here to help you study with calm and clarity.\n\n"
    "What do you need right now?\n\n"
    "1️⃣ 📅 Exam/Test coming\n"
    "2️⃣ 😰 Feeling stressed\n"
    "3️⃣ 🚨 Panic mode (quick wins)\n"
    "4️⃣ 🫶 Confidence boost\n"
    "5️⃣ 🧮 I need more practice\n\n"
    "Just pick a number! ✨"
)

HELP = (
    "Here's what you can type any time:\n\n"
    '• "menu" for the main options\n'
    '• "practice" for questions at your level\n'
    '• "exam", "stressed", "panic" or "boost" to jump into a flow\n'
    '• "report" for your progress\n'
    '• "cancel" to stop the current flow\n\n'
    "Answer questions with A, B, C or D. 🎯"
)

GENERIC_ERROR = "Something went wrong. Let's try again in a moment. ✨\n\n" + MENU_HINT
BUSY = "Still working on your last message. Give it a sec, or " + MENU_HINT
NO_CONTENT = "No questions are available right now. Try again later. 🌱\n\n" + MENU_HINT
NO_QUESTION_ACTIVE = 'No active question. Type "practice" to start practicing! 🧮'
QUESTION_EXPIRED = "That question is no longer available. Let's get you a fresh start. 🔄"
FLOW_RESET = "Let's pick up from the start of this step. 🌱"
INVALID_MENU_OPTION = "Pick a valid number from the options above. 🎯"
ANSWER_WITH_LETTER = "We're mid-question. Answer with A, B, C, or D. ✅"
CANCELLED = "Okay, stopped. " + MENU_HINT

GRADE_PROMPT = (
    "Which grade are you in?\n\n"
    "📚 Options:\n"
    "• 10, 11\n"
    "• varsity (for university)\n\n"
    "Just type your grade! 🎓"
)
GRADE_RETRY = "Please choose 10, 11, or varsity for your grade. 🎓"


def format_question(question: Question, header: Optional[str] = None) -> str:
    lines: List[str] = []
    if header:
        lines.append(header)
        lines.append("")
    lines.append(question.question_text.strip())
    lines.append("")
    for choice in question.choices:
        lines.append(f"{choice.letter}) {choice.text}")
    lines.append("")
    lines.append("Send A, B, C, or D! 🎯")
    return "\n".join(lines)


def report(
    *,
    total_answered: int,
    total_correct: int,
    streak: int,
    band: str,
    weaknesses: Iterable[Mapping[str, object]],
) -> str:
    if not total_answered:
        return 'No answers yet. Type "practice" to get your first question! 🧮'
    accuracy = int(round(100 * total_correct / total_answered))
    lines = [
        "📊 Your progress",
        "",
        f"• Questions answered: {total_answered}",
        f"• Correct: {total_correct} ({accuracy}%)",
        f"• Current streak: {streak}",
        f"• Level: {band} {DIFFICULTY_EMOJI.get(band, '')}".rstrip(),
    ]
    tags = [str(item["weakness_tag"]).replace("_", " ") for item in weaknesses]
    if tags:
        lines.append("")
        lines.append("🧠 Worth another look: " + ", ".join(tags))
    lines.append("")
    lines.append('Type "practice" to keep going. 💪')
    return "\n".join(lines)


# ------------------------------------------------------------------
# panic
# ------------------------------------------------------------------
PANIC_INTRO = (
    "🚨 PANIC MODE (Maths only)\n"
    "Sharp, I've got you. Let's calm the nerves and score quick wins.\n\n"
    "How high is your panic right now? (1-5)\n\n"
    "1) Mild\n2) Manageable\n3) Elevated\n4) High\n5) Severe"
)
PANIC_LEVEL_RETRY = "Please choose a number 1-5 for panic level."
PANIC_TOPIC_RETRY = "Pick 1, 2, or 3 to choose a topic."
PANIC_PLAN_RETRY = "Please choose: 1) Start now 2) Switch topic 3) Cancel"
PANIC_PLAN_CANCEL = 'No stress. If panic hits again, just type "panic". 💪'
MICRO_RETRY = "Choose 1) Start 3Q burst 2) Extra example 3) Cancel"
MICRO_CANCEL = 'Okay, we\'ll pause here. Type "panic" anytime to jump back in.'
MOMENTUM_RETRY = "Pick 1) Continue 2) Switch topic 3) Break 4) Reminder"
PANIC_BREAK = 'Break is valid. Come back strong later. Type "panic" when ready. 💪'
PANIC_REMINDER = "Lekker, I'll remind you this evening. You've got this. 🔔"
BURST_CORRECT = "💯 Nice! Correct."


def panic_topic_prompt(level: int) -> str:
    return (
        f"Got it. Panic level: {level}.\n\nChoose a Maths topic to stabilise on:\n"
        "1) Calculus (first principles)\n"
        "2) Trigonometry (identity)\n"
        "3) Not sure"
    )


def panic_plan(topic: Optional[str]) -> str:
    name = "Trigonometry" if topic == "trigonometry" else "Calculus"
    return (
        f"🧭 PLAN ( {name} )\n\n"
        "Now (~20 min): Quick crash course + 3Q burst\n"
        "Tonight: Short practice on the other topic\n"
        "Tomorrow: Review + mini-mock\n\n"
        "Start now?\n"
        "1) Yes, start\n"
        "2) Switch topic\n"
        "3) Cancel"
    )


def micro_module(topic: Optional[str]) -> str:
    if topic == "trigonometry":
        return (
            "📗 Trigonometry Identity - Micro-Module\n\n"
            "• Core: sin^2(x) + cos^2(x) = 1\n"
            "• Strategy: Convert everything to sin and cos, then simplify\n"
            "• Tip: Watch angle units and common values (0, 30, 45, 60, 90)\n\n"
            "Quick lesson:\n"
            "Use sin^2 + cos^2 = 1 to reduce expressions. If an expression has "
            "1 - cos^2(x), replace it with sin^2(x).\n\n"
            "Worked example:\n"
            "Simplify: (1 - cos^2 x)/sin x = sin^2 x / sin x = sin x\n\n"
            "1) Start 3Q burst\n2) Extra example\n3) Cancel"
        )
    return (
        "📘 Calculus (First Principles) - Micro-Module\n\n"
        "• Pattern: f'(x) = lim_{h->0} (f(x+h) - f(x)) / h\n"
        "• Simplify: Expand, cancel terms, factor h, then take the limit\n"
        "• Timing: Work step-by-step; avoid skipping algebra\n\n"
        "Quick lesson:\n"
        "For f(x)=x^2: f(x+h) = x^2 + 2xh + h^2, so f(x+h)-f(x) = 2xh + h^2. "
        "Divide by h -> 2x + h; limit h->0 -> 2x\n\n"
        "Worked example:\n"
        "f(x)=3x^2: f(x+h)-f(x) = 3(2xh + h^2). Divide by h: 3(2x + h) -> 6x\n\n"
        "1) Start 3Q burst\n2) Extra example\n3) Cancel"
    )


def micro_module_extra(topic: Optional[str]) -> str:
    if topic == "trigonometry":
        body = (
            "Extra example (Trig):\n"
            "Simplify: (cos^2 x - 1)/cos x = -(1 - cos^2 x)/cos x = -(sin^2 x)/cos x\n"
            "= -(sin x)(sin x / cos x) = -(sin x)(tan x)"
        )
    else:
        body = (
            "Extra example (Calculus):\n"
            "f(x)=x^3 -> f(x+h)-f(x) = 3x^2 h + 3x h^2 + h^3\n"
            "Divide by h: 3x^2 + 3x h + h^2 -> limit -> 3x^2"
        )
    return body + "\n\nReady?\n1) Start 3Q burst\n2) Another extra\n3) Cancel"


def burst_header(index: int, size: int) -> str:
    return f"🎯 3Q Burst - Question {index + 1} of {size}"


def burst_incorrect(correct_letter: str) -> str:
    return f"Aweh, not this time. Correct answer was {correct_letter}."


def momentum_menu(score: int, size: int) -> str:
    return (
        f"✅ Burst done: {score}/{size}\n\n"
        "What next?\n"
        "1) Continue same topic\n"
        "2) Switch topic\n"
        "3) Take a break\n"
        "4) Remind me tonight"
    )


BURST_EMPTY = (
    "No more questions available right now.\n\n"
    "1) Continue (when available)\n2) Switch topic\n3) Break\n4) Reminder tonight"
)


# ------------------------------------------------------------------
# stress and exam prep
# ------------------------------------------------------------------
STRESS_LEVEL_PROMPT = (
    "Let's check in first. How stressed do you feel right now?\n\n"
    "1️⃣ Very stressed\n"
    "2️⃣ Quite stressed\n"
    "3️⃣ A little stressed\n"
    "4️⃣ Mostly okay\n\n"
    "Pick a number 1-4. 🌱"
)
STRESS_LEVEL_RETRY = "Please pick a number 1-4 for your stress level. 🌱"
VALIDATION_HIGH = (
    "That sounds heavy, and it makes sense to feel that way. "
    "We'll go slowly and take one small step at a time. 🫶"
)
VALIDATION_LOW = "Good that you're checking in early. Let's turn that energy into a plan. 💪"
EXAM_VALIDATION = "I understand. Let's take this step by step together. 🌱"

SUBJECT_PROMPT = (
    "Let's focus on one subject to start.\n\n"
    "Which subject needs attention?\n\n"
    "1️⃣ Mathematics\n"
    "2️⃣ Physics (Maths ready now)\n"
    "3️⃣ Chemistry (Maths ready now)\n"
    "4️⃣ Life Sciences (Maths ready now)"
)
SUBJECT_RETRY = "Please pick 1, 2, 3, or 4 for the subject. 📚"

EXAM_DATE_PROMPT = 'When is your exam/test? (e.g., 22 Aug 7pm)\n\nIf you\'re not sure, say "skip". ⏳'
EXAM_DATE_RETRY = (
    "I didn't catch the date. Try formats like:\n"
    "• 22 Aug 7pm\n• tomorrow 2pm\n• next Friday 9:30am\n• skip"
)
PLAN_OFFER_LONG = (
    "I can send a short lesson + practice each day until then.\n\n"
    'Want that? Type "yes" (1) or "no" (2). 📅'
)
PLAN_OFFER_SHORT = (
    "Let's keep it focused: targeted review + practice questions + confidence building.\n\n"
    'Ready to start? Type "yes" (1) or "no" (2). 🌱'
)
PLAN_DECISION_RETRY = 'Please reply "yes" (1) or "no" (2). 📅'
TIME_PROMPT = "What time suits you daily? (e.g., 7pm)\n\nI'll send gentle reminders at that time. ⏰"
TIME_RETRY = 'Try a time like "7pm" or "19:00". ⏰'
PLAN_ACTION_RETRY = "Please choose 1, 2, or 3 from the plan options. ✨"
LESSON_RETRY = "Pick 1, 2, or 3 from the lesson options. ✨"
CONTINUE_RETRY = "Pick 1, 2, 3, or 4 from the menu above. ✨"

PROBLEM_DETAILS_PROMPT = (
    "Tell me what specific topics or concepts you're worried about for your exam.\n\n"
    "Examples:\n"
    '• "Derivatives confuse me"\n'
    '• "Word problems are hard"\n'
    '• "I struggle with factoring"\n\n'
    'Or just say "general" if you want overall review. 🧠'
)
PROBLEM_DETAILS_RETRY = 'Tell me in a few words what worries you, or say "general". 🧠'
PROBLEM_DETAILS_ACK = "Got it! Let's focus on what you need for your exam."

LESSON_MENU = "1️⃣ Start practice\n2️⃣ Another example\n3️⃣ Cancel"

LESSONS = {
    "calculus": (
        "📘 Calculus: derivatives step by step\n\n"
        "A derivative measures how fast something changes.\n\n"
        "Think of the speedometer in a car: it tells you how fast your position "
        "is changing at any moment.\n\n"
        "📊 Key concept: Rate of change\n"
        "🚗 Real example: Speed is the derivative of distance\n"
        "💡 Power rule: d/dx(x^n) = n·x^(n-1)"
    ),
    "trigonometry": (
        "📐 Trigonometry basics\n\n"
        "Trigonometry is about triangles and circles.\n\n"
        "SOH-CAH-TOA is your best friend:\n"
        "• Sin = Opposite/Hypotenuse\n"
        "• Cos = Adjacent/Hypotenuse\n"
        "• Tan = Opposite/Adjacent\n\n"
        "💡 Identity to remember: sin^2(x) + cos^2(x) = 1"
    ),
    "algebra": (
        "🎯 Algebra fundamentals\n\n"
        "Algebra is solving puzzles with letters.\n\n"
        "⚖️ Whatever you do to one side, do to the other\n"
        "🎯 Isolate the variable\n"
        "✅ Check your answer by substituting back"
    ),
}

EXTRA_EXAMPLES = {
    "calculus": (
        "🧮 Extra derivative example:\n\n"
        "Find d/dx of x^3 + 2x:\n"
        "1. Power rule: bring down the exponent, reduce it by 1\n"
        "2. d/dx(x^3) = 3x^2\n"
        "3. d/dx(2x) = 2\n"
        "4. Answer: 3x^2 + 2"
    ),
    "trigonometry": (
        "📐 Extra trig example:\n\n"
        "Find sin(30°):\n"
        "1. Draw a 30-60-90 triangle\n"
        "2. Sides are in ratio 1 : √3 : 2\n"
        "3. sin(30°) = opposite/hypotenuse = 1/2"
    ),
    "algebra": (
        "🎯 Extra algebra example:\n\n"
        "Solve 2x + 5 = 13:\n"
        "1. Subtract 5 from both sides: 2x = 8\n"
        "2. Divide both sides by 2: x = 4\n"
        "3. Check: 2(4) + 5 = 13 ✅"
    ),
}


def lesson(topic: Optional[str]) -> str:
    return join(LESSONS.get(topic or "calculus", LESSONS["calculus"]), LESSON_MENU)


def extra_example(topic: Optional[str]) -> str:
    return join(EXTRA_EXAMPLES.get(topic or "calculus", EXTRA_EXAMPLES["calculus"]), LESSON_MENU)


def subject_ack(choice: int, exam: bool) -> str:
    if choice == 1:
        return "Great choice. Let's focus on Maths for your exam." if exam else "Great choice. Let's focus on Maths."
    name = SUBJECT_NAMES[choice]
    return f"I hear you about {name}. Let's start with Maths foundations, they help with all subjects."


def stress_short_plan(topic: Optional[str]) -> str:
    other = "calculus" if topic == "trigonometry" else "trigonometry"
    return (
        "🧭 GENTLE PLAN (Short Session)\n\n"
        "Now (~20 min): Quick review + gentle practice\n"
        f"Focus: {topic_name(topic)}, steady pace\n"
        "Goal: Build confidence step by step\n\n"
        "Ready?\n"
        "1️⃣ Start now\n"
        f"2️⃣ Switch to {topic_name(other).lower()}\n"
        "3️⃣ Take a break"
    )


def stress_long_plan(topic: Optional[str], exam_label: str, daily_time: str) -> str:
    other = "calculus" if topic == "trigonometry" else "trigonometry"
    return (
        f"🧭 STUDY PLAN (Until {exam_label})\n\n"
        f"Daily at {daily_time}:\n"
        "• Short lesson (~10 min)\n"
        "• Gentle practice (~10 min)\n"
        "• Build confidence daily\n\n"
        f"Today's focus: {topic_name(topic)} foundations\n\n"
        "1️⃣ Start first lesson\n"
        f"2️⃣ Switch to {topic_name(other).lower()}\n"
        "3️⃣ Adjust plan later"
    )


def exam_short_plan(hours_away: Optional[float]) -> str:
    if hours_away is not None and hours_away <= 24:
        body = (
            "⚡ CRUNCH TIME MODE:\n"
            "• Quick review of key concepts\n"
            "• High-yield practice questions\n"
            "• Confidence building exercises"
        )
    else:
        body = (
            "🎯 FOCUSED PREP:\n"
            "• Targeted topic review\n"
            "• Practice questions\n"
            "• Build exam confidence"
        )
    return join("📅 EXAM PREP PLAN", body, "Ready to start?\n1️⃣ Begin\n2️⃣ Switch topics\n3️⃣ Main Menu")


def exam_long_plan(exam_label: str, daily_time: str) -> str:
    return (
        f"📅 DAILY STUDY PLAN (Until {exam_label})\n\n"
        f"Daily at {daily_time}:\n"
        "• 15 min: Topic review\n"
        "• 10 min: Practice questions\n"
        "• 5 min: Confidence building\n\n"
        "Today's focus: Core concepts\n\n"
        "1️⃣ Begin\n"
        "2️⃣ Switch topics\n"
        "3️⃣ Main Menu"
    )


PRACTICE_CONTINUE_MENU = (
    "What would you like to do next?\n\n"
    "1️⃣ Continue practicing\n"
    "2️⃣ Switch topic\n"
    "3️⃣ Take a short break\n"
    "4️⃣ Remind me tonight"
)

STRESS_PRACTICE_START = "Let's ease in with a gentle question. No rush. 🌱"
STRESS_CORRECT = "✅ Correct! You're building confidence step by step. 🌱"
STRESS_INCORRECT = "Not quite, and that's okay. The answer was {letter}. Let's keep going gently. ✨"
STRESS_SET_DONE = "✅ Nice work. You completed a gentle practice set."
STRESS_PLAN_CANCEL = 'No stress. If you need support again, just say "stressed". 🌱'
STRESS_LESSON_CANCEL = 'Take your time. Say "stressed" when you\'re ready. 🌱'
STRESS_BREAK = 'Take your time. Breathe. You\'re doing well. 🌱\n\nSay "practice" when ready to continue.'
STRESS_REMINDER = "I'll check in with you tonight. Rest well. 🌙"

EXAM_PRACTICE_START = "📅 Exam prep practice, let's sharpen your skills!"
EXAM_CORRECT = "✅ Excellent! You're building exam confidence step by step. 🌱"
EXAM_INCORRECT = "🌱 Not this one, the answer was {letter}. Every question makes you stronger for the exam. ✨"
EXAM_SET_DONE = "🎯 Great exam prep session! You're getting sharper."
EXAM_PLAN_CANCEL = 'All good! When you\'re ready to prep again, just say "exam". 📅\n\n' + MENU_HINT
EXAM_LESSON_CANCEL = 'Take your time. Say "exam" when you\'re ready to prep! 📅'
EXAM_BREAK = "Good call. Rest up and come back when you're ready to prep! 📅\n\n" + MENU_HINT
EXAM_REMINDER = "I'll remind you to study tonight. Rest well before your exam! 🌙"


def question_counter(index: int, size: int) -> str:
    return f"Question {index + 1} of {size}:"


# ------------------------------------------------------------------
# confidence
# ------------------------------------------------------------------
REASONS = ("failed", "confused", "comparison", "comment", "other")

REASON_PROMPT = (
    "Let's work on your confidence together. 🫶\n\n"
    "What's weighing on you most?\n\n"
    "1️⃣ I failed a test\n"
    "2️⃣ I feel confused in class\n"
    "3️⃣ Others seem ahead of me\n"
    "4️⃣ Someone said something that stuck\n"
    "5️⃣ Something else"
)
REASON_RETRY = "Please pick a number 1-5 for what's weighing on you. 🫶"
PRE_CONFIDENCE_PROMPT = "On a scale of 1-5, how confident do you feel about Maths right now?\n\n1 = not at all, 5 = very. 🧠"
PRE_CONFIDENCE_RETRY = "Please rate your confidence 1-5 right now. 🧠"
SUPPORT_FALLBACK = "You're not behind, you're starting now. That matters. 🌱"
LADDER_PROMPT = (
    "Pick your next small step:\n\n"
    "1️⃣ Three easy questions (warm-up)\n"
    "2️⃣ A quick reflection\n"
    "3️⃣ One medium challenge\n"
    "4️⃣ Skip for now"
)
LADDER_RETRY = "Please pick 1, 2, 3, or 4 from the confidence ladder. ✨"
REFLECTION_PROMPT = (
    "Take a moment: think of one Maths thing you can do today that you "
    "couldn't do a year ago. That's real progress. 🌱\n\n"
    "When you're ready: how confident do you feel now? (1-5)"
)
POST_CONFIDENCE_PROMPT = "How confident do you feel about Maths now? (1-5) 🌱"
POST_CONFIDENCE_RETRY = "Please rate your confidence 1-5 now. 🌱"
LADDER_SKIP = "No stress. Let's check in."
EASY_LADDER_INTRO = "Let's build confidence with gentle practice. Here's an easy one:"
EASY_LADDER_CORRECT = "✅ Nice! That's building confidence. You're getting the hang of this. 🌱"
EASY_LADDER_INCORRECT = "Not quite, but you're learning. Each attempt makes you stronger. ✨"
EASY_LADDER_EMPTY = "No easy practice available right now."
MEDIUM_LADDER_INTRO = "Here's a medium challenge to stretch your abilities:"
MEDIUM_LADDER_CORRECT = "💪 Excellent! That was a tougher one and you handled it well. You're growing. 🌱"
MEDIUM_LADDER_INCORRECT = "That was challenging, and challenging yourself is brave. The correct answer was {letter}. 🧠"
MEDIUM_LADDER_EMPTY = "No medium questions available right now."


def support_message(text: str) -> str:
    return join(f'Here\'s a thought for you:\n\n"{text}"', LADDER_PROMPT)


def easy_ladder_done(correct: int, size: int) -> str:
    return f"✅ Gentle practice complete: {correct}/{size}"


def confidence_complete(pre: int, post: int, delta: int, outcome: str) -> str:
    if outcome == "improved":
        line = f"Up by {delta}, great. That's how confidence builds. 🌱"
    elif outcome == "worsened":
        line = f"Down by {abs(delta)}, and that's okay. Some days are tougher. 🫶"
    else:
        line = "Steady confidence. Consistent work pays off. ✨"
    return (
        "Confidence check complete.\n\n"
        f"Before: {pre}/5\n"
        f"Now: {post}/5\n"
        f"{line}\n\n"
        "You took a step today. That matters.\n\n"
        'Type "practice" for questions or "menu" for options. 🧠'
    )


# ------------------------------------------------------------------
# practice
# ------------------------------------------------------------------
PRACTICE_BREAK = (
    "Take your time. Breathe.\n\n"
    "You're building knowledge step by step. 🌱\n\n"
    'Type "practice" when ready to continue.'
)
PRACTICE_REMINDER = "I'll remind you to practice tonight. 🌙\n\nKeep building that knowledge. You're doing great."
PRACTICE_EMPTY = 'No practice questions available right now.\n\nTry again in a moment, or type "menu" for other options. 🌱'


def practice_header(topic: Optional[str], difficulty: str) -> str:
    return f"🧮 {topic_name(topic)} Practice {DIFFICULTY_EMOJI.get(difficulty, '🟡')}"


def practice_switched(topic: Optional[str]) -> str:
    return f"🔄 Switched to {topic_name(topic)}!"


def practice_set_done(correct: int, size: int) -> str:
    return f"✅ Set complete: {correct}/{size} correct."


def practice_feedback(
    *,
    is_correct: bool,
    correct_letter: str,
    topic: str,
    streak: int,
    previous_streak: int,
    accuracy_percent: int,
    total_answered: int,
    explanation: Optional[str] = None,
) -> str:
    name = topic_name(topic)
    if is_correct:
        lines = ["✅ Well done! You got it right."]
        if streak > 1:
            lines.append(f"🔥 {streak}-question streak! You're building momentum.")
    else:
        lines = [f"Not quite yet, and that's okay. The correct answer was {correct_letter}."]
        if explanation:
            lines.append(f"💡 {explanation}")
        if previous_streak > 0:
            lines.append("Your streak reset, but you can start a new one right now. 🔄")

    check_in = [
        "📊 Quick Check-in:",
        f"• {name}: {'getting the hang of this' if is_correct else 'keep practising the method'}",
        f"• Overall accuracy: {accuracy_percent}%",
        f"• Questions completed: {total_answered}",
    ]
    lines.append("\n".join(check_in))

    if is_correct:
        if accuracy_percent >= 80:
            lines.append("🌟 Strong performance! You're building solid foundations.")
        elif accuracy_percent >= 60:
            lines.append("💪 Good progress! Each question makes you stronger.")
        else:
            lines.append("🌱 You're learning step by step. That's how mastery builds.")
    else:
        lines.append("Remember: every mistake teaches you something. You're growing. 🌱")
    return "\n\n".join(lines)
