# src/lifecompass/core/questions.py
"""
Question catalog and display metadata.

Static, ordered, pure lookup. The catalog order is the order questions are
asked and exported in.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from .models import Mode, ReflectionPeriod, Section, QuestionType, ValueKind


ALL_MODES = frozenset(Mode)
OK_AND_DEEP = frozenset({Mode.OK, Mode.DEEP})
DEEP_ONLY = frozenset({Mode.DEEP})

LIFE_AREAS_QUESTION_ID = "life_areas_past"
WORD_OF_YEAR_QUESTION_ID = "word_of_year"
THREE_WORDS_QUESTION_ID = "three_words"


@dataclass(frozen=True)
class Question:
    id: str
    section: Section
    type: QuestionType
    title: str
    prompt: str
    modes: FrozenSet[Mode]
    placeholder: Optional[str] = None
    list_count: Optional[int] = None

    @property
    def value_kind(self) -> ValueKind:
        return self.type.value_kind

    def applies_to(self, mode: Mode) -> bool:
        return Mode(mode) in self.modes


@dataclass(frozen=True)
class LifeArea:
    id: str
    name: str


@dataclass(frozen=True)
class ModeInfo:
    name: str
    time: str
    description: str


@dataclass(frozen=True)
class PeriodInfo:
    name: str
    description: str


QUESTIONS = (
    # Part 1: the past year
    Question(
        id="calendar", section=Section.PAST, type=QuestionType.CALENDAR,
        title="Your Year in Review",
        prompt="Go through each month. What were the key events, moments, or milestones?",
        placeholder="What happened this month...", modes=DEEP_ONLY,
    ),
    Question(
        id="year_title", section=Section.PAST, type=QuestionType.TEXT,
        title="Title Your Year",
        prompt="If a book or movie was made about your year, what would the title be?",
        placeholder="My year was called...", modes=OK_AND_DEEP,
    ),
    Question(
        id=THREE_WORDS_QUESTION_ID, section=Section.PAST, type=QuestionType.LIST,
        title="Three Words",
        prompt="Choose three words that define your past year.",
        placeholder="One word that captures this year...", modes=ALL_MODES, list_count=3,
    ),
    Question(
        id="best_moments", section=Section.PAST, type=QuestionType.TEXTAREA,
        title="Best Moments",
        prompt=("Describe your happiest, most memorable moments. How did you feel? "
                "Who was there? What made them special?"),
        placeholder="My most treasured moments were...", modes=DEEP_ONLY,
    ),
    Question(
        id="accomplishments", section=Section.PAST, type=QuestionType.LIST,
        title="Biggest Accomplishments",
        prompt="What are the three things you're most proud of achieving this year?",
        placeholder="I accomplished...", modes=ALL_MODES, list_count=3,
    ),
    Question(
        id="challenges", section=Section.PAST, type=QuestionType.LIST,
        title="Biggest Challenges",
        prompt="What were the three biggest challenges you faced this year?",
        placeholder="I struggled with...", modes=OK_AND_DEEP, list_count=3,
    ),
    Question(
        id="important_people", section=Section.PAST, type=QuestionType.LIST,
        title="Most Important People",
        prompt="Who were the three most important people in your year? Why did they matter?",
        placeholder="This person was important because...", modes=DEEP_ONLY, list_count=3,
    ),
    Question(
        id="wisest_decisions", section=Section.PAST, type=QuestionType.LIST,
        title="Wisest Decisions",
        prompt="What were the three wisest decisions you made this year?",
        placeholder="I wisely chose to...", modes=OK_AND_DEEP, list_count=3,
    ),
    Question(
        id="lessons", section=Section.PAST, type=QuestionType.LIST,
        title="Biggest Lessons",
        prompt="What were the three most important lessons you learned this year?",
        placeholder="I learned that...", modes=DEEP_ONLY, list_count=3,
    ),
    Question(
        id="gratitude", section=Section.PAST, type=QuestionType.TEXTAREA,
        title="Gratitude",
        prompt="What are you most grateful for this year?",
        placeholder="I am grateful for...", modes=ALL_MODES,
    ),
    Question(
        id=LIFE_AREAS_QUESTION_ID, section=Section.PAST, type=QuestionType.RATING,
        title="Life Areas Rating",
        prompt=("How satisfied were you with each area of your life this year? "
                "(1 = very unsatisfied, 10 = couldn't be better)"),
        modes=ALL_MODES,
    ),
    Question(
        id="forgiveness", section=Section.PAST, type=QuestionType.TEXTAREA,
        title="Forgiveness",
        prompt="What do you need to forgive yourself for? What mistakes or regrets can you let go of?",
        placeholder="I forgive myself for...", modes=OK_AND_DEEP,
    ),
    Question(
        id="letting_go", section=Section.PAST, type=QuestionType.TEXTAREA,
        title="Letting Go",
        prompt="What beliefs, habits, or grudges are you ready to release? What no longer serves you?",
        placeholder="I let go of...", modes=OK_AND_DEEP,
    ),

    # Part 2: the year ahead
    Question(
        id="daydream", section=Section.FUTURE, type=QuestionType.TEXTAREA,
        title="Daydream",
        prompt=("Close your eyes. Imagine your ideal year ahead. What do you see? "
                "Where are you? How do you feel? What have you accomplished?"),
        placeholder="In my ideal year, I see...", modes=DEEP_ONLY,
    ),
    Question(
        id="dreams", section=Section.FUTURE, type=QuestionType.LIST,
        title="Dreams & Wishes",
        prompt="What are your three biggest dreams or wishes for the coming year?",
        placeholder="I dream of...", modes=ALL_MODES, list_count=3,
    ),
    Question(
        id=WORD_OF_YEAR_QUESTION_ID, section=Section.FUTURE, type=QuestionType.WORD,
        title="Word of the Year",
        prompt=("Pick one word to define and guide your upcoming year. "
                "This word will be your compass when you need direction."),
        placeholder="My word is...", modes=ALL_MODES,
    ),
    Question(
        id="special_because", section=Section.FUTURE, type=QuestionType.TEXTAREA,
        title="This Year Will Be Special",
        prompt='Complete this sentence: "This year will be special for me because..."',
        placeholder="This year will be special because...", modes=OK_AND_DEEP,
    ),
    Question(
        id="self_advice", section=Section.FUTURE, type=QuestionType.TEXTAREA,
        title="Advice to Yourself",
        prompt="What advice would you give yourself for the year ahead?",
        placeholder="I advise myself to...", modes=OK_AND_DEEP,
    ),
    Question(
        id="life_area_goals", section=Section.FUTURE, type=QuestionType.LIST,
        title="Life Area Goals",
        prompt="Set one specific goal for each area of your life.",
        placeholder="My goal for this area is...", modes=DEEP_ONLY, list_count=7,
    ),
    Question(
        id="secret_wish", section=Section.FUTURE, type=QuestionType.TEXTAREA,
        title="Secret Wish",
        prompt="What is your deepest, secret wish for this year? (No one else needs to know)",
        placeholder="My secret wish is...", modes=ALL_MODES,
    ),
    Question(
        id="commitment", section=Section.FUTURE, type=QuestionType.TEXTAREA,
        title="Your Commitment",
        prompt="Write your commitment statement. How will you make this year meaningful?",
        placeholder="I commit to making this year meaningful by...", modes=ALL_MODES,
    ),
)

_QUESTIONS_BY_ID: Dict[str, Question] = {q.id: q for q in QUESTIONS}


LIFE_AREAS = (
    LifeArea("personal_growth", "Personal Growth"),
    LifeArea("work_career", "Work & Career"),
    LifeArea("health_fitness", "Health & Fitness"),
    LifeArea("relationships", "Relationships"),
    LifeArea("fun_recreation", "Fun & Recreation"),
    LifeArea("finances", "Finances"),
    LifeArea("spirituality", "Spirituality & Inner Peace"),
)

LIFE_AREA_IDS = frozenset(area.id for area in LIFE_AREAS)

MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

MODE_INFO: Dict[Mode, ModeInfo] = {
    Mode.QUICK: ModeInfo("Quick", "~15 min", "I've got no time, just the essentials"),
    Mode.OK: ModeInfo("Just Ok", "~45 min", "A balanced reflection with key insights"),
    Mode.DEEP: ModeInfo("Deep Think", "~90 min", "Dive deep into every aspect of your year"),
}

PERIOD_INFO: Dict[ReflectionPeriod, PeriodInfo] = {
    ReflectionPeriod.Q1: PeriodInfo("Q1 Check-in", "First quarter reflection"),
    ReflectionPeriod.MID_YEAR: PeriodInfo("Mid-Year Review", "Half-year checkpoint"),
    ReflectionPeriod.YEAR_END: PeriodInfo("Year-End Reflection", "Full year reflection"),
}


def get_questions_for_mode(mode: Mode) -> List[Question]:
    """Catalog questions asked in the given mode, in catalog order."""
    mode = Mode(mode)
    return [q for q in QUESTIONS if mode in q.modes]


def get_questions_by_section(questions: List[Question], section: Section) -> List[Question]:
    section = Section(section)
    return [q for q in questions if q.section == section]


def get_question(question_id: str) -> Optional[Question]:
    return _QUESTIONS_BY_ID.get(question_id)


def kind_for_question(question_id: str) -> Optional[ValueKind]:
    """Declared value kind of a catalog question, None for unknown ids."""
    question = _QUESTIONS_BY_ID.get(question_id)
    return question.value_kind if question else None
