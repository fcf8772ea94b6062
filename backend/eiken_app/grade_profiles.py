"""
Static per-grade calibration data for Eiken question generation.

Each grade carries the numeric and structural constraints the prompt builder
writes into its instructions (sentence length, rearrangement token counts,
grammar whitelist/blacklist, vocabulary tiers, reading and essay sizes) and
the normalisation constants used by the rearrangement difficulty index.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import UnsupportedGradeError, UnsupportedQuestionTypeError


class Grade(str, Enum):
    GRADE_5 = "5級"
    GRADE_4 = "4級"
    GRADE_3 = "3級"
    GRADE_PRE_2 = "準2級"
    GRADE_2 = "2級"
    GRADE_PRE_1 = "準1級"
    GRADE_1 = "1級"


# Easiest first
GRADE_ORDER: List[Grade] = list(Grade)


class QuestionType(str, Enum):
    VOCABULARY = "vocabulary"
    REARRANGEMENT = "rearrangement"
    READING_COMPREHENSION = "reading-comprehension"
    ESSAY = "essay"


# Labels sent by the Japanese front-end
QUESTION_TYPE_ALIASES: Dict[str, QuestionType] = {
    "語彙": QuestionType.VOCABULARY,
    "並び替え": QuestionType.REARRANGEMENT,
    "並べ替え": QuestionType.REARRANGEMENT,
    "長文読解": QuestionType.READING_COMPREHENSION,
    "英作文": QuestionType.ESSAY,
}

QUESTION_TYPE_LABELS: Dict[QuestionType, str] = {
    QuestionType.VOCABULARY: "語彙",
    QuestionType.REARRANGEMENT: "並び替え",
    QuestionType.READING_COMPREHENSION: "長文読解",
    QuestionType.ESSAY: "英作文",
}

DIFFICULTY_BANDS: Dict[Grade, str] = {
    Grade.GRADE_5: "初級",
    Grade.GRADE_4: "初級",
    Grade.GRADE_3: "初級",
    Grade.GRADE_PRE_2: "中級",
    Grade.GRADE_2: "中級",
    Grade.GRADE_PRE_1: "上級",
    Grade.GRADE_1: "上級",
}


@dataclass(frozen=True)
class IntRange:
    min: int
    max: int


@dataclass(frozen=True)
class FloatRange:
    min: float
    max: float


@dataclass(frozen=True)
class VocabPolicy:
    ok: Tuple[str, ...]
    caution: Tuple[str, ...]
    ng: Tuple[str, ...]


@dataclass(frozen=True)
class ReadingPassageProfile:
    word_min: int
    word_max: int
    paragraph_count: int
    questions_per_passage: int


@dataclass(frozen=True)
class GradeProfile:
    grade: Grade
    target_cefr: str
    vocabulary_size: int
    sentence_word_range: IntRange
    token_count_range: IntRange
    anchor_range: IntRange
    movable_range: IntRange
    grammar_tier: int
    allowed_grammar: Tuple[str, ...]
    banned_grammar: Tuple[str, ...]
    vocab_policy: VocabPolicy
    reading_passage: ReadingPassageProfile
    essay_word_range: IntRange
    distractor_confusability: Tuple[str, ...]
    uniqueness_rule: str
    max_clauses: int
    rearrangement_banned_grammar: Tuple[str, ...] = ()
    rearrangement_patterns: Tuple[Tuple[str, str], ...] = ()
    rearrangement_lexicon: str = ""
    difficulty_target: Optional[FloatRange] = None
    description: str = ""

    @property
    def max_movables(self) -> int:
        return self.movable_range.max

    @property
    def max_grammar_tier(self) -> int:
        return self.grammar_tier

    def as_prompt_dict(self) -> Dict[str, Any]:
        """Plain-JSON view of the profile embedded into prompts."""
        data = asdict(self)
        data["grade"] = self.grade.value
        data["rearrangement_patterns"] = {code: desc for code, desc in self.rearrangement_patterns}
        return data


GRADE_PROFILES: Dict[Grade, GradeProfile] = {
    Grade.GRADE_5: GradeProfile(
        grade=Grade.GRADE_5,
        target_cefr="A1",
        vocabulary_size=600,
        description="初歩的な英語の基礎知識",
        sentence_word_range=IntRange(8, 12),
        token_count_range=IntRange(6, 8),
        anchor_range=IntRange(3, 4),
        movable_range=IntRange(1, 1),
        grammar_tier=1,
        allowed_grammar=("be動詞/一般動詞（現在）", "can", "前置詞 in/on/at", "現在進行形", "過去形（基本）"),
        banned_grammar=("受動態", "完了形", "関係代名詞", "分詞構文", "比較級"),
        vocab_policy=VocabPolicy(ok=("高頻度日常語彙",), caution=("基本句動詞",), ng=("専門語", "低頻度イディオム")),
        reading_passage=ReadingPassageProfile(140, 220, 2, 3),
        essay_word_range=IntRange(30, 50),
        distractor_confusability=("三単現", "時制ズレ", "前置詞ズレ"),
        uniqueness_rule="並べ替えは唯一解。句読点と限定詞で多解を封じる。",
        max_clauses=1,
        rearrangement_banned_grammar=("受動態", "完了形", "関係代名詞", "分詞構文"),
    ),
    Grade.GRADE_4: GradeProfile(
        grade=Grade.GRADE_4,
        target_cefr="A1+",
        vocabulary_size=1300,
        description="中学中級程度の英語力",
        sentence_word_range=IntRange(10, 15),
        token_count_range=IntRange(7, 9),
        anchor_range=IntRange(3, 4),
        movable_range=IntRange(1, 2),
        grammar_tier=2,
        allowed_grammar=("現在進行形", "過去（規則動詞中心）", "頻度副詞", "will", "比較級（基本）"),
        banned_grammar=("受動態(複雑)", "完了形", "関係代名詞", "分詞構文"),
        vocab_policy=VocabPolicy(ok=("高頻度日常語彙", "基本句動詞"), caution=("中頻度語彙",), ng=("専門語",)),
        reading_passage=ReadingPassageProfile(140, 220, 2, 3),
        essay_word_range=IntRange(30, 50),
        distractor_confusability=("時制ズレ", "語順ズレ", "比較級ズレ"),
        uniqueness_rule="this/these等は片方のみ使用。",
        max_clauses=2,
        rearrangement_banned_grammar=("完了形", "複雑受動態", "関係代名詞"),
    ),
    Grade.GRADE_3: GradeProfile(
        grade=Grade.GRADE_3,
        target_cefr="A2",
        vocabulary_size=2100,
        description="中学卒業程度の英語力",
        sentence_word_range=IntRange(12, 18),
        token_count_range=IntRange(8, 10),
        anchor_range=IntRange(2, 3),
        movable_range=IntRange(2, 2),
        grammar_tier=3,
        allowed_grammar=("because/if節", "比較級/最上級", "be going to", "現在完了形", "受動態（基本）", "関係代名詞that", "不定詞/動名詞"),
        banned_grammar=("分詞構文", "高度な倒置", "関係代名詞の省略", "仮定法"),
        vocab_policy=VocabPolicy(ok=("中頻度語彙", "句動詞"), caution=("高頻度語彙",), ng=("専門語", "超低頻度語")),
        reading_passage=ReadingPassageProfile(140, 220, 2, 4),
        essay_word_range=IntRange(30, 50),
        distractor_confusability=("時制ズレ", "比較級ズレ", "語法ズレ", "前置詞ズレ"),
        uniqueness_rule="because/if節の位置と時制で多解を封じる。",
        max_clauses=3,
        rearrangement_banned_grammar=("分詞構文", "高度倒置"),
    ),
    Grade.GRADE_PRE_2: GradeProfile(
        grade=Grade.GRADE_PRE_2,
        target_cefr="A2+/B1-",
        vocabulary_size=3600,
        description="高校中級程度の英語力",
        sentence_word_range=IntRange(12, 18),
        token_count_range=IntRange(12, 16),
        anchor_range=IntRange(2, 3),
        movable_range=IntRange(2, 3),
        grammar_tier=4,
        allowed_grammar=("受動態(過去/現在)", "不定詞/動名詞", "関係代名詞 that/which"),
        banned_grammar=("仮定法過去完了", "分詞構文の多重化", "高度な倒置"),
        vocab_policy=VocabPolicy(ok=("コロケーション/句動詞",), caution=("中頻度語彙",), ng=("専門語",)),
        reading_passage=ReadingPassageProfile(220, 350, 3, 4),
        essay_word_range=IntRange(50, 70),
        distractor_confusability=("語法ズレ", "前置詞ズレ"),
        uniqueness_rule="関係代名詞の先行詞で多解を封じる。",
        max_clauses=3,
        rearrangement_banned_grammar=("現在完了", "過去完了", "関係代名詞", "関係副詞", "高度な倒置", "分詞構文の多重化", "学術語"),
        rearrangement_patterns=(
            ("P1", "受動態 (現在/過去) ※完了形は不可"),
            ("P2", "to不定詞（副詞的目的/結果） ※「to + 動詞原形」の一塊"),
            ("P3", "that節の目的語（think/say/know + that + SV）※関係代名詞ではない"),
        ),
        rearrangement_lexicon="高頻度語(NGSL 1–2000相当)中心",
        difficulty_target=FloatRange(0.54, 0.62),
    ),
    Grade.GRADE_2: GradeProfile(
        grade=Grade.GRADE_2,
        target_cefr="B1",
        vocabulary_size=5100,
        description="高校卒業程度の英語力",
        sentence_word_range=IntRange(14, 20),
        token_count_range=IntRange(13, 18),
        anchor_range=IntRange(2, 2),
        movable_range=IntRange(3, 5),
        grammar_tier=5,
        allowed_grammar=("現在完了(継続/経験/完了)", "受動", "分詞構文(単純)"),
        banned_grammar=("仮定法過去完了(高度)", "関係副詞の多重入れ子"),
        vocab_policy=VocabPolicy(ok=("一般的語彙",), caution=("中頻度語彙",), ng=("専門語",)),
        reading_passage=ReadingPassageProfile(350, 550, 3, 5),
        essay_word_range=IntRange(80, 120),
        distractor_confusability=("完了形ズレ", "受動態ズレ"),
        uniqueness_rule="完了形の時間表現で多解を封じる。",
        max_clauses=4,
        rearrangement_banned_grammar=("that節(目的語)のみの文", "受動だけ/不定詞だけの文", "過去完了", "分詞構文の連鎖", "学術語"),
        rearrangement_patterns=(
            ("Q1", "現在完了 + 期間/起点句（for/since〜）※完了の語順固定"),
            ("Q2", "制限用法の関係代名詞（that/who/which）※非限定(カンマ)は禁止"),
            ("Q3", "Wh疑問 + 助動/Do系の倒置（必要に応じて受動/完了を含んでも良い）"),
        ),
        rearrangement_lexicon="NGSL 1–2800まで許可（専門語NG）",
        difficulty_target=FloatRange(0.64, 0.76),
    ),
    Grade.GRADE_PRE_1: GradeProfile(
        grade=Grade.GRADE_PRE_1,
        target_cefr="B2",
        vocabulary_size=7500,
        description="大学中級程度の英語力",
        sentence_word_range=IntRange(15, 22),
        token_count_range=IntRange(14, 19),
        anchor_range=IntRange(1, 2),
        movable_range=IntRange(3, 5),
        grammar_tier=6,
        allowed_grammar=("複文(従属節)の拡張", "抽象話題", "コロケーション強化"),
        banned_grammar=("C1相当の学術長文構文",),
        vocab_policy=VocabPolicy(ok=("抽象語彙/学術寄り",), caution=("高頻度語彙",), ng=("超低頻度語",)),
        reading_passage=ReadingPassageProfile(600, 800, 4, 5),
        essay_word_range=IntRange(100, 140),
        distractor_confusability=("コロケーションズレ", "抽象度ズレ"),
        uniqueness_rule="抽象概念の具体例で多解を封じる。",
        max_clauses=5,
        rearrangement_banned_grammar=("C1相当の学術長文構文",),
        rearrangement_patterns=(
            ("R1", "分詞修飾"),
            ("R2", "非定形節"),
            ("R3", "前置詞残置"),
        ),
    ),
    Grade.GRADE_1: GradeProfile(
        grade=Grade.GRADE_1,
        target_cefr="C1",
        vocabulary_size=10000,
        description="大学上級程度の英語力",
        sentence_word_range=IntRange(18, 28),
        token_count_range=IntRange(15, 20),
        anchor_range=IntRange(1, 2),
        movable_range=IntRange(4, 6),
        grammar_tier=7,
        allowed_grammar=("高度な従属節", "慣用表現", "抽象的・学術寄り語彙"),
        banned_grammar=("C2相当の専門領域の超低頻度語",),
        vocab_policy=VocabPolicy(ok=("学術語彙/複雑な表現",), caution=("中頻度語彙",), ng=("超専門語",)),
        reading_passage=ReadingPassageProfile(800, 1000, 4, 5),
        essay_word_range=IntRange(170, 230),
        distractor_confusability=("慣用表現ズレ", "抽象度ズレ"),
        uniqueness_rule="高度な構文の論理関係で多解を封じる。",
        max_clauses=6,
        rearrangement_banned_grammar=("C2相当の超高度構文",),
        rearrangement_patterns=(
            ("S1", "高度な分詞構文"),
            ("S2", "複雑な関係節"),
            ("S3", "倒置構文"),
        ),
    ),
}


def parse_grade(value: Union[str, Grade, None]) -> Grade:
    if isinstance(value, Grade):
        return value
    label = (value or "").strip() if isinstance(value, str) else value
    try:
        return Grade(label)
    except ValueError:
        raise UnsupportedGradeError(value) from None


def parse_question_type(value: Union[str, QuestionType, None]) -> QuestionType:
    if isinstance(value, QuestionType):
        return value
    label = (value or "").strip() if isinstance(value, str) else value
    if label in QUESTION_TYPE_ALIASES:
        return QUESTION_TYPE_ALIASES[label]
    try:
        return QuestionType(label)
    except ValueError:
        raise UnsupportedQuestionTypeError(value) from None


def lookup(grade: Union[str, Grade]) -> GradeProfile:
    return GRADE_PROFILES[parse_grade(grade)]


def difficulty_band(grade: Union[str, Grade]) -> str:
    return DIFFICULTY_BANDS[parse_grade(grade)]
