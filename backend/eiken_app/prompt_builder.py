"""
Grade-calibrated prompt construction.

Every prompt is a plain Japanese instruction block: a shared header (originality,
grade, CEFR target, topic), the grade profile as JSON, a question-type specific
section that fixes the output JSON shape, and a closing checklist. Topics and
custom instructions are interpolated verbatim.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional, Sequence, Union

from .errors import UnsupportedQuestionTypeError
from .grade_profiles import Grade, GradeProfile, QuestionType, lookup, parse_question_type

DEFAULT_TOPIC = "一般的な話題"

DIFFICULTY_FORMULA = "0.4*(grammar_tier/max_grammar_tier) + 0.3*(movables/max_movables) + 0.2*token_norm + 0.1*(1 - anchors/tokens)"

_VARIETY_RULES = """**問題の多様性を確保してください：**
- 日常会話、学校生活、趣味、家族、旅行、環境、科学、文化など様々なトピックから出題
- 文の長さや複雑さにも変化をつける
- 動詞、名詞、形容詞、副詞、前置詞など様々な品詞をバランスよく扱う"""

_UNIQUENESS_HEURISTICS = """【唯一解ルール（必須）】
- 句読点(. または ?)を1つ入れ、その位置で語順を固定する（挿入カンマ or 疑問倒置）。
- 頻度副詞は be動詞の直後 または 一般動詞の直前 に限定する。
- 限定詞は this/these のどちらか一方のみ使用する（同じ種類の限定詞を重複させない）。
- 従属節・前置詞句は意味上一箇所（ふつう文末）にしか置けない内容にし、節の順序を固定する。"""


def _profile_json(profile: GradeProfile) -> str:
    return json.dumps({"grade_profile": profile.as_prompt_dict()}, ensure_ascii=False, indent=2)


def _join(values: Sequence[str], sep: str = "・") -> str:
    return sep.join(values) if values else "なし"


def _constraint_summary(profile: GradeProfile) -> str:
    vocab = profile.vocab_policy
    return "\n".join([
        f"- 級：{profile.grade.value}（CEFRおおよそ {profile.target_cefr}、目安語彙数 {profile.vocabulary_size}語）",
        f"- 文長：{profile.sentence_word_range.min}-{profile.sentence_word_range.max} 語",
        f"- 使用してよい文法：{_join(profile.allowed_grammar)}",
        f"- 使用禁止の文法：{_join(profile.banned_grammar)}",
        f"- 語彙：推奨={_join(vocab.ok)} / 注意={_join(vocab.caution)} / 禁止={_join(vocab.ng)}",
        f"- 1文あたりの節の数：最大 {profile.max_clauses}",
    ])


def _vocabulary_section(profile: GradeProfile, count: int) -> str:
    grade = profile.grade.value
    return f"""あなたは英検風の問題作成者。以下の grade_profile に**厳密準拠**で、
{count}問の1空所4択を作成し、**JSONのみ**出力してください。

{_VARIETY_RULES}

要件：
- **文長は必ず {profile.sentence_word_range.min}-{profile.sentence_word_range.max} 語**、空所は( )。短い文は禁止。
- 選択肢は**品詞一致**。ダミーは「{_join(profile.distractor_confusability, '/')}」で自然に見せる（場違い語は不可）。
- 正解はちょうど1つ。`answer` は options のいずれかと完全一致させる。
- 各問に日本語解説 `rationale_ja` と、誤答ごとの `distractor_notes_ja` を付す。
- `targets` に grammar / vocab_tier / length などメタ情報を格納。
- `self_check` で語彙難度/文法難度/多解リスク/文長適合/級適合を5段階で自己採点（期待=3）。外れたら**自動修正**してから出力。
- 禁止：過去問再現、低頻度専門語、固有名詞、時事依存。

入力 grade_profile:
{_profile_json(profile)}

出力JSON：
{{
  "type": "cloze_mcq",
  "grade": "{grade}",
  "items": [
    {{
      "stem": "The students who ( ) the exam last week are now preparing for their next challenge.",
      "options": ["passed", "pass", "passing", "will pass"],
      "answer": "passed",
      "rationale_ja": "last weekという過去の時間表現があるため過去形passedが正解。",
      "distractor_notes_ja": {{"pass": "現在形で時間表現と矛盾", "passing": "進行形で文脈に合わない", "will pass": "未来形で時間表現と矛盾"}},
      "targets": {{"grammar": "関係代名詞+過去形", "vocab_tier": "中頻度", "length": 15}},
      "self_check": {{"lex_level": 3, "gram_level": 3, "ambiguity_risk": 3, "length_fit": 3, "grade_fit": 3, "notes_ja": "..."}}
    }}
  ]
}}"""


def _rearrangement_targets(profile: GradeProfile) -> str:
    lines = [
        f"- tokens: **{profile.token_count_range.min}–{profile.token_count_range.max}**（句読点を必ず1つ含める→これは1トークン）",
        f"- anchors: **{profile.anchor_range.min}–{profile.anchor_range.max}**（句読点1 + 助動詞/時制マーカー/限定詞）",
        f"- movables: **{profile.movable_range.min}–{profile.movable_range.max}**（頻度副詞/前置詞句/時副詞句/to不定詞句/従属節 から）",
        f"- grammar_tier: **{profile.grammar_tier}**",
    ]
    if profile.rearrangement_lexicon:
        lines.append(f"- 語彙: {profile.rearrangement_lexicon}")
    return "\n".join(lines)


def _rearrangement_patterns(profile: GradeProfile) -> str:
    if not profile.rearrangement_patterns:
        return ""
    codes = "/".join(code for code, _ in profile.rearrangement_patterns)
    body = "\n".join(f"- {code}: {desc}" for code, desc in profile.rearrangement_patterns)
    return f"【必須構文パターン（{codes} のいずれか1つだけ）】\n{body}\n\n"


def _rearrangement_section(profile: GradeProfile, count: int) -> str:
    grade = profile.grade.value
    target = ""
    if profile.difficulty_target is not None:
        target = f"- difficulty_index 目標 **{profile.difficulty_target.min:.2f}–{profile.difficulty_target.max:.2f}**\n"
    return f"""あなたは英検に似た形式の並べ替え問題の作成者かつ検査官です。
目的: {grade}({profile.target_cefr})の並べ替え問題を {count} 問作る。出力はJSONのみ。
- 既存の過去問の再現は禁止。すべて新規に創作。
- 固有名詞や時事依存は使わない。
- 「唯一解」を最優先。多解の疑いが残る候補は破棄する。

{_VARIETY_RULES}

{_rearrangement_patterns(profile)}【禁止】
- {_join(profile.rearrangement_banned_grammar)}

【トークン/要素 目標】
{_rearrangement_targets(profile)}

定義:
- anchors = 句読点1つ、限定詞、助動詞/時制マーカー(does/did/was/has など) のように位置が固定される要素
- movables = 頻度副詞、前置詞句、副詞句、to不定詞句、従属節 など位置が動かせる要素
- grammar_tier = 1:基本文 / 2:時制・進行 / 3:because・if・比較 / 4:受動・不定詞・that節 / 5:完了・関係代名詞・倒置 / 6:分詞修飾・非定形節 / 7:高度な従属・倒置構文

{_UNIQUENESS_HEURISTICS}
- {profile.uniqueness_rule}

【自己検査（各アイテムに必須）】
- tokens_in_range: Yes（{profile.token_count_range.min}–{profile.token_count_range.max}）
- anchors_count ∈ [{profile.anchor_range.min}, {profile.anchor_range.max}]
- movables_count ∈ [{profile.movable_range.min}, {profile.movable_range.max}]
- forbidden_detected: No
{target}- difficulty_index の計算: {DIFFICULTY_FORMULA}
  - token_norm: {profile.token_count_range.min}→0, {profile.token_count_range.max}→1 に線形正規化
  - max_movables={profile.max_movables}, max_grammar_tier={profile.max_grammar_tier}
- どれか1つでも外れた候補は**出力しない**（内部で破棄し、合格のみを返す）。

入力 grade_profile:
{_profile_json(profile)}

【出力JSONスキーマ（合格 {count} 件）】
{{
  "type": "jumbled_sentence",
  "grade": "{grade}",
  "items": [
    {{
      "tokens": ["..."],
      "answer": "Sentence ... .",
      "japanese": "日本語訳",
      "features": {{
        "pattern": "{profile.rearrangement_patterns[0][0] if profile.rearrangement_patterns else ''}",
        "anchors": {profile.anchor_range.min},
        "movables": {profile.movable_range.min},
        "movable_types": ["freq-adv", "pp"],
        "grammar_tier": {profile.grammar_tier},
        "tokens": {profile.token_count_range.min},
        "difficulty_index": 0.5,
        "why_unique_ja": "唯一解の理由（句読点/頻度副詞位置/限定詞/節の順序など）"
      }},
      "self_check": {{"gram_level": 3, "ambiguity_risk": 3, "grade_fit": 3}}
    }}
  ]
}}
tokens はすべて小文字、answer は文頭のみ大文字にする。"""


def _reading_section(profile: GradeProfile, count: int, topic: str) -> str:
    grade = profile.grade.value
    reading = profile.reading_passage
    return f"""あなたは英検風の読解作成者。grade_profileに従い、{count}本文の読解セットを**JSONのみ**で作成。

{_VARIETY_RULES}

要件：
- 本文語数：{reading.word_min}-{reading.word_max}語、段落数：{reading.paragraph_count}。
- 設問は各本文につき{reading.questions_per_passage}問。主旨/詳細/推論/語彙(文脈)をバランス良く。
- 各設問は4択(A–D)。本文の文言と意味で正解が一意。
- 各設問に根拠文 `evidence` と日本語解説 `rationale_ja` を付す。
- 本文ごとに級相当の見出し語リスト `glossary`（10語以内）。
- `self_check` で語彙/文法/文長/設問難度/級適合を5段階評価（期待=3）。外れたら修正。

入力 grade_profile:
{_profile_json(profile)}

出力JSON（sets に {count} 件）：
{{
  "type": "reading_set",
  "grade": "{grade}",
  "topic": "{topic}",
  "sets": [
    {{
      "passage": {{"title": "...", "text": "...", "word_count": {reading.word_min}}},
      "questions": [
        {{"qtype": "main_idea", "stem": "What is the main idea of the passage?", "options": ["A ...", "B ...", "C ...", "D ..."], "answer": "B", "evidence": "第2段落: '...'", "rationale_ja": "..."}}
      ],
      "glossary": [{{"word": "habit", "ja": "習慣"}}],
      "self_check": {{"lex_level": 3, "gram_level": 3, "length_fit": 3, "q_difficulty": 3, "grade_fit": 3}}
    }}
  ]
}}"""


def _essay_section(profile: GradeProfile, count: int) -> str:
    grade = profile.grade.value
    words = profile.essay_word_range
    return f"""あなたは英検風のライティング作成者。grade_profileに従い、{count}題の英作文タスクを**JSONのみ**で作成。

{_VARIETY_RULES}
- 賛否、意見説明、メール返信、体験談、将来の計画など様々な形式で出題

要件：
- 語数：{words.min}-{words.max}語。
- 評価観点：内容/構成/文法/語彙（各0–4）。観点定義をJSONに含める。
- `instructions_ja` に日本語の解答指示を書く。
- モデル解答 `reference_answer` は任意。含める場合は級に合った自然さで。
- `self_check` で語彙/文法/構成/級適合を5段階評価（期待=3）。外れたら修正。

入力 grade_profile:
{_profile_json(profile)}

出力JSON（tasks に {count} 件）：
{{
  "type": "writing_task",
  "grade": "{grade}",
  "tasks": [
    {{
      "prompt": "Do you agree or disagree that {{statement}}? Give two reasons.",
      "instructions_ja": "あなたの意見とその理由を2つ書きなさい。",
      "word_limit": {{"min": {words.min}, "max": {words.max}}},
      "rubric": {{
        "content": "主張と理由が明確か（0–4）",
        "organization": "段落構成・論理の流れ（0–4）",
        "grammar": "時制/一致/語法の正確さ（0–4）",
        "vocabulary": "適切さと多様性（0–4）"
      }},
      "reference_answer": null,
      "self_check": {{"lex_level": 3, "gram_level": 3, "organization": 3, "grade_fit": 3}}
    }}
  ]
}}"""


_SectionBuilder = Callable[[GradeProfile, int, str], str]

_SECTIONS: Dict[QuestionType, _SectionBuilder] = {
    QuestionType.VOCABULARY: lambda profile, count, topic: _vocabulary_section(profile, count),
    QuestionType.REARRANGEMENT: lambda profile, count, topic: _rearrangement_section(profile, count),
    QuestionType.READING_COMPREHENSION: _reading_section,
    QuestionType.ESSAY: lambda profile, count, topic: _essay_section(profile, count),
}


def build(
    grade: Union[str, Grade],
    question_type: Union[str, QuestionType],
    count: int,
    topics: Optional[Sequence[str]] = None,
    custom_instructions: Optional[str] = None,
) -> str:
    profile = lookup(grade)
    qtype = parse_question_type(question_type)
    section = _SECTIONS.get(qtype)
    if section is None:
        raise UnsupportedQuestionTypeError(question_type)

    topic = ", ".join(topics) if topics else DEFAULT_TOPIC
    parts = [
        "あなたは日本の英語検定(英検)に似た形式の問題作成者です。",
        "",
        "共通システム指示：",
        "・既存の過去問や文章を記憶から再現・転載しない。必ず新規に創作する。",
        "・各級らしさを語彙/文法/文長/設問タイプで再現する。",
        "・出力は必ず日本語説明つきJSONで返す（コード以外の文章は出力しない）。",
        f"・難易度は {profile.grade.value}（CEFRおおよそ {profile.target_cefr}）に合わせる。",
        f"・トピックは {topic}（中立的・文化的偏りを避ける）。",
        "・解説は日本語(learners向け)、根拠は英文中の該当箇所を引用して示す。",
        "",
        "級の制約：",
        _constraint_summary(profile),
        "",
        section(profile, count, topic),
        "",
        "注意事項：",
        "- 必ず有効なJSON形式で、1つのJSONオブジェクトとして出力してください",
        "- 各級の語彙レベルと文長制限を厳守してください",
        "- 文化的偏りを避け、中立的な内容にしてください",
        "- 既存の過去問を再現せず、必ず新規創作してください",
    ]
    if custom_instructions:
        parts += ["", "追加指示：", custom_instructions]
    return "\n".join(parts)


def build_validation_prompt(profile: GradeProfile, payload: Any) -> str:
    return f"""下の問題JSONを grade_profile に照らして検品。NGがあれば修正したうえで、
**修正済みJSONのみ**を返す（余計なテキストは不要）。元のJSONと同じ "type" と構造を保つこと。

チェック観点：
1) 語彙：高頻度中心か。低頻度/専門語が混入していないか（同義の平易語に置換）。
2) 文法：allowed_grammar内か。banned_grammarが混入していないか。
3) 文長/情報量：規定範囲か。従属節の数が過多でないか。
4) 並べ替え唯一解：句読点・限定詞・時制で多解を封じているか。多解なら修正。
5) 語彙4択ダミー：全て文法的に成立しうるが、意味/語法の一点で外れているか。場違い語は不可。
6) 読解の設問設計：主旨/詳細/推論/語彙のバランス、根拠の妥当性。
7) 作文：語数/形式/ルーブリックの整合。
8) 自己採点：各指標が3±1に収まること。外れる場合は再設計してから返す。

入力：
- grade_profile: {json.dumps(profile.as_prompt_dict(), ensure_ascii=False)}
- items_json: {json.dumps(payload, ensure_ascii=False)}

出力：修正後JSONのみ"""
