import json

from conftest import make_raw

from theoryprep.question_bank import (
    QuestionBank,
    build_small_topic_merge_map,
    correct_index,
    json_question_source,
    topic_slug,
    url_image_resolver,
)


def test_small_topic_merges_into_preceding_large_topic():
    assert build_small_topic_merge_map({"1": 20, "2": 3, "3": 15}) == {"2": "1"}


def test_small_topic_without_predecessor_merges_forward():
    assert build_small_topic_merge_map({"1": 3, "2": 20}) == {"1": "2"}


def test_only_small_topics_stay_separate():
    assert build_small_topic_merge_map({"1": 2, "2": 3}) == {}


def test_topics_are_ordered_numerically():
    merge = build_small_topic_merge_map({"10": 3, "2": 20, "9": 30})
    assert merge == {"10": "9"}


def test_invalid_records_are_dropped():
    raw = [
        make_raw("1", "1"),
        {"id": "2", "question": "   ", "answers": ["a"], "topic": "1"},
        {"id": "3", "question": "Blank answers?", "answers": ["", "  "], "topic": "1"},
        {"question": "No id", "answers": ["a"], "topic": "1"},
        "not a dict",
    ]
    bank = QuestionBank(lambda language: raw).get_bank("uz-Latn")
    assert bank.all_question_ids == ["1"]
    assert not bank.has_question("2")


def test_merged_questions_report_absorbing_topic():
    raw = [make_raw(str(i), "1") for i in range(1, 13)] + [make_raw("50", "2")]
    bank = QuestionBank(lambda language: raw)
    topics = bank.get_topics("ru")
    assert [topic.id for topic in topics] == ["1"]
    assert "50" in topics[0].question_ids
    assert bank.get_question("ru", "50").topic_id == "1"


def test_options_are_derived_from_answers(bank):
    question = bank.get_question("uz-Latn", "101")
    assert [option.id for option in question.options] == ["101:1", "101:2", "101:3"]
    assert [option.label for option in question.options] == ["A", "B", "C"]
    assert [option.is_correct for option in question.options] == [False, True, False]
    assert question.explanation == "Explanation 101"


def test_question_is_memoized(bank):
    assert bank.get_question("uz-Latn", "101") is bank.get_question("uz-Latn", "101")


def test_unknown_question_is_none(bank):
    assert bank.get_question("uz-Latn", "999") is None


def test_unknown_language_falls_back_to_default(bank):
    assert bank.get_bank("de") is bank.get_bank("uz-Latn")


def test_topic_metadata(bank):
    topic = bank.get_bank("ru").topic_by_id["2"]
    assert topic.slug == "section-2"
    assert topic.title == "Раздел 2"
    assert topic.question_ids == ("201", "202")


def test_topic_slug_normalizes():
    assert topic_slug("Road Signs/2") == "section-road-signs-2"


def test_correct_index_handles_garbage():
    assert correct_index("2") == 1
    assert correct_index(None) == -1
    assert correct_index("x") == -1


def test_image_resolver(raw_questions):
    bank = QuestionBank(lambda language: raw_questions, image_resolver=url_image_resolver("https://cdn.test/img/"))
    assert bank.get_question("uz-Latn", "202").image_url == "https://cdn.test/img/signs/202.png"
    assert bank.get_question("uz-Latn", "201").image_url is None


def test_json_source_reads_language_file(tmp_path):
    lang_dir = tmp_path / "uz-Cyrl"
    lang_dir.mkdir()
    (lang_dir / "questions.json").write_text(json.dumps({"default": [make_raw("7", "1")]}), encoding="utf-8")
    load = json_question_source(tmp_path)
    assert [raw["id"] for raw in load("uz-Cyrl")] == ["7"]
    assert load("ru") == []
