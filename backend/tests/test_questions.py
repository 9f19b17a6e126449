import random

from buzzquiz.constants import FALLBACK_QUESTIONS
from buzzquiz.services.questions import (
    normalize_options, normalize_record, resolve_question_pool, shuffle,
)


def _science_record(qid, text='Which gas do plants absorb?'):
    return {
        'questionId': qid,
        'subject': '理科',
        'type': '選択式',
        'text': text,
        'answer': 'CO2',
        'options': [
            {'text': 'O2', 'isCorrect': False},
            {'text': 'CO2', 'isCorrect': True},
            {'text': ' ', 'isCorrect': False},
        ],
    }


def test_shuffle_is_a_permutation_and_leaves_input_alone():
    items = list(range(10))
    result = shuffle(items, random.Random(3))
    assert sorted(result) == items
    assert items == list(range(10))


def test_normalize_options_shapes():
    assert normalize_options(['a', '', 'b']) == ['a', 'b']
    assert normalize_options([{'text': 'x', 'isCorrect': True}, {'text': 'y'}]) == ['x', 'y']
    assert normalize_options({'k1': 'x', 'k2': {'text': 'y'}}) == ['x', 'y']
    assert normalize_options(None) == []


def test_normalize_record_free_text():
    question = normalize_record({'text': 'Capital of Japan?', 'answer': 'Tokyo'}, 'social', 'remote-social-0')
    assert question['id'] == 'remote-social-0'
    assert question['isSelectable'] is False
    assert question['options'] is None
    assert question['subject'] == 'social'


def test_pool_uses_builtins_when_catalog_empty(store):
    pool = resolve_question_pool(store, ['理科', '数学'], 10, random.Random(7))
    ids = {q['id'] for q in pool}
    expected = {r['id'] for r in FALLBACK_QUESTIONS if r['subject'] in ('理科', '数学')}
    assert ids == expected


def test_pool_prefers_catalog_and_truncates(store):
    store.write_full('questions/science/s1', _science_record('s1'))
    store.write_full('questions/science/s2', _science_record('s2', 'Second'))
    store.write_full('questions/english/e1', dict(_science_record('e1'), subject='英語'))

    pool = resolve_question_pool(store, ['理科'], 10, random.Random(1))
    ids = {q['id'] for q in pool}
    # Catalog records plus the built-in science question; english node not requested
    assert ids == {'s1', 's2', 'builtin-1'}
    s1 = next(q for q in pool if q['id'] == 's1')
    assert s1['options'] == ['O2', 'CO2']
    assert s1['isSelectable'] is True

    assert len(resolve_question_pool(store, ['理科'], 2, random.Random(1))) == 2


def test_pool_catalog_id_shadows_builtin(store):
    store.write_full('questions/science/builtin-1', dict(_science_record('builtin-1'), text='Override'))
    pool = resolve_question_pool(store, ['理科'], 10, random.Random(2))
    assert [q['text'] for q in pool if q['id'] == 'builtin-1'] == ['Override']


def test_pool_unknown_subject_falls_back_to_all_builtins(store):
    pool = resolve_question_pool(store, ['astrology'], 10, random.Random(4))
    assert {q['id'] for q in pool} == {r['id'] for r in FALLBACK_QUESTIONS}


def test_pool_without_subjects_uses_every_subject(store):
    store.write_full('questions/social/x1', {'questionId': 'x1', 'text': 'Q', 'answer': 'A', 'subject': '社会'})
    pool = resolve_question_pool(store, [], 10, random.Random(5))
    assert 'x1' in {q['id'] for q in pool}
    assert len(pool) == len(FALLBACK_QUESTIONS) + 1
