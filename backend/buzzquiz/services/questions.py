import random
from typing import Iterable, List, Optional

from flask import current_app

from buzzquiz.constants import FALLBACK_QUESTIONS, SELECTABLE_TYPE, SUBJECT_NODES
from buzzquiz.errors import StoreUnavailable

CATALOG_PATH = 'questions'


def shuffle(items, rng: Optional[random.Random] = None) -> list:
    """Fisher-Yates shuffle of a copy of ``items``."""
    rng = rng or random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def shuffle_options(options, rng: Optional[random.Random] = None):
    if not options:
        return None
    return shuffle(options, rng)


def normalize_options(raw) -> List[str]:
    """Turn catalog options into an ordered list of choice strings.

    Accepts a list of strings, a list of ``{text, isCorrect}`` objects or a
    mapping of either (store-generated keys), in which case key order is kept.
    Blank entries are dropped.
    """
    if not raw:
        return []
    if isinstance(raw, dict):
        raw = list(raw.values())
    options = []
    for opt in raw:
        if isinstance(opt, dict):
            opt = opt.get('text')
        if opt is None:
            continue
        text = str(opt)
        if text.strip():
            options.append(text)
    return options


def _requested_nodes(subjects: Iterable[str]) -> set:
    requested = set(subjects or [])
    if not requested:
        requested = set(SUBJECT_NODES)
    nodes = set()
    for name, node in SUBJECT_NODES.items():
        if name in requested or node in requested:
            nodes.add(node)
    # Unknown subjects may still name a catalog node directly
    nodes.update(s for s in requested if s not in SUBJECT_NODES)
    return nodes


def _subject_matches(subject: str, nodes: set) -> bool:
    return subject in nodes or SUBJECT_NODES.get(subject) in nodes


def normalize_record(record: dict, subject: str, fallback_id: str) -> dict:
    options = normalize_options(record.get('options'))
    if not options and record.get('type') == SELECTABLE_TYPE:
        current_app.logger.warning(f"[pool] selectable record without options id={fallback_id}")
    answer = record.get('answer')
    return {
        'id': str(record.get('questionId') or record.get('id') or fallback_id),
        'text': record.get('text') or '',
        'answer': '' if answer is None else str(answer),
        'subject': record.get('subject') or subject,
        'grade': record.get('grade'),
        'options': options or None,
        'isSelectable': bool(options),
    }


def fetch_catalog(store) -> dict:
    """Best-effort read of the remote catalog, grouped by subject node."""
    try:
        catalog = store.read_once(CATALOG_PATH)
    except StoreUnavailable as exc:
        current_app.logger.warning(f"[pool] catalog unavailable: {exc}")
        return {}
    if not isinstance(catalog, dict):
        return {}
    return catalog


def resolve_question_pool(store, subjects, count: int, rng: Optional[random.Random] = None) -> List[dict]:
    """Build the ordered question sequence for one match.

    Remote catalog entries for the requested subjects come first, built-in
    questions are merged in unless their id is already taken. If nothing
    matches the whole built-in set is used, so a match always has content.
    The result is shuffled and cut to ``count``.
    """
    nodes = _requested_nodes(subjects)
    merged = []
    seen = set()

    catalog = fetch_catalog(store)
    for node in sorted(catalog):
        if node not in nodes:
            continue
        entries = catalog[node]
        if isinstance(entries, dict):
            entries = list(entries.values())
        if not isinstance(entries, list):
            continue
        for n, record in enumerate(entries):
            if not isinstance(record, dict):
                continue
            question = normalize_record(record, node, fallback_id=f'remote-{node}-{n}')
            if question['id'] in seen:
                continue
            seen.add(question['id'])
            merged.append(question)

    for record in FALLBACK_QUESTIONS:
        if not _subject_matches(record['subject'], nodes):
            continue
        if record['id'] in seen:
            continue
        seen.add(record['id'])
        merged.append(normalize_record(record, record['subject'], record['id']))

    if not merged:
        current_app.logger.warning(
            f"[pool] no questions for subjects={sorted(nodes)}; using the whole built-in set"
        )
        merged = [normalize_record(r, r['subject'], r['id']) for r in FALLBACK_QUESTIONS]

    pool = shuffle(merged, rng)[:max(0, int(count))]
    current_app.logger.info(f"[pool] resolved {len(pool)} of {len(merged)} questions subjects={sorted(nodes)}")
    return pool
