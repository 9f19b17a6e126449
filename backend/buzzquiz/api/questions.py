from flask import Blueprint, jsonify, request, current_app
from buzzquiz.constants import SELECTABLE_TYPE, SUBJECT_NODES
from buzzquiz.errors import InvalidRequest, NotFound
from buzzquiz.store import get_store
from buzzquiz.services.questions import CATALOG_PATH, fetch_catalog, resolve_question_pool
import time
import uuid


questions = Blueprint('questions', __name__)


def _validate_question(data):
    """Check a catalog record and derive its answer from the marked option."""
    text = (data.get('text') or '').strip()
    subject = (data.get('subject') or '').strip()
    if not text or not subject:
        raise InvalidRequest('Question text and subject are required')
    record = {
        'subject': subject,
        'grade': data.get('grade'),
        'type': data.get('type') or SELECTABLE_TYPE,
        'text': text,
        'answer': (data.get('answer') or '').strip(),
        'explanation': data.get('explanation') or '',
        'options': [],
    }
    if record['type'] == SELECTABLE_TYPE:
        raw = data.get('options') or []
        options = [
            {'text': str((o.get('text') if isinstance(o, dict) else o) or ''), 'isCorrect': bool(isinstance(o, dict) and o.get('isCorrect'))}
            for o in raw
        ]
        options = [o for o in options if o['text'].strip()]
        if len(options) < 2:
            raise InvalidRequest('Multiple choice questions need at least two options')
        correct = [o for o in options if o['isCorrect']]
        if not correct and record['answer']:
            correct = [o for o in options if o['text'] == record['answer']]
            for o in correct:
                o['isCorrect'] = True
        if len(correct) != 1:
            raise InvalidRequest('Mark exactly one option as correct')
        record['answer'] = correct[0]['text']
        record['options'] = options
    elif not record['answer']:
        raise InvalidRequest('An answer is required')
    return record


@questions.route('', methods=['GET'])
def list_questions():
    return jsonify(fetch_catalog(get_store()))


@questions.route('', methods=['POST'])
def add_question():
    """
    Adds a record to the catalog under questions/<subject node>/<id>.
    """
    data = request.get_json(silent=True) or {}
    record = _validate_question(data)
    node = SUBJECT_NODES.get(record['subject']) or record['subject'].lower()
    question_id = uuid.uuid4().hex[:12]
    record['questionId'] = question_id
    record['createdAt'] = int(time.time() * 1000)
    get_store().write_full(f'{CATALOG_PATH}/{node}/{question_id}', record)
    current_app.logger.info(f"[catalog] added question={question_id} node={node}")
    return jsonify({'message': 'Question saved', 'question_id': question_id, 'subject_node': node}), 201


@questions.route('/pool', methods=['GET'])
def preview_pool():
    """
    Resolves a pool the way a match would, for checking the catalog.
    """
    subjects = [s for s in (request.args.get('subjects') or '').split(',') if s.strip()]
    try:
        count = int(request.args.get('count', 10))
    except ValueError:
        raise InvalidRequest('count must be an integer')
    if count < 1:
        raise InvalidRequest('count must be positive')
    return jsonify(resolve_question_pool(get_store(), subjects, count))


def _existing_record(node, question_id):
    path = f'{CATALOG_PATH}/{node}/{question_id}'
    record = get_store().read_once(path)
    if not isinstance(record, dict):
        raise NotFound(f'Question {node}/{question_id} not found')
    return path, record


@questions.route('/<string:node>/<string:question_id>', methods=['PATCH'])
def update_question(node, question_id):
    """
    Edits a catalog record in place. The subject stays fixed since it decides the node.
    """
    path, existing = _existing_record(node, question_id)
    data = request.get_json(silent=True) or {}
    merged = dict(existing)
    merged.update({k: v for k, v in data.items() if k != 'subject'})
    if 'options' in data and 'answer' not in data:
        # The marked option decides the answer
        merged['answer'] = ''
    record = _validate_question(merged)
    updates = {field: record[field] for field in ('grade', 'type', 'text', 'answer', 'explanation', 'options')}
    updates['updatedAt'] = int(time.time() * 1000)
    get_store().write_partial(path, updates)
    current_app.logger.info(f"[catalog] updated question={question_id} node={node}")
    return jsonify({'message': 'Question updated', 'question': get_store().read_once(path)})


@questions.route('/<string:node>/<string:question_id>', methods=['DELETE'])
def delete_question(node, question_id):
    path, _ = _existing_record(node, question_id)
    get_store().remove(path)
    current_app.logger.info(f"[catalog] removed question={question_id} node={node}")
    return jsonify({'message': 'Question deleted'})
