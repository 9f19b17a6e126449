HOST = {'player_id': 'p-host', 'name': 'Hana'}
GUEST = {'player_id': 'p-guest', 'name': 'Gin'}


def _create(client, **extra):
    res = client.post('/api/sessions', json=dict(HOST, **extra))
    assert res.status_code == 201
    return res.get_json()['game_id']


def test_ping(client):
    res = client.get('/ping')
    assert res.status_code == 200


def test_create_session(client):
    res = client.post('/api/sessions', json=dict(HOST, rules={'winPoints': 3}, subjects=['理科']))
    assert res.status_code == 201
    data = res.get_json()
    assert len(data['game_id']) == 4
    session = data['session']
    assert session['status'] == 'waiting'
    assert session['rules']['winPoints'] == 3
    assert session['range']['subjects'] == ['理科']
    assert data['view']['is_host'] is True
    assert data['view']['both_present'] is False


def test_create_session_validation(client):
    res = client.post('/api/sessions', json={'player_id': 'p1'})
    assert res.status_code == 400
    assert res.get_json()['kind'] == 'InvalidRequest'
    res = client.post('/api/sessions', json=dict(HOST, rules={'wrongAnswerPenalty': 'double'}))
    assert res.status_code == 400
    assert res.get_json()['kind'] == 'InvalidRules'


def test_join_starts_the_match(client):
    game_id = _create(client)
    res = client.post(f'/api/sessions/{game_id}/join', json=GUEST)
    assert res.status_code == 200
    data = res.get_json()
    # The host agent resolved the pool and started as soon as both were present
    assert data['session']['status'] == 'playing'
    assert data['view']['is_host'] is False
    assert data['view']['opponent_name'] == 'Hana'
    assert data['view']['can_buzz'] is True


def test_join_errors(client):
    assert client.post('/api/sessions/0000/join', json=GUEST).status_code == 404
    game_id = _create(client)
    client.post(f'/api/sessions/{game_id}/join', json=GUEST)
    res = client.post(f'/api/sessions/{game_id}/join', json={'player_id': 'p-3', 'name': 'Three'})
    assert res.status_code == 409
    assert res.get_json()['kind'] == 'AlreadyStarted'


def test_open_matchmaking(client):
    res = client.post('/api/sessions/open', json=HOST)
    assert res.status_code == 201
    first = res.get_json()
    assert first['created'] is True
    assert first['session']['isOpenMatch'] is True

    res = client.post('/api/sessions/open', json=GUEST)
    assert res.status_code == 200
    second = res.get_json()
    assert second['created'] is False
    assert second['game_id'] == first['game_id']
    assert second['session']['status'] == 'playing'


def test_get_state(client):
    game_id = _create(client)
    res = client.get(f'/api/sessions/{game_id}?player_id=p-host')
    assert res.status_code == 200
    assert res.get_json()['view']['my_player_id'] == 'p-host'
    assert client.get('/api/sessions/9999').status_code == 404


def test_full_round_over_http(client):
    game_id = _create(client, rules={'winPoints': 2})
    client.post(f'/api/sessions/{game_id}/join', json=GUEST)

    state = client.get(f'/api/sessions/{game_id}').get_json()['session']
    res = client.post(f'/api/sessions/{game_id}/buzz', json=GUEST)
    assert res.get_json() == {'accepted': True, 'answerer_id': 'p-guest'}
    res = client.post(f'/api/sessions/{game_id}/buzz', json=HOST)
    assert res.get_json() == {'accepted': False, 'answerer_id': 'p-guest'}

    res = client.post(f'/api/sessions/{game_id}/answer',
                      json=dict(GUEST, answer=state['currentQuestion']['answer']))
    data = res.get_json()
    assert data['accepted'] is True
    assert data['session']['players']['p-guest']['score'] == 1
    assert data['session']['currentQuestionIndex'] == 1

    state = data['session']
    client.post(f'/api/sessions/{game_id}/buzz', json=GUEST)
    data = client.post(f'/api/sessions/{game_id}/answer',
                       json=dict(GUEST, answer=state['currentQuestion']['answer'])).get_json()
    assert data['session']['status'] == 'finished'
    assert data['session']['winner'] == 'p-guest'
    assert data['view']['both_present'] is False


def test_answer_out_of_turn_is_ignored(client):
    game_id = _create(client)
    client.post(f'/api/sessions/{game_id}/join', json=GUEST)
    res = client.post(f'/api/sessions/{game_id}/answer', json=dict(GUEST, answer='x'))
    assert res.status_code == 200
    assert res.get_json()['accepted'] is False
    res = client.post(f'/api/sessions/{game_id}/answer', json=GUEST)
    assert res.status_code == 400


def test_host_only_routes(client):
    game_id = _create(client)
    client.post(f'/api/sessions/{game_id}/join', json=GUEST)
    assert client.post(f'/api/sessions/{game_id}/advance', json=GUEST).status_code == 403
    assert client.post(f'/api/sessions/{game_id}/judge', json=GUEST).status_code == 403
    assert client.post(f'/api/sessions/{game_id}/start', json=GUEST).status_code == 403
    assert client.delete(f'/api/sessions/{game_id}', json=GUEST).status_code == 403
    assert client.post(f'/api/sessions/{game_id}/advance', json={}).status_code == 400


def test_host_skips_question(client):
    game_id = _create(client)
    client.post(f'/api/sessions/{game_id}/join', json=GUEST)
    data = client.post(f'/api/sessions/{game_id}/advance', json=HOST).get_json()
    assert data['outcome'] == 'advanced'
    assert data['session']['currentQuestionIndex'] == 1


def test_start_is_a_noop_once_playing(client):
    game_id = _create(client)
    res = client.post(f'/api/sessions/{game_id}/start', json=HOST)
    assert res.get_json()['started'] is False
    client.post(f'/api/sessions/{game_id}/join', json=GUEST)
    res = client.post(f'/api/sessions/{game_id}/start', json=HOST)
    assert res.get_json()['started'] is False
    assert res.get_json()['session']['status'] == 'playing'


def test_delete_session(client):
    game_id = _create(client)
    res = client.delete(f'/api/sessions/{game_id}', json=HOST)
    assert res.status_code == 200
    assert client.get(f'/api/sessions/{game_id}').status_code == 404
    assert client.delete(f'/api/sessions/{game_id}', json=HOST).status_code == 404


def test_question_catalog(client):
    res = client.post('/api/questions', json={
        'subject': '理科',
        'grade': '2年',
        'type': '選択式',
        'text': 'Which planet is known as the red planet?',
        'options': [{'text': 'Mars', 'isCorrect': True}, {'text': 'Venus'}, {'text': ''}],
    })
    assert res.status_code == 201
    question_id = res.get_json()['question_id']

    catalog = client.get('/api/questions').get_json()
    record = catalog['science'][question_id]
    assert record['answer'] == 'Mars'
    assert len(record['options']) == 2

    pool = client.get('/api/questions/pool', query_string={'subjects': '理科', 'count': 10}).get_json()
    assert question_id in {q['id'] for q in pool}


def test_question_catalog_validation(client):
    res = client.post('/api/questions', json={'subject': '理科', 'text': 'Q', 'options': ['only one']})
    assert res.status_code == 400
    res = client.post('/api/questions', json={
        'subject': '理科', 'text': 'Q', 'options': [{'text': 'a'}, {'text': 'b'}],
    })
    assert res.status_code == 400
    res = client.post('/api/questions', json={'subject': '社会', 'text': 'Q', 'type': '記述式'})
    assert res.status_code == 400
    res = client.post('/api/questions', json={'subject': '社会', 'text': 'Q', 'type': '記述式', 'answer': 'A'})
    assert res.status_code == 201
    assert client.get('/api/questions/pool?count=0').status_code == 400


def _add_question(client):
    res = client.post('/api/questions', json={
        'subject': '理科',
        'type': '選択式',
        'text': 'Which planet is closest to the sun?',
        'options': [{'text': 'Mercury', 'isCorrect': True}, {'text': 'Venus'}],
    })
    assert res.status_code == 201
    body = res.get_json()
    return body['subject_node'], body['question_id']


def test_question_update(client):
    node, question_id = _add_question(client)
    res = client.patch(f'/api/questions/{node}/{question_id}', json={
        'text': 'Which planet is largest?',
        'options': [{'text': 'Jupiter', 'isCorrect': True}, {'text': 'Mars'}, {'text': 'Earth'}],
    })
    assert res.status_code == 200
    record = client.get('/api/questions').get_json()[node][question_id]
    assert record['text'] == 'Which planet is largest?'
    assert record['answer'] == 'Jupiter'
    assert [o['text'] for o in record['options']] == ['Jupiter', 'Mars', 'Earth']
    assert record['subject'] == '理科'
    assert record['questionId'] == question_id
    assert 'updatedAt' in record

    # Picking another option by answer text moves the mark
    res = client.patch(f'/api/questions/{node}/{question_id}', json={
        'answer': 'Mars',
        'options': [{'text': 'Jupiter'}, {'text': 'Mars'}, {'text': 'Earth'}],
    })
    assert res.status_code == 200
    assert res.get_json()['question']['answer'] == 'Mars'


def test_question_update_validation(client):
    node, question_id = _add_question(client)
    res = client.patch(f'/api/questions/{node}/{question_id}', json={'text': '  '})
    assert res.status_code == 400
    res = client.patch(f'/api/questions/{node}/{question_id}', json={'options': [{'text': 'Only'}]})
    assert res.status_code == 400
    # Rejected edits leave the record alone
    record = client.get('/api/questions').get_json()[node][question_id]
    assert record['answer'] == 'Mercury'
    assert client.patch(f'/api/questions/{node}/missing', json={'text': 'X'}).status_code == 404


def test_question_delete(client):
    node, question_id = _add_question(client)
    other_node, other_id = _add_question(client)
    res = client.delete(f'/api/questions/{node}/{question_id}')
    assert res.status_code == 200
    catalog = client.get('/api/questions').get_json()
    assert question_id not in catalog[node]
    assert other_id in catalog[other_node]
    res = client.delete(f'/api/questions/{node}/{question_id}')
    assert res.status_code == 404
    assert res.get_json()['kind'] == 'NotFound'
