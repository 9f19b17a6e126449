"""Game constants: default rules, subject table and built-in questions."""

# Session status
WAITING = 'waiting'
PLAYING = 'playing'
FINISHED = 'finished'

# Wrong answer penalties
PENALTY_LOCKOUT = 'lockout'
PENALTY_MINUS_ONE = 'minus_one'
PENALTIES = (PENALTY_LOCKOUT, PENALTY_MINUS_ONE)

MAX_PLAYERS = 2

DEFAULT_RULES = {
    'winPoints': 8,
    'wrongAnswerPenalty': PENALTY_MINUS_ONE,
    'totalQuestions': 10,
    'nextQuestionDelaySeconds': 3,
}

SUBJECTS = ['国語', '数学', '理科', '社会', '英語']
GRADES = ['1年', '2年', '3年']

# Display subject -> catalog node under `questions/`
SUBJECT_NODES = {
    '国語': 'japanese',
    '数学': 'mathematics',
    '理科': 'science',
    '社会': 'social',
    '英語': 'english',
}

# Catalog `type` value for multiple choice records
SELECTABLE_TYPE = '選択式'

FALLBACK_QUESTIONS = [
    {
        'id': 'builtin-1',
        'text': '太陽系の惑星の中で、最も大きく、表面に有名な大赤斑を持つガス惑星は何でしょう？',
        'answer': '木星',
        'subject': '理科',
        'grade': '3年',
        'isSelectable': True,
        'options': ['土星', '火星', '木星', '天王星'],
    },
    {
        'id': 'builtin-2',
        'text': '日本の憲法で定められている、国民の三大義務のうち、教育を受けさせる義務、勤労の義務とあと一つは何でしょう？',
        'answer': '納税の義務',
        'subject': '社会',
        'grade': '3年',
        'isSelectable': True,
        'options': ['納税の義務', '兵役の義務', '家族を扶養する義務', '環境を守る義務'],
    },
    {
        'id': 'builtin-3',
        'text': '英文で、「私は医者です」という意味になるように、 I am a ( ) の ( ) に入る単語はどれでしょう？',
        'answer': 'doctor',
        'subject': '英語',
        'grade': '1年',
        'isSelectable': True,
        'options': ['student', 'teacher', 'doctor', 'firefighter'],
    },
    {
        'id': 'builtin-4',
        'text': '二次方程式 $x^2 - 5x + 6 = 0$ の解は、次のうちどれでしょう？',
        'answer': 'x=2, 3',
        'subject': '数学',
        'grade': '3年',
        'isSelectable': True,
        'options': ['x=-2, -3', 'x=1, 6', 'x=2, 3', 'x=-1, 5'],
    },
]
