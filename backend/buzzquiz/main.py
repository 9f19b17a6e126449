from flask import Blueprint, jsonify

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the buzzquiz server!'})

@main.route('/ping')
def ping():
    return jsonify({'status': 'ok'})
