import json
import logging

from app_logging import (
    JSONFormatter,
    clear_request_context,
    merge_request_context,
    redact_sensitive_data,
)
from correlation_id_middleware import HEADER_NAME


def test_health_endpoint(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}


def test_request_id_propagation(client):
    response = client.get('/health', headers={HEADER_NAME: 'test-id-123'})
    assert response.headers.get(HEADER_NAME) == 'test-id-123'


def test_malformed_request_id_is_replaced(client):
    response = client.get('/health', headers={HEADER_NAME: 'bad id with spaces'})
    request_id = response.headers.get(HEADER_NAME)
    assert request_id
    assert request_id != 'bad id with spaces'


def test_error_handler_returns_problem_details(client):
    response = client.get('/api/students', headers={HEADER_NAME: 'trace-42'})
    data = response.get_json()
    assert response.status_code == 401
    assert response.mimetype == 'application/problem+json'
    assert data['status'] == 401
    assert data['title'] == 'Authentication Required'
    assert data['detail']
    assert data['request_id'] == 'trace-42'


def test_unknown_route_returns_problem_details(client):
    response = client.get('/api/nothing-here')
    data = response.get_json()
    assert response.status_code == 404
    assert data['status'] == 404
    assert data['request_id']


def test_malformed_body_is_a_validation_error(client):
    response = client.post('/api/auth/login', data='not json', content_type='application/json')
    assert response.status_code == 400
    assert response.get_json()['title'] == 'Validation Failed'


def test_json_formatter_redacts_extra_context():
    record = logging.LogRecord('vertex.test', logging.INFO, __file__, 1, 'login_attempt', None, None)
    record.password = 'hunter2'
    record.attempt = 2
    record.status = 401

    payload = json.loads(JSONFormatter().format(record))

    assert payload['msg'] == 'login_attempt'
    assert payload['logger'] == 'vertex.test'
    assert payload['status'] == 401
    assert payload['extra_context'] == {'password': '[REDACTED]', 'attempt': 2}


def test_json_formatter_includes_request_context():
    merge_request_context(user_id='u-1', role='Teacher', db_time_ms=1.5)
    record = logging.LogRecord('vertex.test', logging.INFO, __file__, 1, 'done', None, None)

    try:
        payload = json.loads(JSONFormatter().format(record))
    finally:
        clear_request_context()

    assert payload['user_id'] == 'u-1'
    assert payload['role'] == 'Teacher'
    assert payload['db_time_ms'] == 1.5


def test_redaction_is_recursive_and_case_insensitive():
    data = {'Email': 'a@b.c', 'records': [{'token': 'abc', 'status': 'present'}]}

    assert redact_sensitive_data(data) == {
        'Email': '[REDACTED]',
        'records': [{'token': '[REDACTED]', 'status': 'present'}],
    }
