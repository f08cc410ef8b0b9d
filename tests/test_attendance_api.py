import json

import pytest

from attendance_stats import select_records
from attendance_store import AttendanceStore
from attendance_types import AttendanceFilter, AttendanceRecord
from models import AttendanceSheet, StaffUser, db
from seed import DEMO_PASSWORD


def mark(client, headers, class_id, day, student_id, **body):
    return client.post(f'/api/attendance/{class_id}/{day}/{student_id}', json=body, headers=headers)


def bulk(client, headers, class_id, day, records, **body):
    return client.post(
        f'/api/attendance/{class_id}/{day}/bulk',
        json={'records': records, **body},
        headers=headers,
    )


def entry_for(record, student_id):
    return next(entry for entry in record['students'] if entry['studentId'] == student_id)


# -- auth ---------------------------------------------------------------------


def test_login_returns_token_and_user(client):
    response = client.post('/api/auth/login', json={'email': 'Admin@Vertex.edu', 'password': DEMO_PASSWORD})

    assert response.status_code == 200
    payload = response.get_json()
    assert payload['token']
    assert payload['user']['role'] == 'SuperAdmin'
    assert payload['user']['lastLogin']
    assert 'password_hash' not in payload['user']


def test_login_with_wrong_password_is_rejected(client):
    response = client.post('/api/auth/login', json={'email': 'admin@vertex.edu', 'password': 'nope'})

    assert response.status_code == 401
    assert response.get_json()['title'] == 'Authentication Required'


def test_inactive_user_cannot_log_in(app, client):
    with app.app_context():
        admin = StaffUser.query.filter_by(email='admin@vertex.edu').first()
        db.session.add(StaffUser(
            username='former',
            name='Former Staff',
            email='former@vertex.edu',
            role='Manager',
            status='inactive',
            password_hash=admin.password_hash,
        ))
        db.session.commit()

    response = client.post('/api/auth/login', json={'email': 'former@vertex.edu', 'password': DEMO_PASSWORD})

    assert response.status_code == 403


def test_me_lists_role_permissions(client, login):
    response = client.get('/api/auth/me', headers=login('secretary@vertex.edu'))

    assert response.status_code == 200
    assert response.get_json()['role'] == 'Secretary'
    assert response.get_json()['permissions'] == ['directory:view', 'notes:view']


def test_requests_without_valid_token_are_unauthorized(client):
    assert client.get('/api/attendance').status_code == 401
    tampered = {'Authorization': 'Bearer not-a-real-token'}
    assert client.get('/api/attendance', headers=tampered).status_code == 401


def test_secretary_sees_directory_but_not_attendance(client, login):
    headers = login('secretary@vertex.edu')

    assert client.get('/api/classes', headers=headers).status_code == 200
    assert client.get('/api/attendance', headers=headers).status_code == 403
    assert mark(client, headers, 'class1', '2024-01-01', 'student1', status='present').status_code == 403


# -- directory ----------------------------------------------------------------


def test_directory_lists_classes_and_students(client, admin_headers):
    classes = client.get('/api/classes', headers=admin_headers).get_json()['classes']
    students = client.get('/api/students', headers=admin_headers).get_json()

    assert [c['name'] for c in classes] == [
        'English Literature', 'Mathematics 101', 'Physics Fundamentals',
    ]
    assert classes[1]['teacherName'] == 'David Miller'
    assert len(students) == 5
    assert {'id': 'student1', 'firstName': 'John', 'lastName': 'Doe'} in students


# -- marking ------------------------------------------------------------------


def test_mark_creates_record_with_consistent_summary(client, admin_headers):
    response = mark(client, admin_headers, 'class1', '2024-01-01', 'student1', status='present')

    assert response.status_code == 200
    record = response.get_json()
    assert record['classId'] == 'class1'
    assert record['className'] == 'Mathematics 101'
    assert record['teacherId'] == 'teacher1'
    assert record['isMakeupClass'] is False
    assert record['summary'] == {'total': 1, 'present': 1, 'absent': 0, 'late': 0, 'excused': 0}
    assert 'modifiedBy' not in record


def test_editing_a_record_stamps_the_editor(client, admin_headers, login):
    mark(client, admin_headers, 'class1', '2024-01-01', 'student1', status='present')
    manager = login('manager@vertex.edu')
    manager_id = client.get('/api/auth/me', headers=manager).get_json()['id']

    first = mark(client, manager, 'class1', '2024-01-01', 'student2', status='late', arrivalTime='09:10')
    second = mark(client, manager, 'class1', '2024-01-01', 'student1', status='absent')

    assert first.get_json()['modifiedBy'] == manager_id
    record = second.get_json()
    assert record['id'] == first.get_json()['id']
    assert record['summary'] == {'total': 2, 'present': 0, 'absent': 1, 'late': 1, 'excused': 0}
    assert entry_for(record, 'student2')['arrivalTime'] == '09:10'
    assert record['modifiedAt']


@pytest.mark.parametrize('class_id, day, student_id, body', [
    ('class1', '2024-01-01', 'student1', {'status': 'present', 'arrivalTime': '09:00'}),
    ('class1', '2024-01-01', 'student1', {'status': 'late', 'arrivalTime': 'nine'}),
    ('class1', '2024-01-01', 'student1', {'status': 'asleep'}),
    ('class1', '2024-13-01', 'student1', {'status': 'present'}),
    ('nope', '2024-01-01', 'student1', {'status': 'present'}),
    ('class1', '2024-01-01', 'nobody', {'status': 'present'}),
    ('class1', '2024-01-01', 'student1', {'status': 'present', 'excuse': {'reason': 'Sick'}}),
])
def test_invalid_marks_are_rejected(client, admin_headers, class_id, day, student_id, body):
    response = mark(client, admin_headers, class_id, day, student_id, **body)

    assert response.status_code == 400
    assert response.get_json()['status'] == 400


def test_bulk_mark_records_all_students(client, admin_headers):
    response = bulk(client, admin_headers, 'class2', '2024-01-03', [
        {'studentId': 'student1', 'status': 'present'},
        {'studentId': 'student2', 'status': 'late', 'arrivalTime': '09:05'},
        {'studentId': 'student3', 'status': 'excused', 'notes': 'Dentist'},
    ], isMakeupClass=True, makeupClassId='class1')

    assert response.status_code == 200
    record = response.get_json()
    assert [entry['studentId'] for entry in record['students']] == ['student1', 'student2', 'student3']
    assert record['summary'] == {'total': 3, 'present': 1, 'absent': 0, 'late': 1, 'excused': 1}
    assert record['isMakeupClass'] is True
    assert record['makeupClassId'] == 'class1'
    assert entry_for(record, 'student3')['notes'] == 'Dentist'


def test_bulk_mark_rejects_the_whole_batch(client, admin_headers):
    response = bulk(client, admin_headers, 'class1', '2024-01-01', [
        {'studentId': 'student1', 'status': 'present'},
        {'studentId': 'student1', 'status': 'absent'},
    ])

    assert response.status_code == 400
    listing = client.get('/api/attendance', headers=admin_headers).get_json()
    assert listing['records'] == []


def test_bulk_mark_requires_records(client, admin_headers):
    assert bulk(client, admin_headers, 'class1', '2024-01-01', []).status_code == 400
    assert client.post('/api/attendance/class1/2024-01-01/bulk', json={},
                       headers=admin_headers).status_code == 400



def test_non_padded_dates_do_not_open_a_second_sheet(app, client, admin_headers):
    assert mark(client, admin_headers, 'class1', '2024-01-05', 'student1', status='present').status_code == 200

    response = mark(client, admin_headers, 'class1', '2024-1-5', 'student2', status='present')
    assert response.status_code == 400
    assert bulk(client, admin_headers, 'class1', '2024-1-5',
                [{'studentId': 'student2', 'status': 'present'}]).status_code == 400

    with app.app_context():
        assert AttendanceSheet.query.count() == 1
    january = client.get('/api/attendance?startDate=2024-01-01&endDate=2024-01-31',
                         headers=admin_headers).get_json()
    assert [r['date'] for r in january['records']] == ['2024-01-05']


@pytest.mark.parametrize('query', ['startDate=2024-1-1', 'endDate=2024-01-5'])
def test_list_rejects_non_padded_date_filters(client, admin_headers, query):
    response = client.get(f'/api/attendance?{query}', headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json()['title'] == 'Validation Failed'


@pytest.mark.parametrize('body', [
    {'email': 123, 'password': DEMO_PASSWORD},
    {'email': 'admin@vertex.edu', 'password': ['Vertex123!']},
    {'email': None, 'password': None},
])
def test_login_rejects_non_string_credentials(client, body):
    response = client.post('/api/auth/login', json=body)

    assert response.status_code == 400
    assert response.get_json()['status'] == 400


@pytest.mark.parametrize('body', [
    {'status': 'present', 'notes': 42},
    {'status': 'late', 'arrivalTime': 910},
    {'status': 'absent', 'excuse': 'Sick'},
    {'status': 'absent', 'excuse': ['Sick']},
    {'status': 'absent', 'excuse': {'reason': ['Sick']}},
    {'status': 'absent', 'excuse': {'reason': 'Sick', 'documentUrl': 7}},
    {'status': 'absent', 'excuse': {'reason': 'Sick', 'notes': {'text': 'x'}}},
])
def test_mark_rejects_wrongly_typed_fields(client, admin_headers, body):
    response = mark(client, admin_headers, 'class1', '2024-01-01', 'student1', **body)

    assert response.status_code == 400
    assert response.mimetype == 'application/problem+json'


@pytest.mark.parametrize('records, extra', [
    ([{'studentId': ['student1'], 'status': 'present'}], {}),
    ([{'studentId': {'id': 'student1'}, 'status': 'present'}], {}),
    ([{'studentId': 'student1', 'status': 'present', 'notes': ['a']}], {}),
    ([{'studentId': 'student1', 'status': 'late', 'arrivalTime': 9.5}], {}),
    ([{'studentId': 'student1', 'status': 'present'}], {'isMakeupClass': True, 'makeupClassId': ['class2']}),
])
def test_bulk_rejects_wrongly_typed_fields(client, admin_headers, records, extra):
    response = bulk(client, admin_headers, 'class1', '2024-01-01', records, **extra)

    assert response.status_code == 400
    assert client.get('/api/attendance', headers=admin_headers).get_json()['records'] == []


@pytest.mark.parametrize('body', [
    {'reason': 123},
    {'reason': 'Sick', 'documentUrl': ['https://example.com/doc.pdf']},
    {'reason': 'Sick', 'notes': 5},
])
def test_add_excuse_rejects_wrongly_typed_fields(client, admin_headers, body):
    mark(client, admin_headers, 'class1', '2024-01-01', 'student1', status='absent')

    response = client.post('/api/attendance/class1/2024-01-01/student1/excuse', json=body,
                           headers=admin_headers)

    assert response.status_code == 400


def test_makeup_class_cannot_name_its_own_class(client, admin_headers):
    response = bulk(client, admin_headers, 'class1', '2024-01-03', [
        {'studentId': 'student1', 'status': 'present'},
    ], isMakeupClass=True, makeupClassId='class1')

    assert response.status_code == 400
    assert 'own class' in response.get_json()['detail']
    assert client.get('/api/attendance', headers=admin_headers).get_json()['records'] == []


# -- excuses ------------------------------------------------------------------


def test_excuse_lifecycle(client, admin_headers, login):
    mark(client, admin_headers, 'class1', '2024-02-05', 'student2', status='absent')
    teacher = login('teacher@vertex.edu')
    teacher_id = client.get('/api/auth/me', headers=teacher).get_json()['id']

    added = client.post('/api/attendance/class1/2024-02-05/student2/excuse',
                        json={'reason': 'Sick', 'documentUrl': 'https://example.com/note.pdf'},
                        headers=admin_headers)
    assert added.status_code == 200
    assert entry_for(added.get_json(), 'student2')['excuse'] == {
        'reason': 'Sick', 'documentUrl': 'https://example.com/note.pdf', 'status': 'pending',
    }

    verified = client.post('/api/attendance/class1/2024-02-05/student2/excuse/verify',
                           json={'status': 'approved'}, headers=teacher)
    assert verified.status_code == 200
    excuse = entry_for(verified.get_json(), 'student2')['excuse']
    assert excuse['status'] == 'approved'
    assert excuse['verifiedBy'] == teacher_id
    assert excuse['verifiedAt']

    again = client.post('/api/attendance/class1/2024-02-05/student2/excuse/verify',
                        json={'status': 'rejected'}, headers=teacher)
    assert again.status_code == 409


def test_excuse_needs_an_absence(client, admin_headers):
    mark(client, admin_headers, 'class1', '2024-02-05', 'student1', status='present')

    present = client.post('/api/attendance/class1/2024-02-05/student1/excuse',
                          json={'reason': 'Sick'}, headers=admin_headers)
    missing = client.post('/api/attendance/class1/2024-02-06/student1/excuse',
                          json={'reason': 'Sick'}, headers=admin_headers)

    assert present.status_code == 400
    assert missing.status_code == 404


def test_marking_present_clears_the_excuse(client, admin_headers):
    mark(client, admin_headers, 'class1', '2024-02-05', 'student2', status='absent',
         excuse={'reason': 'Flu'})

    record = mark(client, admin_headers, 'class1', '2024-02-05', 'student2', status='present').get_json()

    assert 'excuse' not in entry_for(record, 'student2')


def test_secretary_cannot_verify_excuses(client, admin_headers, login):
    mark(client, admin_headers, 'class1', '2024-02-05', 'student2', status='absent',
         excuse={'reason': 'Flu'})

    response = client.post('/api/attendance/class1/2024-02-05/student2/excuse/verify',
                           json={'status': 'approved'}, headers=login('secretary@vertex.edu'))

    assert response.status_code == 403


# -- queries ------------------------------------------------------------------


@pytest.fixture
def three_sessions(client, admin_headers):
    for day, status in (('2024-01-01', 'present'), ('2024-01-08', 'absent'), ('2024-01-15', 'late')):
        body = {'status': status}
        if status == 'late':
            body['arrivalTime'] = '09:20'
        assert mark(client, admin_headers, 'class1', day, 'student1', **body).status_code == 200
    bulk(client, admin_headers, 'class2', '2024-01-03', [
        {'studentId': 'student2', 'status': 'absent'},
        {'studentId': 'student3', 'status': 'present', 'notes': 'Left early, felt unwell'},
    ])


def test_list_filters_sorts_and_pages(client, admin_headers, three_sessions):
    response = client.get('/api/attendance?sortBy=date&sortOrder=desc&limit=3&page=1',
                          headers=admin_headers)

    payload = response.get_json()
    assert [r['date'] for r in payload['records']] == ['2024-01-15', '2024-01-08', '2024-01-03']
    assert payload['pagination'] == {'total': 4, 'page': 1, 'limit': 3, 'totalPages': 2}

    second = client.get('/api/attendance?sortBy=date&sortOrder=desc&limit=3&page=2',
                        headers=admin_headers).get_json()
    assert [r['date'] for r in second['records']] == ['2024-01-01']

    by_student = client.get('/api/attendance?studentId=student3', headers=admin_headers).get_json()
    assert [r['classId'] for r in by_student['records']] == ['class2']


def test_list_rejects_invalid_filters(client, admin_headers):
    response = client.get('/api/attendance?status=bogus', headers=admin_headers)

    assert response.status_code == 400
    assert response.mimetype == 'application/problem+json'


def test_student_stats_endpoint(client, admin_headers, three_sessions):
    response = client.get('/api/attendance/students/student1/stats', headers=admin_headers)

    assert response.status_code == 200
    stats = response.get_json()
    assert stats['studentName'] == 'John Doe'
    assert stats['overall']['total'] == 3
    assert stats['overall']['rate'] == pytest.approx(100 / 3)
    assert [t['status'] for t in stats['trends']] == ['present', 'absent', 'late']


def test_stats_for_student_without_records(client, admin_headers):
    stats = client.get('/api/attendance/students/student5/stats', headers=admin_headers).get_json()

    assert stats['overall']['total'] == 0
    assert stats['overall']['rate'] == 0


def test_stats_for_unknown_ids_are_not_found(client, admin_headers):
    assert client.get('/api/attendance/students/ghost/stats', headers=admin_headers).status_code == 404
    assert client.get('/api/attendance/classes/ghost/stats', headers=admin_headers).status_code == 404


def test_class_stats_endpoint(client, admin_headers, three_sessions):
    stats = client.get('/api/attendance/classes/class2/stats', headers=admin_headers).get_json()

    assert stats['className'] == 'Physics Fundamentals'
    assert stats['overall']['total'] == 2
    assert stats['overall']['rate'] == 50
    assert [row['studentId'] for row in stats['byStudent']] == ['student2', 'student3']
    assert stats['byWeekday'] == [{'weekday': 'Wednesday', 'rate': 50}]


# -- export -------------------------------------------------------------------


def test_json_export_matches_filtered_records(app, client, admin_headers, three_sessions):
    response = client.get('/api/attendance/export?format=json&classId=class1', headers=admin_headers)

    assert response.status_code == 200
    assert response.mimetype == 'application/json'
    assert response.headers['Content-Disposition'].startswith('attachment; filename="attendance-')
    exported = [AttendanceRecord.from_dict(item) for item in json.loads(response.get_data(as_text=True))]
    with app.app_context():
        expected = select_records(AttendanceStore().list_records(), AttendanceFilter(class_id='class1'))
    assert exported == expected
    assert [record.date for record in exported] == ['2024-01-01', '2024-01-08', '2024-01-15']
    assert exported[2].entry_for('student1').arrival_time == '09:20'


def test_csv_export_has_one_row_per_student(client, admin_headers, three_sessions):
    response = client.get('/api/attendance/export', headers=admin_headers)

    assert response.mimetype == 'text/csv'
    lines = response.get_data(as_text=True).splitlines()
    assert lines[0] == 'Class,Date,Student,Status,Arrival Time,Notes'
    assert len(lines) == 1 + 5
    assert 'Physics Fundamentals,2024-01-03,Bob Johnson,present,,"Left early, felt unwell"' in lines
    assert 'Mathematics 101,2024-01-15,John Doe,late,09:20,' in lines


def test_export_rejects_unknown_format(client, admin_headers):
    assert client.get('/api/attendance/export?format=xml', headers=admin_headers).status_code == 400
