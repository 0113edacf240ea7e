import pytest


def _create_student(client, student_id, class_id="c1", embedding=None):
    response = client.post('/api/students', json={
        'studentId': student_id,
        'name': f'Student {student_id}',
        'class': class_id,
    })
    assert response.status_code == 201
    if embedding is not None:
        response = client.post(f'/api/students/{student_id}/faces', json={
            'faces': [{'angle': 'front', 'embedding': embedding}],
        })
        assert response.status_code == 201


def _submit_photo(client, class_id="c1"):
    response = client.post('/api/photos', json={'classId': class_id, 'storagePath': 'photos/p.jpg'})
    assert response.status_code == 201
    return response.get_json()['photo']['photoId']


@pytest.fixture
def classroom(client):
    _create_student(client, 's1', embedding=[0.0, 0.0])
    _create_student(client, 's2', embedding=[1.0, 0.0])
    _create_student(client, 's3')
    return client


def test_create_student_validation(client):
    assert client.post('/api/students', json={'studentId': 's1'}).status_code == 400
    _create_student(client, 's1')
    duplicate = client.post('/api/students', json={'studentId': 's1', 'name': 'X', 'class': 'c1'})
    assert duplicate.status_code == 409
    assert client.get('/api/students/nobody').status_code == 404


def test_register_faces(client):
    _create_student(client, 's1')
    response = client.post('/api/students/s1/faces', json={'faces': [
        {'angle': 'front', 'embedding': [0.1, 0.2]},
        {'angle': 'left', 'embedding': [0.1, 0.3]},
    ]})

    assert response.status_code == 201
    assert len(response.get_json()['face_ids']) == 2
    student = client.get('/api/students/s1').get_json()['student']
    assert student['face_registered'] is True
    assert len(client.get('/api/students/s1/faces').get_json()['faces']) == 2


@pytest.mark.parametrize('faces', [
    [],
    [{'angle': 'upside', 'embedding': [0.1]}],
    [{'angle': 'front'}],
    [{'angle': 'front', 'embedding': [0.1, 0.2]}, {'angle': 'left', 'embedding': [0.1]}],
])
def test_register_faces_rejects_bad_payload(client, faces):
    _create_student(client, 's1')
    response = client.post('/api/students/s1/faces', json={'faces': faces})
    assert response.status_code == 400
    assert response.get_json()['success'] is False


def test_register_face_from_image_uses_embedder(client, fake_embedder):
    _create_student(client, 's1')
    fake_embedder.single = [0.3, 0.4]
    response = client.post('/api/students/s1/faces', json={
        'faces': [{'angle': 'front', 'imagePath': 'faces/s1.jpg'}],
    })
    assert response.status_code == 201
    assert fake_embedder.calls == ['faces/s1.jpg']

    fake_embedder.error = 'model offline'
    response = client.post('/api/students/s1/faces', json={
        'faces': [{'angle': 'left', 'imagePath': 'faces/s1-left.jpg'}],
    })
    assert response.status_code == 503


def test_sync_process_returns_record(classroom):
    photo_id = _submit_photo(classroom)

    response = classroom.post('/api/attendance/process', json={
        'photoId': photo_id,
        'detectedEmbeddings': [[0.1, 0.0], [3.0, 3.0]],
    })

    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'completed'
    assert body['record']['presentStudents'] == ['s1']
    assert body['record']['absentStudents'] == ['s2']
    assert body['record']['unknownFaces'][0]['index'] == 1
    assert body['unknownCount'] == 1

    stored = classroom.get(f'/api/attendance/records/{photo_id}').get_json()['record']
    assert stored['presentStudents'] == ['s1']
    listing = classroom.get('/api/attendance/records?classId=c1').get_json()['records']
    assert [r['photoId'] for r in listing] == [photo_id]

    photo = classroom.get(f'/api/photos/{photo_id}').get_json()['photo']
    assert photo['status'] == 'completed'
    assert photo['facesDetected'] == 2


def test_second_process_is_rejected(classroom):
    photo_id = _submit_photo(classroom)
    payload = {'photoId': photo_id, 'detectedEmbeddings': [[0.0, 0.0]]}
    assert classroom.post('/api/attendance/process', json=payload).status_code == 200
    assert classroom.post('/api/attendance/process', json=payload).status_code == 409


def test_process_validation(client):
    assert client.post('/api/attendance/process', json={}).status_code == 400
    assert client.post('/api/attendance/process', json={'photoId': 'abc'}).status_code == 400
    assert client.post('/api/attendance/process', json={'photoId': 99}).status_code == 404
    photo_id = _submit_photo(client)
    bad = client.post('/api/attendance/process', json={'photoId': photo_id, 'detectedEmbeddings': 'x'})
    assert bad.status_code == 400


def test_failed_run_then_resubmit(classroom, fake_embedder):
    fake_embedder.error = 'detector offline'
    photo_id = _submit_photo(classroom)

    response = classroom.post('/api/attendance/process', json={'photoId': photo_id})
    assert response.status_code == 502
    assert response.get_json()['status'] == 'failed'
    assert classroom.get(f'/api/attendance/records/{photo_id}').status_code == 404

    waited = classroom.get(f'/api/photos/{photo_id}/wait?timeout=0').get_json()
    assert waited['result']['status'] == 'failed'
    assert waited['result']['error'] == 'detector offline'

    resubmitted = classroom.post(f'/api/photos/{photo_id}/resubmit')
    assert resubmitted.status_code == 201
    new_photo = resubmitted.get_json()['photo']
    assert new_photo['status'] == 'pending'
    assert new_photo['resubmittedFrom'] == photo_id

    fake_embedder.error = None
    fake_embedder.faces = [[1.0, 0.0]]
    retry = classroom.post('/api/attendance/process', json={'photoId': new_photo['photoId']})
    assert retry.status_code == 200
    assert retry.get_json()['record']['presentStudents'] == ['s2']


def test_resubmit_pending_photo_conflicts(client):
    photo_id = _submit_photo(client)
    assert client.post(f'/api/photos/{photo_id}/resubmit').status_code == 409
    assert client.post('/api/photos/999/resubmit').status_code == 404


def test_wait_times_out_as_indeterminate(client):
    photo_id = _submit_photo(client)

    response = client.get(f'/api/photos/{photo_id}/wait?timeout=0')

    assert response.status_code == 202
    assert response.get_json()['result']['status'] == 'indeterminate'
    assert client.get('/api/photos/999/wait?timeout=0').status_code == 404


def test_cancel_wait_after_timeout_has_nothing_to_cancel(client):
    photo_id = _submit_photo(client)
    client.get(f'/api/photos/{photo_id}/wait?timeout=0')
    response = client.delete(f'/api/photos/{photo_id}/wait')
    assert response.status_code == 200
    assert response.get_json()['cancelled'] is False
    assert client.get('/api/system/status').get_json()['pending_waiters'] == 0


def test_async_process_then_wait(classroom):
    photo_id = _submit_photo(classroom)

    response = classroom.post('/api/attendance/process', json={
        'photoId': photo_id,
        'detectedEmbeddings': [[1.0, 0.1]],
        'async': True,
    })
    assert response.status_code == 202

    waited = classroom.get(f'/api/photos/{photo_id}/wait?timeout=5')
    assert waited.status_code == 200
    body = waited.get_json()
    assert body['result']['status'] == 'completed'
    assert body['photo']['status'] == 'completed'
    record = classroom.get(f'/api/attendance/records/{photo_id}').get_json()['record']
    assert record['presentStudents'] == ['s2']


def test_records_listing_validation(client):
    assert client.get('/api/attendance/records').status_code == 400
    assert client.get('/api/attendance/records?classId=c1&date=06-05-2024').status_code == 400
    response = client.get('/api/attendance/records?classId=c1&date=2024-05-06')
    assert response.status_code == 200
    assert response.get_json()['records'] == []


def test_system_status(client):
    body = client.get('/api/system/status').get_json()
    assert body['success'] is True
    assert body['matching']['threshold'] == 0.6
    assert body['matching']['duplicate_policy'] == 'allow'
    assert body['embedder']['name'] == 'fake'


def test_event_stream_starts_with_connected_message(client):
    response = client.get('/api/events/stream')
    assert response.mimetype == 'text/event-stream'

    chunks = response.iter_encoded()
    assert b'"connected"' in next(chunks)
    response.close()
