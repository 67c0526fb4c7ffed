"""
HTTP surface tests: status codes and error mapping through the blueprints.
"""


def test_health(client, db_session):
    response = client.get('/api/health')
    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'healthy'
    assert body['checks']['database']['details']['waybills'] == 0


def test_fuel_calculate_with_rates(client, db_session):
    response = client.post('/api/fuel/calculate', json={
        'method': 'SEGMENTS',
        'rates': {'summer_rate': 10, 'winter_rate': 12, 'city_increase_percent': 10},
        'base_date': '2024-06-10',
        'segments': [
            {'distance_km': 50, 'is_city_driving': True},
            {'distance_km': 50},
        ],
        'odometer_start': 1000,
        'fuel_at_start': 20,
        'fuel_filled': 5,
    })
    assert response.status_code == 200
    body = response.get_json()
    assert body['consumption'] == 10.5
    assert body['distance'] == 100
    assert body['odometer_end'] == 1100
    assert body['fuel_at_end'] == 14.5
    assert body['method'] == 'SEGMENTS'


def test_fuel_calculate_requires_rates(client, db_session):
    response = client.post('/api/fuel/calculate', json={'base_date': '2024-06-10', 'segments': []})
    assert response.status_code == 400


def test_fuel_calculate_unknown_vehicle(client, db_session):
    response = client.post('/api/fuel/calculate', json={'vehicle_id': 77, 'base_date': '2024-06-10'})
    assert response.status_code == 404


def test_season_settings_roundtrip(client, db_session):
    response = client.put('/api/fuel/season-settings', json={
        'rule_type': 'manual',
        'winter_start_date': '2024-11-15',
        'winter_end_date': '2025-03-15',
    })
    assert response.status_code == 200

    body = client.get('/api/fuel/season-settings').get_json()
    assert body['rule_type'] == 'manual'
    assert body['winter_start_date'] == '2024-11-15'


def test_locked_period_maps_to_409(client, db_session, fuel_item):
    created = client.post('/api/stock/movements', json={
        'date': '2024-05-03',
        'movement_type': 'INCOME',
        'lines': [{'stock_item_id': fuel_item.id, 'quantity': 10}],
    })
    assert created.status_code == 201
    movement_id = created.get_json()['movement']['id']
    assert client.post(f'/api/stock/movements/{movement_id}/post').status_code == 200

    locked = client.post('/api/periods', json={'period': '2024-05'}, headers={'X-Actor-Id': 'auditor'})
    assert locked.status_code == 201
    lock = locked.get_json()['lock']
    assert lock['locked_by'] == 'auditor'

    response = client.post(f'/api/stock/movements/{movement_id}/unpost')
    assert response.status_code == 409
    assert response.get_json()['period'] == '2024-05'

    check = client.get('/api/periods/check?date=2024-05-20').get_json()
    assert check['locked'] is True

    verify = client.post(f"/api/periods/{lock['id']}/verify")
    assert verify.status_code == 200
    assert verify.get_json()['isValid'] is True

    unlocked = client.delete(f"/api/periods/{lock['id']}")
    assert unlocked.status_code == 200
    assert client.post(f'/api/stock/movements/{movement_id}/unpost').status_code == 200


def test_lock_validation_errors_are_400(client, db_session):
    assert client.post('/api/periods', json={'period': '2024-05'}).status_code == 400
    assert client.post('/api/periods', json={'period': 'May'}).status_code == 400


def test_waybill_not_found(client, db_session):
    assert client.get('/api/waybills/424242').status_code == 404


def test_driver_balance_route(client, db_session, driver):
    response = client.get(f'/api/drivers/{driver.id}/balance?date=2024-05-01')
    assert response.status_code == 200
    assert response.get_json()['balance'] == 0.0
