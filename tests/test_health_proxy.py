import json

import pytest
import requests
import responses

from etcd_aws import health_proxy

HEALTH_URL = 'http://127.0.0.1:2379/health'


@pytest.fixture
def app_client(client):
    app = health_proxy.create_app(client, 'http://127.0.0.1:2379/')
    return app.test_client()


def test_relays_healthy(app_client, mocked_responses):
    mocked_responses.add(responses.GET, HEALTH_URL, json={'health': 'true'})

    response = app_client.get('/')

    assert response.status_code == 200
    assert response.headers['Content-Type'] == 'application/json'
    assert json.loads(response.data.decode('utf-8')) == {'health': 'true'}


def test_relays_unhealthy_status(app_client, mocked_responses):
    mocked_responses.add(responses.GET, HEALTH_URL, status=503, json={'health': 'false'})

    response = app_client.get('/any/path')

    assert response.status_code == 503
    assert json.loads(response.data.decode('utf-8')) == {'health': 'false'}


def test_upstream_failure(app_client, mocked_responses):
    mocked_responses.add(responses.GET, HEALTH_URL, body=requests.ConnectionError('refused'))

    response = app_client.get('/')

    assert response.status_code == 500
    assert 'GET {}'.format(HEALTH_URL) in json.loads(response.data.decode('utf-8'))['error']


@pytest.mark.parametrize('port', ['0', '65536', 'http'])
def test_invalid_port(port):
    with pytest.raises(SystemExit):
        health_proxy.parse_cmdline(['http://127.0.0.1:2379', '--port', port])
