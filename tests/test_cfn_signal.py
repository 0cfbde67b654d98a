from unittest import mock

import pytest
import requests
import responses
import retrying

from etcd_aws import cfn_signal

HEALTH_URL = 'http://127.0.0.1:2379/health'


def test_wait_till_healthy_polls_until_healthy(client, mocked_responses):
    mocked_responses.add(responses.GET, HEALTH_URL, body=requests.ConnectionError('refused'))
    mocked_responses.add(responses.GET, HEALTH_URL, status=503, json={'health': 'false'})
    mocked_responses.add(responses.GET, HEALTH_URL, json={'health': 'false'})
    mocked_responses.add(responses.GET, HEALTH_URL, json={'health': 'true'})

    cfn_signal.wait_till_healthy(client, 'http://127.0.0.1:2379', interval=0)

    assert len(mocked_responses.calls) == 4


def test_wait_till_healthy_gives_up(client, mocked_responses):
    mocked_responses.add(responses.GET, HEALTH_URL, json={'health': 'false'})

    with pytest.raises(retrying.RetryError):
        cfn_signal.wait_till_healthy(client, 'http://127.0.0.1:2379', interval=0.01, timeout=0.05)


def test_main_signals_once_healthy(monkeypatch, mocked_responses):
    mocked_responses.add(responses.GET, HEALTH_URL, json={'health': 'true'})
    cluster = mock.Mock()
    from_config = mock.Mock(return_value=cluster)
    monkeypatch.setattr(cfn_signal.Ec2Cluster, 'from_config', from_config)

    cfn_signal.main(['http://127.0.0.1:2379', '--instance', 'i-local', '--region', 'us-east-1',
                     '--etcd-cert-file', ''])

    assert from_config.call_args[0][0].instance_id == 'i-local'
    cluster.signal_resource.assert_called_once_with()


def test_main_exits_when_signal_fails(monkeypatch, mocked_responses):
    mocked_responses.add(responses.GET, HEALTH_URL, json={'health': 'true'})
    cluster = mock.Mock()
    cluster.signal_resource.side_effect = RuntimeError('ValidationError')
    monkeypatch.setattr(cfn_signal.Ec2Cluster, 'from_config', mock.Mock(return_value=cluster))

    with pytest.raises(SystemExit) as excinfo:
        cfn_signal.main(['http://127.0.0.1:2379', '--instance', 'i-local', '--region', 'us-east-1',
                         '--etcd-cert-file', ''])

    assert excinfo.value.code == 1
