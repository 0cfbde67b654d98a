import pytest
import responses

from etcd_aws.aws import Instance
from etcd_aws.config import TLSConfig
from etcd_aws.etcd import AdminClient


@pytest.fixture
def tls():
    return TLSConfig.disabled()


@pytest.fixture
def client(tls):
    return AdminClient(tls)


@pytest.fixture
def local_instance():
    return Instance('i-local', 'ip-10-0-0-1.ec2.internal')


@pytest.fixture
def mocked_responses():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def stats_self():
    """Build `stats/self` documents as served by etcd v2."""
    def build(leader=''):
        return {
            'name': 'i-peer',
            'id': '8e9e05c52164694d',
            'state': 'StateLeader' if leader else 'StateFollower',
            'startTime': '2016-11-03T14:49:51.221547413Z',
            'leaderInfo': {
                'leader': leader,
                'uptime': '10m59.322358947s',
                'startTime': '2016-11-03T14:50:00.236456811Z',
            },
            'recvAppendRequestCnt': 5944,
            'recvBandwidthRate': 570.6254930219969,
            'recvPkgRate': 9.00892789741075,
            'sendAppendRequestCnt': 0,
        }

    return build
