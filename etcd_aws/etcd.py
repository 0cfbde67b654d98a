"""Client for the etcd v2 administrative API.

AdminClient: requests against a peer's admin endpoint, sharing one TLSConfig
Member: an entry of the etcd member list
NodeStatus: a peer's self-reported `stats/self` document
probe: fetch and parse the status of one peer
"""
import logging
from collections import namedtuple
from typing import List, Optional

import requests
from dateutil import parser as date_parser

from etcd_aws.config import CLIENT_PORT, DEFAULT_TIMEOUT, PEER_PORT, TLSConfig
from etcd_aws.exceptions import EtcdAPIError

log = logging.getLogger(__name__)

API_VERSION = 'v2'


def peer_url(tls: TLSConfig, address: str) -> str:
    return "{}://{}:{}".format(tls.scheme, address, PEER_PORT)


def client_url(tls: TLSConfig, address: str) -> str:
    return "{}://{}:{}".format(tls.scheme, address, CLIENT_PORT)


class Member(namedtuple('Member', ['id', 'name', 'peer_urls', 'client_urls'])):
    """An etcd cluster member.

    `id` is empty for a candidate member that has not been added yet, and
    `name` is empty for a member that was added but has not started.
    """

    __slots__ = ()

    @classmethod
    def candidate(cls, name, peer_urls):
        return cls('', name, tuple(peer_urls), ())

    @classmethod
    def from_json(cls, data):
        return cls(
            data.get('id', ''),
            data.get('name', ''),
            tuple(data.get('peerURLs') or ()),
            tuple(data.get('clientURLs') or ()))

    def to_json(self):
        data = {'peerURLs': list(self.peer_urls)}
        if self.id:
            data['id'] = self.id
        if self.name:
            data['name'] = self.name
        if self.client_urls:
            data['clientURLs'] = list(self.client_urls)
        return data


NodeStatus = namedtuple('NodeStatus', [
    'name',
    'id',
    'state',
    'start_time',
    'leader',
    'leader_uptime',
    'leader_start_time',
    'recv_append_request_cnt',
    'recv_pkg_rate',
    'recv_bandwidth_rate',
    'send_append_request_cnt',
])


def _parse_time(value):
    if not value:
        return None
    return date_parser.isoparse(value)


def parse_node_status(data) -> NodeStatus:
    """Build a NodeStatus from a decoded `stats/self` body.

    Raises:
        ValueError: the document is not a JSON object or has malformed fields.
    """
    if not isinstance(data, dict):
        raise ValueError('expected a JSON object, got {}'.format(type(data).__name__))
    leader_info = data.get('leaderInfo') or {}
    if not isinstance(leader_info, dict):
        raise ValueError('`leaderInfo` is not a JSON object')
    return NodeStatus(
        name=data.get('name', ''),
        id=data.get('id', ''),
        state=data.get('state', ''),
        start_time=_parse_time(data.get('startTime')),
        leader=leader_info.get('leader', ''),
        leader_uptime=leader_info.get('uptime', ''),
        leader_start_time=_parse_time(leader_info.get('startTime')),
        recv_append_request_cnt=int(data.get('recvAppendRequestCnt', 0)),
        recv_pkg_rate=float(data.get('recvPkgRate', 0)),
        recv_bandwidth_rate=float(data.get('recvBandwidthRate', 0)),
        send_append_request_cnt=int(data.get('sendAppendRequestCnt', 0)),
    )


def has_leader(status: NodeStatus) -> bool:
    return bool(status.leader)


class AdminClient:
    """Issues requests against the admin endpoint (port 2379) of etcd peers.

    The client holds no per-call state; every error is raised as an
    EtcdAPIError naming the peer instance id, the method and the URL.
    """

    def __init__(self, tls: TLSConfig, timeout=DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.tls = tls
        self.timeout = timeout
        self.session = session or requests.Session()
        for key, value in tls.requests_kwargs().items():
            setattr(self.session, key, value)

    def url(self, address: str, path: str) -> str:
        return "{}/{}/{}".format(client_url(self.tls, address), API_VERSION, path)

    def request_url(self, instance_id: str, method: str, url: str, body=None,
                    check_status: bool = True) -> requests.Response:
        log.debug("%s: %s %s", instance_id, method, url)
        try:
            response = self.session.request(method, url, json=body, timeout=self.timeout)
            if check_status:
                response.raise_for_status()
        except requests.RequestException as exc:
            raise EtcdAPIError(instance_id, method, url, exc) from exc
        return response

    def request(self, address: str, instance_id: str, method: str, path: str, body=None) -> requests.Response:
        return self.request_url(instance_id, method, self.url(address, path), body)

    def request_json(self, address: str, instance_id: str, method: str, path: str, body=None):
        response = self.request(address, instance_id, method, path, body)
        try:
            return response.json()
        except ValueError as exc:
            raise EtcdAPIError(instance_id, method, response.url or self.url(address, path), exc) from exc

    def self_stats(self, address: str, instance_id: str) -> NodeStatus:
        data = self.request_json(address, instance_id, 'GET', 'stats/self')
        try:
            return parse_node_status(data)
        except (TypeError, ValueError) as exc:
            raise EtcdAPIError(instance_id, 'GET', self.url(address, 'stats/self'), exc) from exc

    def list_members(self, address: str, instance_id: str) -> List[Member]:
        data = self.request_json(address, instance_id, 'GET', 'members')
        try:
            return [Member.from_json(m) for m in data.get('members') or []]
        except (AttributeError, TypeError) as exc:
            raise EtcdAPIError(instance_id, 'GET', self.url(address, 'members'), exc) from exc

    def add_member(self, address: str, instance_id: str, member: Member) -> Member:
        data = self.request_json(address, instance_id, 'POST', 'members', body=member.to_json())
        if not isinstance(data, dict):
            raise EtcdAPIError(
                instance_id, 'POST', self.url(address, 'members'), ValueError('unexpected body: {}'.format(data)))
        return Member.from_json(data)

    def remove_member(self, address: str, instance_id: str, member_id: str) -> None:
        self.request(address, instance_id, 'DELETE', 'members/{}'.format(member_id))

    def health(self, server_url: str, instance_id: str = 'local') -> bool:
        """Return True when `<server_url>/health` reports a healthy member."""
        url = "{}/health".format(server_url.rstrip('/'))
        response = self.request_url(instance_id, 'GET', url)
        try:
            health = response.json().get('health')
        except (AttributeError, ValueError) as exc:
            raise EtcdAPIError(instance_id, 'GET', url, exc) from exc
        if health != 'true':
            log.info("Health is %s", health)
        return health == 'true'


def probe(client: AdminClient, instance) -> NodeStatus:
    """Fetch the self-status of the peer running on `instance`.

    Raises:
        EtcdAPIError: the peer is unreachable or answered with an unusable body.
    """
    status = client.self_stats(instance.address, instance.id)
    if has_leader(status):
        log.info("%s: %s: has leader %s", instance.id, client.url(instance.address, 'stats/self'), status.leader)
    else:
        log.info("%s: %s: alive, no leader", instance.id, client.url(instance.address, 'stats/self'))
    return status
